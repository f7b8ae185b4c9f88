"""Progress tracking for delimitation runs with file-based updates."""

import os
import json
import time
from typing import Optional, Callable
from datetime import datetime


class DelimitationProgressTracker:
    """Track ensemble progress to a JSON file for external monitoring."""

    def __init__(self, progress_file: str, experiment_name: str = 'delimitation'):
        """Initialize progress tracker.

        Args:
            progress_file: Path of the JSON progress file
            experiment_name: Name of the run
        """
        self.progress_file = str(progress_file)
        self.experiment_name = experiment_name

        output_dir = os.path.dirname(self.progress_file)
        if output_dir:
            os.makedirs(output_dir, exist_ok=True)

        self.progress_data = {
            'experiment': experiment_name,
            'start_time': datetime.now().isoformat(),
            'status': 'initializing',
            'current_phase': 'setup',
            'message': None,
            'progress_percent': 0.0,
            'elapsed_seconds': 0,
            'estimated_remaining': None,
            'last_update': datetime.now().isoformat()
        }

        self.start_time = time.time()
        self._write_progress()

    def update_phase(self, phase: str):
        """Update current run phase."""
        self.progress_data['current_phase'] = phase
        self.progress_data['status'] = 'running'
        self._write_progress()

    def update(self, message: str, fraction: float):
        """Record a progress message and the completed fraction of the run."""
        fraction = min(max(float(fraction), 0.0), 1.0)
        self.progress_data.update({
            'status': 'running',
            'message': message,
            'progress_percent': fraction * 100
        })

        elapsed = time.time() - self.start_time
        if fraction > 0:
            self.progress_data['estimated_remaining'] = elapsed / fraction * (1 - fraction)

        self._write_progress()

    def mark_complete(self, success: bool = True):
        """Mark the run as complete."""
        self.progress_data['status'] = 'completed' if success else 'failed'
        self.progress_data['end_time'] = datetime.now().isoformat()
        self.progress_data['total_time'] = time.time() - self.start_time
        if success:
            self.progress_data['progress_percent'] = 100.0
            self.progress_data['estimated_remaining'] = 0.0
        self._write_progress()

    def _write_progress(self):
        """Write progress to file atomically."""
        self.progress_data['elapsed_seconds'] = time.time() - self.start_time
        self.progress_data['last_update'] = datetime.now().isoformat()

        temp_file = self.progress_file + '.tmp'
        with open(temp_file, 'w') as f:
            json.dump(self.progress_data, f, indent=2)

        os.replace(temp_file, self.progress_file)


def create_progress_callback(tracker: DelimitationProgressTracker,
                             forward: Optional[Callable[[str, float], None]] = None
                             ) -> Callable[[str, float], None]:
    """Create a ``progress_callback(message, fraction)`` writing to the tracker.

    Args:
        tracker: Progress tracker instance
        forward: Optional second callback that receives the same updates
    """
    def callback(message: str, fraction: float):
        tracker.update(message, fraction)
        if forward:
            forward(message, fraction)

    return callback
