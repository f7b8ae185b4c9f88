"""Run and stage scopes for log correlation."""

from contextlib import contextmanager
from typing import Optional, Dict, Any, List
import uuid
import time

from .structured_logger import experiment_context, node_context, stage_context, get_logger


class LoggingContext:
    """Hierarchical logging scopes for one delimitation run.

    ``pipeline`` sets the run ID, ``stage`` nests below it; both publish
    their node path through the context variables and log their duration.
    """

    def __init__(self, experiment_id: Optional[str] = None):
        self.experiment_id = experiment_id or str(uuid.uuid4())
        self.node_stack: List[str] = []
        self.stage_stack: List[str] = []
        self.timings: Dict[str, Dict[str, Any]] = {}
        self.logger = get_logger(f"somdelim.{self.__class__.__name__}")

    @property
    def current_node(self) -> Optional[str]:
        return self.node_stack[-1] if self.node_stack else None

    def _push(self, node_id: str) -> None:
        self.node_stack.append(node_id)
        node_context.set(node_id)

    def _pop(self) -> None:
        self.node_stack.pop()
        node_context.set(self.current_node)

    @contextmanager
    def pipeline(self, name: str, **metadata):
        """Scope of a whole run."""
        start_time = time.time()
        token = experiment_context.set(self.experiment_id)
        self._push(f"pipeline_{name}")
        self.logger.info(f"Pipeline started: {name}",
                         extra={'context': {'pipeline_name': name, **metadata}})
        try:
            yield self
        finally:
            self.logger.log_performance(f"pipeline_{name}", time.time() - start_time)
            self._pop()
            experiment_context.reset(token)

    @contextmanager
    def stage(self, name: str, **metadata):
        """Scope of one stage; failures are logged with context and re-raised."""
        node_id = f"{self.current_node or 'unknown'}/{name}"
        self.stage_stack.append(name)
        stage_context.set(name)
        self._push(node_id)

        start_time = time.time()
        self.logger.info(f"Stage started: {name}",
                         extra={'context': {'stage_name': name, **metadata}})
        status = 'failed'
        try:
            yield self
            status = 'completed'
        except Exception as e:
            self.logger.log_error_with_context(e, operation=f"stage_{name}")
            raise
        finally:
            duration = time.time() - start_time
            self.timings[node_id] = {'duration': duration, 'status': status}
            self.logger.log_performance(f"stage_{name}", duration, status=status)

            self._pop()
            self.stage_stack.pop()
            stage_context.set(self.stage_stack[-1] if self.stage_stack else None)

    def get_timings(self) -> Dict[str, Dict[str, Any]]:
        """Duration and status of every finished stage, keyed by node path."""
        return dict(self.timings)
