"""Console and file output for structured log records."""

import json
import logging
import os
import sys
import traceback
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including context and performance fields."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'function': record.funcName,
            'line': record.lineno,
            'process': record.process
        }

        for key in ('context', 'performance'):
            value = getattr(record, key, None)
            if value:
                log_data[key] = value

        tb = getattr(record, 'traceback', None)
        if not tb and record.exc_info:
            tb = ''.join(traceback.format_exception(*record.exc_info))
        if tb:
            log_data['traceback'] = tb

        return json.dumps(log_data, separators=(',', ':'), default=str)


class HumanFormatter(logging.Formatter):
    """Compact single-line console format with run, stage and replicate tags."""

    LEVEL_COLORS = {
        'DEBUG': '\033[36m',
        'WARNING': '\033[93m',
        'ERROR': '\033[91m',
        'CRITICAL': '\033[95m',
    }
    RESET = '\033[0m'

    def __init__(self, use_colors: bool = False, show_context: bool = True):
        super().__init__()
        self.use_colors = use_colors
        self.show_context = show_context

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
        level = f"{record.levelname:8}"
        if self.use_colors and record.levelname in self.LEVEL_COLORS:
            level = f"{self.LEVEL_COLORS[record.levelname]}{level}{self.RESET}"

        parts = [timestamp, level, f"[{record.name.rsplit('.', 1)[-1]}]"]
        tags = self._context_tags(record) if self.show_context else ''
        if tags:
            parts.append(tags)
        parts.append(record.getMessage())
        output = ' '.join(parts)

        perf = getattr(record, 'performance', None)
        if perf and 'duration_seconds' in perf:
            output += f" ({perf['duration_seconds']:.3f}s)"

        tb = getattr(record, 'traceback', None)
        if tb:
            output += f"\n{tb.rstrip()}"
        return output

    @staticmethod
    def _context_tags(record: logging.LogRecord) -> str:
        context = getattr(record, 'context', None) or {}
        tags = []
        if context.get('experiment_id'):
            tags.append(f"run:{str(context['experiment_id'])[:8]}")
        if context.get('stage'):
            tags.append(f"stage:{context['stage']}")
        if context.get('replicate') is not None:
            tags.append(f"rep:{context['replicate']}")
        return f"[{' | '.join(tags)}]" if tags else ''


class ConsoleHandler(logging.StreamHandler):
    """Human-readable handler on stderr, colored when the stream is a terminal."""

    def __init__(self, stream=None, use_colors=None, show_context: bool = True):
        stream = stream if stream is not None else sys.stderr
        super().__init__(stream)

        if use_colors is None:
            use_colors = (hasattr(stream, 'isatty') and stream.isatty()
                          and not os.environ.get('NO_COLOR'))

        self.setFormatter(HumanFormatter(use_colors=use_colors, show_context=show_context))
        self.setLevel(logging.INFO)


class FileHandler(RotatingFileHandler):
    """Size-rotated JSON log file; the parent directory is created if missing."""

    def __init__(self, filename: str, max_bytes: int = 100 * 1024 * 1024,
                 backup_count: int = 5, encoding: str = 'utf-8'):
        log_path = Path(filename)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        super().__init__(
            filename=str(log_path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding=encoding
        )
        self.setFormatter(JsonFormatter())
        self.setLevel(logging.DEBUG)
