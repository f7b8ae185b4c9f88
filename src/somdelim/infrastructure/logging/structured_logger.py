"""Structured logging with context propagation for delimitation runs."""

import logging
import sys
import traceback
from typing import Dict, Any, Optional
from contextvars import ContextVar
from datetime import datetime, timezone

# Correlation fields attached to every record logged inside a run
experiment_context: ContextVar[Optional[str]] = ContextVar('experiment_id', default=None)
node_context: ContextVar[Optional[str]] = ContextVar('node_id', default=None)
stage_context: ContextVar[Optional[str]] = ContextVar('stage', default=None)
replicate_context: ContextVar[Optional[int]] = ContextVar('replicate', default=None)


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


class StructuredLogger(logging.Logger):
    """Logger that attaches run context, performance data and tracebacks.

    Records carry three extra attributes read by the formatters:
    ``context`` (experiment, node, stage, replicate plus caller fields),
    ``performance`` and ``traceback``.
    """

    def _log(self, level, msg, args, exc_info=None, extra=None, stack_info=False, **kwargs):
        context = {
            'experiment_id': experiment_context.get(),
            'node_id': node_context.get(),
            'stage': stage_context.get(),
            'replicate': replicate_context.get(),
            'logger_name': self.name,
            'timestamp': _utc_timestamp(),
        }
        context = {k: v for k, v in context.items() if v is not None}

        extra = dict(extra) if isinstance(extra, dict) else {}
        context.update(extra.pop('context', None) or {})
        performance = extra.pop('performance', None)
        traceback_str = extra.pop('traceback', None)

        if not traceback_str and exc_info:
            if isinstance(exc_info, bool):
                exc_info = sys.exc_info()
            if exc_info[0] is not None:
                traceback_str = ''.join(traceback.format_exception(*exc_info))

        extra.update({
            'context': context,
            'performance': performance,
            'traceback': traceback_str
        })

        super()._log(level, msg, args, exc_info=False, extra=extra,
                     stack_info=stack_info, **kwargs)

    def log_performance(self, operation: str, duration: float, **metrics):
        """Log the duration of an operation with optional metrics.

        Example:
            logger.log_performance('train_ensemble', 12.3, items_processed=30)
        """
        performance_data = {
            'operation': operation,
            'duration_seconds': round(duration, 3),
            **metrics
        }
        if 'items_processed' in metrics and duration > 0:
            performance_data['items_per_second'] = round(metrics['items_processed'] / duration, 2)

        self.info(
            f"Performance: {operation} completed in {duration:.3f}s",
            extra={'performance': performance_data}
        )

    def log_error_with_context(self, error: Exception, operation: Optional[str] = None, **context):
        """Log an exception with its type, traceback and caller context."""
        error_context = {
            'error_type': type(error).__name__,
            'error_module': type(error).__module__,
            **context
        }
        if operation:
            error_context['operation'] = operation

        self.error(
            f"{type(error).__name__}: {error}",
            exc_info=(type(error), error, error.__traceback__),
            extra={'context': error_context}
        )


_logger_cache: Dict[str, StructuredLogger] = {}


def get_logger(name: str) -> StructuredLogger:
    """Get or create a structured logger.

    Example:
        from somdelim.infrastructure.logging import get_logger
        logger = get_logger(__name__)
    """
    if name in _logger_cache:
        return _logger_cache[name]

    original_class = logging.getLoggerClass()
    logging.setLoggerClass(StructuredLogger)
    try:
        logger = logging.getLogger(name)
    finally:
        logging.setLoggerClass(original_class)

    _logger_cache[name] = logger
    return logger
