"""Decorators for automatic logging and error capture."""

import functools
import time
from typing import Callable, Any, Optional, TypeVar

from .structured_logger import get_logger

F = TypeVar('F', bound=Callable[..., Any])


def log_operation(operation_name: Optional[str] = None):
    """Log the duration of the decorated call, or its failure with traceback.

    Example:
        @log_operation("build_q_matrix")
        def _build_q_matrix(self, ensemble, reference, config):
            ...
    """
    def decorator(func: F) -> F:
        name = operation_name or func.__name__
        logger = get_logger(func.__module__)

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                logger.error(
                    f"Failed {name}: {e}",
                    exc_info=True,
                    extra={
                        'context': {'operation': name},
                        'performance': {
                            'duration_seconds': round(time.time() - start_time, 3),
                            'status': 'failed',
                            'error_type': type(e).__name__
                        }
                    }
                )
                raise
            logger.log_performance(name, time.time() - start_time, status='success')
            return result

        return wrapper  # type: ignore
    return decorator
