"""Structured logging infrastructure for delimitation runs."""

from .structured_logger import (
    StructuredLogger, get_logger,
    experiment_context, node_context, stage_context, replicate_context
)
from .context import LoggingContext
from .decorators import log_operation
from .setup import setup_logging

__all__ = [
    'StructuredLogger',
    'get_logger',
    'LoggingContext',
    'experiment_context',
    'node_context',
    'stage_context',
    'replicate_context',
    'log_operation',
    'setup_logging'
]
