"""SOM-based unsupervised species delimitation."""

from .analyzer import SOMDelimitationAnalyzer
from .config import DelimitationConfig
from .exceptions import (
    DelimitationError, DataTypeError, ShapeMismatchError, LabelMismatchError,
    ConfigurationError, ReplicateCountMismatch, CacheCorruptedError
)

__version__ = '1.0.0'

__all__ = [
    'SOMDelimitationAnalyzer', 'DelimitationConfig',
    'DelimitationError', 'DataTypeError', 'ShapeMismatchError', 'LabelMismatchError',
    'ConfigurationError', 'ReplicateCountMismatch', 'CacheCorruptedError'
]
