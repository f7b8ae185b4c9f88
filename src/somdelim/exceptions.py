"""Exceptions raised by the species delimitation pipeline."""

from typing import Optional


class DelimitationError(Exception):
    """Base delimitation error."""
    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        super().__init__(message)
        self.original_exception = original_exception


class DataTypeError(DelimitationError):
    """Raised when an input matrix cannot be coerced to numeric values."""
    pass


class ShapeMismatchError(DelimitationError):
    """Raised when layers of a multi-layer run have different row counts."""
    pass


class LabelMismatchError(DelimitationError):
    """Raised when layers of a multi-layer run disagree on row identifiers."""
    pass


class ConfigurationError(DelimitationError):
    """Raised when a parameter is outside its valid range."""
    pass


class ReplicateCountMismatch(DelimitationError):
    """Raised when the accumulated ensemble does not hold every replicate."""
    pass


class CacheCorruptedError(DelimitationError):
    """Raised when a cached result bundle cannot be read back."""
    pass
