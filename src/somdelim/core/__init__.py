"""Result persistence."""

from .result_cache import ResultCache, compute_fingerprint

__all__ = ['ResultCache', 'compute_fingerprint']
