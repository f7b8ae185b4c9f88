"""Skip-if-exists caching of delimitation results.

A bundle is a gzip-compressed pickle holding the DelimitationResult and a
fingerprint of the configuration and input layers it was computed from.
"""

import os
import gzip
import json
import pickle
import hashlib
import tempfile
from pathlib import Path
from datetime import datetime
from typing import Callable, Dict, Any, List, Union, Optional
import numpy as np

from somdelim.abstractions.types.delimitation_types import DelimitationResult, InputLayer
from somdelim.exceptions import CacheCorruptedError
from somdelim.infrastructure.logging import get_logger

logger = get_logger(__name__)

BUNDLE_VERSION = 1

# Settings that do not change the computed result
NON_RESULT_KEYS = ('overwrite', 'output_path', 'n_jobs', 'replicate_timeout')


def compute_fingerprint(config: Dict[str, Any], layers: List[InputLayer]) -> str:
    """SHA-256 over the result-relevant configuration and the layer contents."""
    hasher = hashlib.sha256()

    relevant = {k: v for k, v in config.items() if k not in NON_RESULT_KEYS}
    hasher.update(json.dumps(relevant, sort_keys=True, default=str).encode('utf-8'))

    for layer in layers:
        hasher.update(layer.name.encode('utf-8'))
        hasher.update('\x1f'.join(layer.row_names).encode('utf-8'))
        hasher.update('\x1f'.join(layer.column_names).encode('utf-8'))
        data = np.ascontiguousarray(layer.data, dtype=np.float64)
        # NaN payloads may differ, hash a canonical form
        hasher.update(np.where(np.isnan(data), np.inf, data).tobytes())

    return hasher.hexdigest()


class ResultCache:
    """Persist and reuse delimitation results."""

    def save(self, path: Union[str, Path], result: DelimitationResult, fingerprint: str) -> Path:
        """Write a bundle atomically (temporary file + rename)."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        bundle = {
            'version': BUNDLE_VERSION,
            'fingerprint': fingerprint,
            'created': datetime.now().isoformat(),
            'result': result
        }

        fd, temp_name = tempfile.mkstemp(dir=str(path.parent), prefix=path.name, suffix='.tmp')
        try:
            with os.fdopen(fd, 'wb') as raw, gzip.GzipFile(fileobj=raw, mode='wb') as f:
                pickle.dump(bundle, f, protocol=pickle.HIGHEST_PROTOCOL)
            os.replace(temp_name, path)
        except BaseException:
            if os.path.exists(temp_name):
                os.remove(temp_name)
            raise

        logger.info(f"Saved delimitation result to {path} ({path.stat().st_size / 1024:.1f} KB)")
        return path

    def load_bundle(self, path: Union[str, Path]) -> Dict[str, Any]:
        """Read a bundle.

        Raises:
            CacheCorruptedError: If the file cannot be read as a bundle
        """
        path = Path(path)
        try:
            with gzip.open(path, 'rb') as f:
                bundle = pickle.load(f)
        except (OSError, EOFError, pickle.UnpicklingError, AttributeError,
                ImportError, IndexError, ValueError) as e:
            raise CacheCorruptedError(f"Cached result {path} is unreadable: {e}", e)

        if (not isinstance(bundle, dict)
                or 'fingerprint' not in bundle
                or not isinstance(bundle.get('result'), DelimitationResult)):
            raise CacheCorruptedError(f"Cached result {path} is not a delimitation bundle")

        return bundle

    def load(self, path: Union[str, Path]) -> DelimitationResult:
        """Read the result stored in a bundle."""
        return self.load_bundle(path)['result']

    def load_or_compute(self, path: Optional[Union[str, Path]],
                        compute: Callable[[], DelimitationResult],
                        fingerprint: str,
                        force: bool = False) -> DelimitationResult:
        """Reuse a matching cached result or compute and store a new one.

        Args:
            path: Bundle location; without a path nothing is cached
            compute: Zero-argument callable producing the result
            fingerprint: Fingerprint of the current inputs
            force: Recompute even when a matching bundle exists
        """
        if path is None:
            return compute()

        path = Path(path)
        if path.exists() and not force:
            bundle = self.load_bundle(path)
            if bundle['fingerprint'] == fingerprint:
                logger.info(f"Reusing cached delimitation result from {path}")
                return bundle['result']
            logger.warning(
                f"Cached result {path} was computed from different inputs, recomputing"
            )
        elif path.exists():
            logger.info(f"Overwriting cached result {path}")

        result = compute()
        self.save(path, result, fingerprint)
        return result
