"""Choose the number of clusters of a trained codebook.

Within-cluster sums of squares (WSS) are computed for k = 1..max_k and turned
into a BIC-like score. When k = 1 does not minimise the score, the first
differences of the WSS curve are split in two with Ward clustering and k is
placed just after the last of the steep drops.

Note that scipy's 'ward' method works on Euclidean distances directly and
so matches R's ``ward.D2`` rather than ``ward.D``.
"""

import warnings
import numpy as np
from typing import Optional
from scipy.cluster.hierarchy import linkage, cut_tree
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning
import logging

from somdelim.abstractions.types.delimitation_types import ClusterCountTrial
from somdelim.exceptions import ConfigurationError
from .codebook_clusterer import relabel_by_first_appearance

logger = logging.getLogger(__name__)


def total_sum_of_squares(codes: np.ndarray) -> float:
    """WSS of a single cluster: (rows - 1) * sum of column variances."""
    if codes.shape[0] < 2:
        return 0.0
    return float((codes.shape[0] - 1) * np.sum(np.var(codes, axis=0, ddof=1)))


def bic_scores(wss: np.ndarray, n: int) -> np.ndarray:
    """BIC-like score ``n * ln(WSS / n) + ln(n) * k`` for k = 1..len(wss).

    A WSS of 0 gives -inf.
    """
    k = np.arange(1, len(wss) + 1)
    with np.errstate(divide='ignore'):
        return n * np.log(np.asarray(wss, dtype=float) / n) + np.log(n) * k


def select_k(wss: np.ndarray, bic: np.ndarray) -> int:
    """Number of clusters from WSS and BIC curves over k = 1..max_k."""
    wss = np.asarray(wss, dtype=float)
    bic = np.asarray(bic, dtype=float)
    max_k = len(wss)

    if max_k <= 1 or int(np.argmin(bic)) == 0:
        return 1

    drops = np.diff(wss)
    if len(drops) < 2:
        logger.info(f"Only {len(drops)} WSS difference available, selecting k = {max_k}")
        return max_k

    tree = linkage(drops.reshape(-1, 1), method='ward')
    groups = relabel_by_first_appearance(cut_tree(tree, n_clusters=2).ravel())

    means = [drops[groups == g].mean() for g in (1, 2)]
    steep = 1 if means[0] <= means[1] else 2
    last_member = int(np.flatnonzero(groups == steep)[-1]) + 1
    return last_member + 1


class ClusterCountSelector:
    """Evaluate k = 1..max_k on a codebook and pick the number of clusters."""

    def __init__(self, max_k: int, n_init: int = 25, max_iter: int = 100000):
        if max_k < 1:
            raise ConfigurationError(f"max_k must be at least 1, got {max_k}")
        self.max_k = max_k
        self.n_init = n_init
        self.max_iter = max_iter

    def within_sum_of_squares(self, codes: np.ndarray,
                              rng: Optional[np.random.Generator] = None) -> np.ndarray:
        """WSS for k = 1..max_k, best of ``n_init`` k-means runs for k >= 2."""
        n_units = codes.shape[0]
        if self.max_k > n_units:
            raise ConfigurationError(
                f"Cannot evaluate {self.max_k} clusters on {n_units} codebook units"
            )

        rng = rng if rng is not None else np.random.default_rng()
        wss = np.zeros(self.max_k)
        wss[0] = total_sum_of_squares(codes)

        for k in range(2, self.max_k + 1):
            km = KMeans(
                n_clusters=k,
                n_init=self.n_init,
                max_iter=self.max_iter,
                random_state=int(rng.integers(0, 2**31 - 1))
            )
            # Codebooks with fewer distinct vectors than k are valid, WSS is 0
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', ConvergenceWarning)
                km.fit(codes)
            wss[k - 1] = km.inertia_

        return wss

    def select(self, codes: np.ndarray,
               rng: Optional[np.random.Generator] = None) -> ClusterCountTrial:
        """Score every k and return the trial with the selected k."""
        wss = self.within_sum_of_squares(codes, rng)
        bic = bic_scores(wss, codes.shape[0])
        selected = select_k(wss, bic)
        logger.debug(f"Selected k = {selected} (BIC: {np.round(bic, 3).tolist()})")

        return ClusterCountTrial(
            k_values=np.arange(1, self.max_k + 1),
            wss=wss,
            bic=bic,
            selected_k=selected
        )
