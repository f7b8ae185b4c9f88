"""Align cluster labels across replicates and build the Q-matrix.

Cluster labels of independent replicates are arbitrary. Every replicate
with k clusters is matched against a k-means labelling of a reference
layer by trying all k! relabelings and keeping the one with the smallest
summed absolute label difference.
"""

import itertools
import warnings
import numpy as np
from typing import Dict, Optional, Union, List
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning
import logging

from somdelim.abstractions.types.delimitation_types import EnsembleResult, QMatrix, InputLayer
from somdelim.exceptions import ConfigurationError, ReplicateCountMismatch

logger = logging.getLogger(__name__)

# 7! permutations per batch
DEFAULT_BATCH_SIZE = 5040

# Reference k-means cannot use missing entries
REFERENCE_FILL_VALUE = 0.5


def best_permutation(labels: np.ndarray, reference: np.ndarray,
                     k: Optional[int] = None,
                     batch_size: int = DEFAULT_BATCH_SIZE) -> np.ndarray:
    """Relabeling of ``labels`` closest to ``reference``.

    Permutations of 1..k are tried in lexicographic order and the first one
    with the minimal cost ``sum(|perm[label - 1] - reference|)`` wins.

    Args:
        labels: Replicate labels in 1..k
        reference: Reference labels in 1..k
        k: Number of labels, inferred from both inputs when None
        batch_size: Permutations evaluated per vectorized batch

    Returns:
        Array ``perm`` of length k, old label ``j`` becomes ``perm[j - 1]``
    """
    labels = np.asarray(labels, dtype=int)
    reference = np.asarray(reference, dtype=int)
    if labels.shape != reference.shape:
        raise ConfigurationError(
            f"Labels ({labels.shape}) and reference ({reference.shape}) differ in length"
        )
    if k is None:
        k = int(max(labels.max(initial=1), reference.max(initial=1)))

    candidates = itertools.permutations(range(1, k + 1))
    best_perm = None
    best_cost = np.inf

    while True:
        batch = np.array(list(itertools.islice(candidates, batch_size)), dtype=int)
        if batch.size == 0:
            break
        relabelled = batch[:, labels - 1]
        costs = np.abs(relabelled - reference[np.newaxis, :]).sum(axis=1)
        idx = int(np.argmin(costs))
        if costs[idx] < best_cost:
            best_cost = costs[idx]
            best_perm = batch[idx]

    return best_perm


def membership_proportions(relabelled: np.ndarray, n_clusters: int) -> np.ndarray:
    """Fraction of replicates (columns) assigning every row to each label 1..n_clusters."""
    counts = np.stack(
        [(relabelled == c).sum(axis=1) for c in range(1, n_clusters + 1)], axis=1
    )
    return counts / relabelled.shape[1]


class LabelMatcher:
    """Match replicate labels to a reference and aggregate them into a Q-matrix."""

    def __init__(self, max_k: int, n_init: int = 25, max_iter: int = 100000,
                 random_state: Optional[int] = None,
                 batch_size: int = DEFAULT_BATCH_SIZE):
        self.max_k = max_k
        self.n_init = n_init
        self.max_iter = max_iter
        self.random_state = random_state
        self.batch_size = batch_size

    def reference_labels(self, reference_layer: Union[InputLayer, np.ndarray]) -> Dict[int, np.ndarray]:
        """k-means labelling (1..k) of the reference layer for k = 1..max_k."""
        data = reference_layer.data if isinstance(reference_layer, InputLayer) else reference_layer
        data = np.where(np.isnan(data), REFERENCE_FILL_VALUE, np.asarray(data, dtype=float))

        if self.max_k > data.shape[0]:
            raise ConfigurationError(
                f"max_k ({self.max_k}) exceeds the number of samples ({data.shape[0]})"
            )

        references = {1: np.ones(data.shape[0], dtype=int)}
        for k in range(2, self.max_k + 1):
            km = KMeans(
                n_clusters=k,
                n_init=self.n_init,
                max_iter=self.max_iter,
                random_state=self.random_state
            )
            with warnings.catch_warnings():
                warnings.simplefilter('ignore', ConvergenceWarning)
                references[k] = km.fit_predict(data) + 1
        return references

    def relabel(self, labels: np.ndarray, reference: np.ndarray, k: int) -> np.ndarray:
        """Apply the best permutation to one replicate's labels."""
        labels = np.asarray(labels, dtype=int)
        perm = best_permutation(labels, reference, k=k, batch_size=self.batch_size)
        return perm[labels - 1]

    def build_q_matrix(self, ensemble: EnsembleResult,
                       reference_layer: Union[InputLayer, np.ndarray],
                       n_replicates: Optional[int] = None) -> QMatrix:
        """Match every retained replicate and compute membership proportions.

        Args:
            ensemble: Finalized ensemble
            reference_layer: Layer the reference labelling is computed on
            n_replicates: Expected number of replicate columns, taken from the
                ensemble's configuration echo when None

        Raises:
            ReplicateCountMismatch: If the label matrix is missing replicates
            ConfigurationError: If no replicate has k <= max_k
        """
        expected = n_replicates
        if expected is None:
            expected = ensemble.config.get('n_replicates', ensemble.n_replicates)

        if ensemble.c_mat.shape[1] != expected:
            raise ReplicateCountMismatch(
                f"Label matrix has {ensemble.c_mat.shape[1]} replicate columns, "
                f"expected {expected}"
            )

        retained: List[int] = []
        for col, k in enumerate(ensemble.k_values):
            if k > self.max_k:
                logger.warning(
                    f"Discarding replicate {ensemble.replicate_ids[col]} with k = {k} > {self.max_k}"
                )
            else:
                retained.append(col)

        if not retained:
            raise ConfigurationError(f"No replicate selected k <= {self.max_k}")

        references = self.reference_labels(reference_layer)
        relabelled = np.column_stack([
            self.relabel(ensemble.c_mat[:, col], references[int(ensemble.k_values[col])],
                         int(ensemble.k_values[col]))
            for col in retained
        ])

        n_clusters = int(max(ensemble.k_values[col] for col in retained))
        values = membership_proportions(relabelled, n_clusters)

        layer_name = reference_layer.name if isinstance(reference_layer, InputLayer) else 'reference'
        logger.info(
            f"Q-matrix built from {len(retained)} replicates with up to {n_clusters} clusters"
        )

        return QMatrix(
            values=values,
            row_names=list(ensemble.row_names),
            reference_labels=references,
            reference_layer=layer_name,
            retained_replicates=[int(ensemble.replicate_ids[col]) for col in retained],
            relabelled=relabelled
        )
