"""Hierarchical clustering of trained SOM codebooks."""

import numpy as np
from typing import Tuple
from scipy.cluster.hierarchy import linkage, cut_tree
import logging

from somdelim.abstractions.types.som_types import SOMModel
from somdelim.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

SUPPORTED_LINKAGES = ('average', 'complete', 'single', 'weighted', 'ward')


def relabel_by_first_appearance(labels: np.ndarray) -> np.ndarray:
    """Renumber labels 1..k in the order they first occur."""
    mapping = {}
    relabelled = np.empty(len(labels), dtype=int)
    for i, label in enumerate(labels):
        if label not in mapping:
            mapping[label] = len(mapping) + 1
        relabelled[i] = mapping[label]
    return relabelled


class CodebookClusterer:
    """Cut a hierarchical clustering of the codebook vectors into k groups.

    Multi-layer codebooks are concatenated with every layer scaled by the
    square root of its distance weight (see ``SOMModel.combined_codes``).
    """

    def __init__(self, linkage: str = 'average'):
        if linkage not in SUPPORTED_LINKAGES:
            raise ConfigurationError(
                f"Unsupported linkage '{linkage}', expected one of {SUPPORTED_LINKAGES}"
            )
        self.linkage = linkage

    def cluster_units(self, codes: np.ndarray, k: int) -> np.ndarray:
        """Cluster label (1..k) of every codebook unit."""
        n_units = codes.shape[0]
        if not 1 <= k <= n_units:
            raise ConfigurationError(f"Cannot cut {n_units} units into {k} clusters")

        if k == 1:
            return np.ones(n_units, dtype=int)

        tree = linkage(codes, method=self.linkage, metric='euclidean')
        groups = cut_tree(tree, n_clusters=k).ravel()
        return relabel_by_first_appearance(groups)

    def cluster(self, model: SOMModel, k: int) -> Tuple[np.ndarray, np.ndarray]:
        """Cluster a trained model.

        Returns:
            Tuple of (unit labels, sample labels), both 1..k. Every sample
            inherits the label of its winning unit.
        """
        unit_labels = self.cluster_units(model.combined_codes(), k)
        sample_labels = unit_labels[model.unit_classif]
        return unit_labels, sample_labels
