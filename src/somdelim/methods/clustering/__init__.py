"""Cluster-count selection, codebook clustering and label matching."""

from .cluster_count import ClusterCountSelector, select_k
from .codebook_clusterer import CodebookClusterer
from .label_matching import LabelMatcher, best_permutation

__all__ = ['ClusterCountSelector', 'select_k', 'CodebookClusterer',
           'LabelMatcher', 'best_permutation']
