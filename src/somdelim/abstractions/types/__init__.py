"""Type definitions for SOM training and delimitation results."""

from .som_types import NeighborhoodFunction, GridTopology, SOMModel
from .delimitation_types import (
    InputLayer, ClusterCountTrial, ReplicateResult, EnsembleResult,
    QMatrix, DelimitationResult
)

__all__ = [
    'NeighborhoodFunction', 'GridTopology', 'SOMModel',
    'InputLayer', 'ClusterCountTrial', 'ReplicateResult', 'EnsembleResult',
    'QMatrix', 'DelimitationResult'
]
