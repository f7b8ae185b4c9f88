"""Type definitions for Self-Organizing Map training."""

from dataclasses import dataclass, field
from typing import Dict, List
import numpy as np
from scipy.spatial.distance import cdist
from enum import Enum


class NeighborhoodFunction(Enum):
    """Neighborhood functions for SOM training."""
    GAUSSIAN = "gaussian"
    BUBBLE = "bubble"


@dataclass(frozen=True)
class GridTopology:
    """Hexagonal unit grid of one delimitation run.

    Unit order follows the usual SOM convention: x varies fastest, so unit
    ``i`` sits in column ``i % xdim`` of row ``i // xdim``.
    """
    xdim: int
    ydim: int
    neighbourhood_fct: NeighborhoodFunction = NeighborhoodFunction.GAUSSIAN
    topology: str = "hexagonal"
    pts: np.ndarray = field(default=None, compare=False, repr=False)  # (n_units, 2)

    @property
    def n_units(self) -> int:
        """Number of units on the grid."""
        return self.xdim * self.ydim

    def unit_distances(self) -> np.ndarray:
        """Euclidean distances between all pairs of unit positions."""
        return cdist(self.pts, self.pts)


@dataclass
class SOMModel:
    """Trained state of one replicate.

    Attributes:
        grid: Grid the map was trained on
        codes: Codebook per layer, each (n_units, n_vars)
        changes: Per-epoch mean distance of samples to their BMU, per layer
        distance_weights: Relative layer weights, summing to 1
        unit_classif: 0-based BMU index per individual
    """
    grid: GridTopology
    codes: Dict[str, np.ndarray]
    changes: Dict[str, np.ndarray]
    distance_weights: np.ndarray
    unit_classif: np.ndarray

    @property
    def layer_names(self) -> List[str]:
        return list(self.codes.keys())

    @property
    def n_layers(self) -> int:
        return len(self.codes)

    def combined_codes(self) -> np.ndarray:
        """Codebook vectors of all layers side by side.

        Layers are scaled by the square root of their distance weight so
        that squared Euclidean distances on the result match the weighted
        training distance.
        """
        if self.n_layers == 1:
            return next(iter(self.codes.values()))

        blocks = [
            codes * np.sqrt(weight)
            for codes, weight in zip(self.codes.values(), self.distance_weights)
        ]
        return np.hstack(blocks)
