"""Hexagonal grid construction for delimitation SOMs."""

import math
import numpy as np

from somdelim.abstractions.types.som_types import GridTopology, NeighborhoodFunction
from somdelim.exceptions import ConfigurationError


def grid_side(n_samples: int) -> int:
    """Side length of the square map for ``n_samples`` individuals.

    The heuristic uses about 5 * sqrt(n) units in total, e.g. 50
    individuals give a 6 x 6 map.
    """
    if n_samples is None or int(n_samples) != n_samples or n_samples <= 0:
        raise ConfigurationError(f"Number of samples must be a positive integer, got {n_samples}")
    return max(1, int(round(math.sqrt(5 * math.sqrt(n_samples)))))


def hexagonal_positions(xdim: int, ydim: int) -> np.ndarray:
    """Unit coordinates of a hexagonal grid.

    x varies fastest, every second row is shifted by half a unit and rows are
    sqrt(3)/2 apart so neighbouring units are exactly 1 apart.
    """
    x = np.tile(np.arange(1, xdim + 1, dtype=float), ydim)
    y = np.repeat(np.arange(1, ydim + 1, dtype=float), xdim)
    x = x + 0.5 * (y % 2)
    y = y * math.sqrt(3) / 2
    return np.column_stack([x, y])


def build_grid(n_samples: int, neighbourhood_fct='gaussian') -> GridTopology:
    """Build the square hexagonal grid used for ``n_samples`` individuals."""
    side = grid_side(n_samples)

    if isinstance(neighbourhood_fct, NeighborhoodFunction):
        fct = neighbourhood_fct
    else:
        try:
            fct = NeighborhoodFunction(str(neighbourhood_fct).lower())
        except ValueError as e:
            raise ConfigurationError(
                f"Unknown neighbourhood function '{neighbourhood_fct}'", e
            )

    return GridTopology(
        xdim=side,
        ydim=side,
        neighbourhood_fct=fct,
        topology="hexagonal",
        pts=hexagonal_positions(side, side)
    )
