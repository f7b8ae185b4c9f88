"""Tests for hexagonal grid construction."""

import math
import pytest
import numpy as np

from somdelim.abstractions.types.som_types import NeighborhoodFunction
from somdelim.exceptions import ConfigurationError
from somdelim.methods.som.grid import grid_side, build_grid, hexagonal_positions


class TestGridSide:
    """Test the map size heuristic."""

    @pytest.mark.parametrize("n_samples, expected", [
        (1, 2),
        (50, 6),
        (100, 7),
        (1000, 13),
    ])
    def test_side_for_sample_count(self, n_samples, expected):
        assert grid_side(n_samples) == expected

    @pytest.mark.parametrize("n_samples", [0, -5, 2.5])
    def test_invalid_sample_count(self, n_samples):
        with pytest.raises(ConfigurationError):
            grid_side(n_samples)


class TestBuildGrid:
    """Test the grid topology object."""

    def test_square_hexagonal_grid(self):
        grid = build_grid(50)

        assert grid.xdim == 6
        assert grid.ydim == 6
        assert grid.n_units == 36
        assert grid.topology == "hexagonal"
        assert grid.neighbourhood_fct == NeighborhoodFunction.GAUSSIAN
        assert grid.pts.shape == (36, 2)

    def test_neighbourhood_from_string(self):
        assert build_grid(20, 'bubble').neighbourhood_fct == NeighborhoodFunction.BUBBLE
        assert build_grid(20, NeighborhoodFunction.BUBBLE).neighbourhood_fct == NeighborhoodFunction.BUBBLE

    def test_unknown_neighbourhood(self):
        with pytest.raises(ConfigurationError):
            build_grid(20, 'triangle')

    def test_hexagonal_positions(self):
        pts = hexagonal_positions(3, 2)

        # x varies fastest, odd rows are shifted by half a unit
        np.testing.assert_allclose(pts[:3, 0], [1.5, 2.5, 3.5])
        np.testing.assert_allclose(pts[3:, 0], [1.0, 2.0, 3.0])
        np.testing.assert_allclose(pts[:3, 1], math.sqrt(3) / 2)
        np.testing.assert_allclose(pts[3:, 1], math.sqrt(3))

    def test_direct_neighbours_at_unit_distance(self):
        grid = build_grid(50)
        dist = grid.unit_distances()

        assert dist.shape == (36, 36)
        np.testing.assert_allclose(np.diag(dist), 0.0)
        np.testing.assert_allclose(dist, dist.T)
        # Every unit has between 2 and 6 neighbours at distance 1
        neighbours = np.sum(np.isclose(dist, 1.0), axis=1)
        assert neighbours.min() >= 2
        assert neighbours.max() == 6

    def test_unit_distances_match_positions(self):
        grid = build_grid(4)
        dist = grid.unit_distances()

        for i, j in [(0, 1), (0, 2), (1, 2), (0, 3)]:
            assert dist[i, j] == pytest.approx(np.linalg.norm(grid.pts[i] - grid.pts[j]))
        assert dist[0, 1] == pytest.approx(1.0)
