"""Online SOM / SuperSOM training with missing-value aware distances.

One map is trained on one or more layers that share their rows. The
per-layer distance is the mean squared difference over the variables both
vectors have, scaled back to the layer width. Layers are combined with
distance weights that are re-estimated after every epoch so each layer
contributes about equally to the choice of the winning unit.
"""

import numpy as np
from typing import Optional, List, Callable, Tuple
import logging

from somdelim.abstractions.types.som_types import GridTopology, SOMModel, NeighborhoodFunction
from somdelim.abstractions.types.delimitation_types import InputLayer
from somdelim.config.delimitation_config import DelimitationConfig
from somdelim.exceptions import ConfigurationError, ShapeMismatchError
from .constants import (
    INVALID_DISTANCE, INVALID_INDEX, INITIAL_RADIUS_QUANTILE,
    MIN_NEIGHBOURHOOD_RADIUS, MIN_LAYER_DISTANCE, NO_ELIGIBLE_UNIT_MSG
)

logger = logging.getLogger(__name__)


def layer_distances(sample: np.ndarray, codes: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """Distance of one sample to every unit of one layer.

    Args:
        sample: Layer vector of one individual (n_vars,), may contain NaN
        codes: Layer codebook (n_units, n_vars), may contain NaN

    Returns:
        Tuple of (distances, fraction of non-comparable variables) per unit.
        Units without any comparable variable get INVALID_DISTANCE.
    """
    n_vars = codes.shape[1]
    valid = ~np.isnan(codes) & ~np.isnan(sample)[np.newaxis, :]
    n_valid = valid.sum(axis=1)

    diff = np.where(valid, codes - np.nan_to_num(sample)[np.newaxis, :], 0.0)
    sq_sum = np.sum(diff ** 2, axis=1)

    with np.errstate(invalid='ignore', divide='ignore'):
        dist = np.where(n_valid > 0, sq_sum / n_valid * n_vars, INVALID_DISTANCE)

    na_fraction = 1.0 - n_valid / n_vars if n_vars else np.ones(len(codes))
    return dist, na_fraction


def neighbourhood(grid_dist: np.ndarray, radius: float,
                  fct: NeighborhoodFunction) -> np.ndarray:
    """Neighbourhood strength of every unit given its grid distance to the winner.

    Below a radius of 1 only the winner (grid distance 0) is updated.
    """
    if radius < MIN_NEIGHBOURHOOD_RADIUS:
        return (grid_dist == 0).astype(float)

    inside = grid_dist <= radius
    if fct == NeighborhoodFunction.BUBBLE:
        return inside.astype(float)

    return np.where(inside, np.exp(-(grid_dist ** 2) / (2 * radius ** 2)), 0.0)


class SuperSOM:
    """Hexagonal self-organizing map over one or several aligned layers.

    A single layer is the plain SOM case with a fixed distance weight of 1.
    """

    def __init__(self, grid: GridTopology, config: DelimitationConfig,
                 rng: Optional[np.random.Generator] = None):
        self.grid = grid
        self.config = config
        self.rng = rng if rng is not None else np.random.default_rng(config.random_seed)

        self.codes: Optional[List[np.ndarray]] = None
        self.weights: Optional[np.ndarray] = None
        self.user_weights: Optional[np.ndarray] = None
        self._unit_dist = grid.unit_distances()

    def fit(self, layers: List[InputLayer],
            epoch_callback: Optional[Callable[[int, int], None]] = None) -> SOMModel:
        """Train the map.

        Args:
            layers: Preconditioned layers with identical rows
            epoch_callback: Optional callable receiving (epoch, n_steps)

        Returns:
            Trained SOMModel
        """
        data = self._validate_layers(layers)
        n_samples = data[0].shape[0]
        n_steps = self.config.n_steps
        names = [layer.name for layer in layers]

        self._init_codes(data)
        self._init_weights(data)

        alpha_start, alpha_end = self.config.learning_rate
        radius_start = float(np.quantile(self._unit_dist, INITIAL_RADIUS_QUANTILE))
        total = n_steps * n_samples
        changes = np.zeros((len(data), n_steps))

        presentation = 0
        for epoch in range(n_steps):
            order = self.rng.permutation(n_samples)
            epoch_dist = np.full((len(data), n_samples), np.nan)

            for i in order:
                progress = presentation / total
                alpha = alpha_start - (alpha_start - alpha_end) * progress
                radius = radius_start * (1.0 - progress)

                sample = [layer_data[i] for layer_data in data]
                bmu, per_layer = self._find_bmu(sample)
                epoch_dist[:, i] = per_layer[:, bmu]

                h = neighbourhood(self._unit_dist[bmu], radius, self.grid.neighbourhood_fct)
                self._update(sample, h, alpha)
                presentation += 1

            changes[:, epoch] = self._mean_finite(epoch_dist)
            if len(data) > 1:
                self._reestimate_weights(changes[:, epoch])

            if epoch % 10 == 0 or epoch == n_steps - 1:
                logger.debug(f"Epoch {epoch + 1}/{n_steps}: mean BMU distance "
                             f"{np.round(changes[:, epoch], 6).tolist()}")
            if epoch_callback:
                epoch_callback(epoch + 1, n_steps)

        self._fill_unresolved_codes(data)
        unit_classif = self.map_samples(layers)

        return SOMModel(
            grid=self.grid,
            codes={name: codes.copy() for name, codes in zip(names, self.codes)},
            changes={name: changes[k] for k, name in enumerate(names)},
            distance_weights=self.weights.copy(),
            unit_classif=unit_classif
        )

    def map_samples(self, layers: List[InputLayer]) -> np.ndarray:
        """Winning unit (0-based) of every individual under the current map."""
        if self.codes is None:
            raise ConfigurationError("The map has not been trained yet")

        data = [layer.data for layer in layers]
        n_samples = data[0].shape[0]
        classif = np.full(n_samples, INVALID_INDEX, dtype=int)
        for i in range(n_samples):
            classif[i], _ = self._find_bmu([layer_data[i] for layer_data in data])
        return classif

    def _validate_layers(self, layers: List[InputLayer]) -> List[np.ndarray]:
        if not layers:
            raise ConfigurationError("At least one layer is required for training")

        data = [np.asarray(layer.data, dtype=float) for layer in layers]
        n_samples = data[0].shape[0]
        for layer, layer_data in zip(layers, data):
            if layer_data.shape[0] != n_samples:
                raise ShapeMismatchError(
                    f"Layer '{layer.name}' has {layer_data.shape[0]} rows, expected {n_samples}"
                )
        if n_samples == 0:
            raise ConfigurationError("Cannot train a map without samples")

        if self.config.layer_weights is not None:
            if len(self.config.layer_weights) != len(data):
                raise ConfigurationError(
                    f"Got {len(self.config.layer_weights)} layer weights for {len(data)} layers"
                )
            self.user_weights = np.asarray(self.config.layer_weights, dtype=float)
        else:
            self.user_weights = np.ones(len(data))

        return data

    def _init_codes(self, data: List[np.ndarray]) -> None:
        """Initialize prototypes from randomly drawn individuals."""
        n_samples = data[0].shape[0]
        n_units = self.grid.n_units
        starters = self.rng.choice(n_samples, n_units, replace=n_units > n_samples)
        self.codes = [layer_data[starters].copy() for layer_data in data]

    def _init_weights(self, data: List[np.ndarray]) -> None:
        """Inverse mean layer distance of the initial map."""
        if len(data) == 1:
            self.weights = np.array([1.0])
            return

        # Equal weights while measuring the initial distances
        self.weights = np.full(len(data), 1.0 / len(data))
        mean_dist = np.zeros(len(data))
        for k, (layer_data, codes) in enumerate(zip(data, self.codes)):
            dists = np.array([layer_distances(row, codes)[0] for row in layer_data])
            finite = dists[np.isfinite(dists)]
            mean_dist[k] = finite.mean() if finite.size else np.nan

        self._reestimate_weights(mean_dist)
        logger.debug(f"Initial distance weights: {np.round(self.weights, 4).tolist()}")

    def _reestimate_weights(self, mean_dist: np.ndarray) -> None:
        """Weights inversely proportional to the mean layer distance, summing to 1.

        Layers without a measurable distance keep their current share.
        """
        usable = np.isfinite(mean_dist)
        if not usable.any():
            return

        raw = self.weights.astype(float).copy()
        inverse = self.user_weights[usable] / np.maximum(mean_dist[usable], MIN_LAYER_DISTANCE)
        if usable.all():
            raw = inverse
        else:
            raw[usable] = inverse / inverse.sum() * raw[usable].sum()

        self.weights = raw / raw.sum()

    def _find_bmu(self, sample: List[np.ndarray]) -> Tuple[int, np.ndarray]:
        """Winning unit of one individual and its per-layer distances to all units."""
        tolerance = self.config.max_na_fraction
        n_units = self.grid.n_units
        per_layer = np.empty((len(sample), n_units))
        eligible = np.ones(n_units, dtype=bool)
        active = np.zeros(len(sample), dtype=bool)

        for k, (x, codes) in enumerate(zip(sample, self.codes)):
            dist, na_fraction = layer_distances(x, codes)
            per_layer[k] = dist
            # Layers the individual itself mostly lacks do not take part
            if x.size and np.isnan(x).mean() <= tolerance:
                active[k] = True
                eligible &= na_fraction <= tolerance

        if active.any() and eligible.any():
            total = np.sum(self.weights[active, np.newaxis] * per_layer[active], axis=0)
            total = np.where(eligible, total, INVALID_DISTANCE)
            if np.isfinite(total).any():
                return int(np.argmin(total)), per_layer

        logger.debug(NO_ELIGIBLE_UNIT_MSG)
        fallback = np.where(np.isfinite(per_layer), per_layer, 0.0)
        total = np.sum(self.weights[:, np.newaxis] * fallback, axis=0)
        return int(np.argmin(total)), per_layer

    def _update(self, sample: List[np.ndarray], h: np.ndarray, alpha: float) -> None:
        """Move the neighbourhood of the winner towards the sample."""
        units = np.flatnonzero(h > 0)
        strength = (alpha * h[units])[:, np.newaxis]

        for x, codes in zip(sample, self.codes):
            cols = np.flatnonzero(~np.isnan(x))
            if cols.size == 0:
                continue
            block = codes[np.ix_(units, cols)]
            target = x[cols][np.newaxis, :]
            updated = block + strength * (target - block)
            # Missing prototype entries adopt the sample value
            codes[np.ix_(units, cols)] = np.where(np.isnan(block), target, updated)

    def _fill_unresolved_codes(self, data: List[np.ndarray]) -> None:
        """Replace prototype entries no sample ever reached with the column mean."""
        for layer_data, codes in zip(data, self.codes):
            missing = np.isnan(codes)
            if not missing.any():
                continue
            counts = np.sum(~np.isnan(layer_data), axis=0)
            sums = np.nansum(layer_data, axis=0)
            col_means = np.where(counts > 0, sums / np.maximum(counts, 1), 0.5)
            codes[missing] = np.broadcast_to(col_means, codes.shape)[missing]
            logger.debug(f"Filled {missing.sum()} unresolved prototype entries with column means")

    @staticmethod
    def _mean_finite(dist: np.ndarray) -> np.ndarray:
        means = np.full(dist.shape[0], np.nan)
        for k, row in enumerate(dist):
            finite = row[np.isfinite(row)]
            if finite.size:
                means[k] = finite.mean()
        return means
