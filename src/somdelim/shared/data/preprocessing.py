"""Input matrix preconditioning for SOM delimitation."""

import numpy as np
import pandas as pd
from dataclasses import dataclass, field
from typing import Tuple, Dict, Any, Optional, List, Mapping, Sequence, Union
import logging

from somdelim.abstractions.types.delimitation_types import InputLayer
from somdelim.exceptions import DataTypeError, ShapeMismatchError, LabelMismatchError

logger = logging.getLogger(__name__)

MatrixLike = Union[pd.DataFrame, np.ndarray]

DEFAULT_MISSING_MARKERS = ('?', '-', 'NA', '')


@dataclass
class LayerReport:
    """What preconditioning did to one layer."""
    name: str
    n_samples: int
    n_features: int
    dropped_columns: List[str] = field(default_factory=list)
    normalized: bool = False
    original_range: Tuple[float, float] = (np.nan, np.nan)
    missing_fraction: float = 0.0
    constant: bool = False


@dataclass
class PreconditionReport:
    """Per-layer notes collected while preparing the input matrices."""
    layers: Dict[str, LayerReport] = field(default_factory=dict)
    notices: List[str] = field(default_factory=list)

    @property
    def any_normalized(self) -> bool:
        return any(r.normalized for r in self.layers.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            'layers': {
                name: {
                    'n_samples': r.n_samples,
                    'n_features': r.n_features,
                    'dropped_columns': list(r.dropped_columns),
                    'normalized': r.normalized,
                    'original_range': [float(v) for v in r.original_range],
                    'missing_fraction': r.missing_fraction,
                    'constant': r.constant
                }
                for name, r in self.layers.items()
            },
            'notices': list(self.notices)
        }


class MatrixPreconditioner:
    """Turn raw matrices into validated, [0, 1]-scaled InputLayers.

    Missing markers become NaN and are preserved. Zero-variance columns are
    dropped, and every matrix whose range is not exactly [0, 1] is min-max
    scaled as a whole.
    """

    def __init__(self,
                 missing_markers: Optional[Sequence[str]] = None,
                 variance_threshold: float = 0.0):
        self.missing_markers = list(DEFAULT_MISSING_MARKERS if missing_markers is None
                                    else missing_markers)
        self.variance_threshold = variance_threshold

    def prepare(self, layers: Union[Mapping[str, MatrixLike], Sequence[MatrixLike], MatrixLike],
                row_names: Optional[Sequence[str]] = None
                ) -> Tuple[List[InputLayer], PreconditionReport]:
        """Validate and normalize the input layers.

        Args:
            layers: Mapping name -> matrix, sequence of matrices or one matrix
            row_names: Row identifiers for numpy input without its own

        Returns:
            Tuple of (preconditioned layers, report)

        Raises:
            DataTypeError: If a matrix holds non-numeric values
            ShapeMismatchError: If layers differ in row count
            LabelMismatchError: If layers differ in row identifiers
        """
        named = self._as_named_frames(layers, row_names)

        # Structure is checked on every layer before anything is transformed
        frames = {name: self._coerce_numeric(name, frame) for name, frame in named.items()}
        self._check_structure(frames)

        report = PreconditionReport()
        prepared = []
        for name, frame in frames.items():
            layer, layer_report = self._prepare_layer(name, frame, report)
            prepared.append(layer)
            report.layers[name] = layer_report

        return prepared, report

    def _as_named_frames(self, layers, row_names) -> Dict[str, pd.DataFrame]:
        if isinstance(layers, (pd.DataFrame, np.ndarray)):
            items = [('layer_1', layers)]
        elif isinstance(layers, Mapping):
            items = [(str(name), matrix) for name, matrix in layers.items()]
        elif isinstance(layers, Sequence) and not isinstance(layers, str):
            items = [(f'layer_{i + 1}', matrix) for i, matrix in enumerate(layers)]
        else:
            raise DataTypeError(
                f"Layers must be a matrix, a sequence or a mapping of matrices, "
                f"got {type(layers).__name__}"
            )

        if not items:
            raise DataTypeError("At least one input layer is required")

        frames = {}
        for name, matrix in items:
            if isinstance(matrix, pd.DataFrame):
                frame = matrix.copy()
                frame.index = frame.index.map(str)
            else:
                array = np.asarray(matrix, dtype=object)
                if array.ndim != 2:
                    raise DataTypeError(
                        f"Layer '{name}' must be two-dimensional, got {array.ndim} dimensions"
                    )
                index = (list(row_names) if row_names is not None
                         else [f"ind_{i + 1}" for i in range(array.shape[0])])
                if len(index) != array.shape[0]:
                    raise ShapeMismatchError(
                        f"Layer '{name}' has {array.shape[0]} rows but {len(index)} row names were given"
                    )
                frame = pd.DataFrame(
                    array,
                    index=[str(r) for r in index],
                    columns=[f"V{j + 1}" for j in range(array.shape[1])]
                )
            frame.columns = frame.columns.map(str)
            frames[name] = frame
        return frames

    def _coerce_numeric(self, name: str, frame: pd.DataFrame) -> pd.DataFrame:
        """Replace missing markers with NaN and convert to float."""
        cleaned = frame.replace(self.missing_markers, np.nan)
        try:
            numeric = cleaned.apply(pd.to_numeric, errors='raise')
        except (ValueError, TypeError) as e:
            raise DataTypeError(f"Layer '{name}' contains non-numeric values: {e}", e)
        return numeric.astype(float)

    def _check_structure(self, frames: Dict[str, pd.DataFrame]) -> None:
        names = list(frames)
        first = frames[names[0]]

        for name in names[1:]:
            if frames[name].shape[0] != first.shape[0]:
                raise ShapeMismatchError(
                    f"Layer '{name}' has {frames[name].shape[0]} rows, "
                    f"layer '{names[0]}' has {first.shape[0]}"
                )

        for name in names[1:]:
            if list(frames[name].index) != list(first.index):
                mismatched = [
                    (a, b) for a, b in zip(first.index, frames[name].index) if a != b
                ]
                raise LabelMismatchError(
                    f"Row names of layer '{name}' do not match layer '{names[0]}' "
                    f"({len(mismatched)} differences, first: {mismatched[0]})"
                )

    def _prepare_layer(self, name: str, frame: pd.DataFrame,
                       report: PreconditionReport) -> Tuple[InputLayer, LayerReport]:
        data = frame.to_numpy(dtype=float)
        columns = list(frame.columns)
        layer_report = LayerReport(name=name, n_samples=data.shape[0], n_features=data.shape[1])

        data, columns, dropped = self._drop_constant_columns(name, data, columns)
        layer_report.dropped_columns = dropped

        if np.all(np.isnan(data)):
            logger.warning(f"Layer '{name}' contains only missing values")
            lo = hi = np.nan
        else:
            lo, hi = float(np.nanmin(data)), float(np.nanmax(data))
        layer_report.original_range = (lo, hi)

        if not np.isnan(lo) and not (lo == 0.0 and hi == 1.0):
            if hi > lo:
                data = (data - lo) / (hi - lo)
            else:
                logger.warning(f"Layer '{name}' is constant ({lo}), scaling to zeros")
                data = np.where(np.isnan(data), np.nan, 0.0)
                layer_report.constant = True
            layer_report.normalized = True
            notice = (f"Layer '{name}' was min-max normalized from [{lo:.4g}, {hi:.4g}] to [0, 1]")
            report.notices.append(notice)
            logger.info(notice)

        layer_report.n_features = data.shape[1]
        layer = InputLayer(
            name=name,
            data=data,
            row_names=list(frame.index),
            column_names=columns
        )
        layer_report.missing_fraction = layer.missing_fraction
        return layer, layer_report

    def _drop_constant_columns(self, name: str, data: np.ndarray, columns: List[str]
                               ) -> Tuple[np.ndarray, List[str], List[str]]:
        """Remove zero-variance and all-missing columns."""
        all_missing = np.all(np.isnan(data), axis=0)
        with np.errstate(invalid='ignore', divide='ignore'):
            variances = np.nanvar(np.where(all_missing, 0.0, data), axis=0)
        keep = (variances > self.variance_threshold) & ~all_missing

        if keep.all():
            return data, columns, []

        if not keep.any():
            logger.warning(
                f"All {len(columns)} columns of layer '{name}' have zero variance, keeping them"
            )
            return data, columns, []

        dropped = [c for c, k in zip(columns, keep) if not k]
        logger.warning(f"Dropped {len(dropped)} zero-variance columns from layer '{name}'")
        return data[:, keep], [c for c, k in zip(columns, keep) if k], dropped
