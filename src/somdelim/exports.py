"""Tabular views of delimitation results for plotting and export."""

from pathlib import Path
from typing import Dict, List, Optional, Union
import numpy as np
import pandas as pd
import logging

from somdelim.abstractions.types.delimitation_types import (
    EnsembleResult, QMatrix, ReplicateResult, DelimitationResult
)

logger = logging.getLogger(__name__)


def _replicate_columns(ensemble: EnsembleResult) -> List[str]:
    return [f"replicate_{int(r) + 1}" for r in ensemble.replicate_ids]


def learning_traces(ensemble: EnsembleResult) -> Dict[str, pd.DataFrame]:
    """Mean distance to the winning unit per epoch (rows) and replicate (columns)."""
    columns = _replicate_columns(ensemble)
    traces = {}
    for name, values in ensemble.learning.items():
        traces[name] = pd.DataFrame(
            values,
            index=pd.RangeIndex(1, values.shape[0] + 1, name='epoch'),
            columns=columns
        )
    return traces


def distance_weights_table(ensemble: EnsembleResult) -> Optional[pd.DataFrame]:
    """Layer distance weights per replicate, None for single-layer runs."""
    if ensemble.distance_weights is None:
        return None
    return pd.DataFrame(
        ensemble.distance_weights,
        index=pd.Index(_replicate_columns(ensemble), name='replicate'),
        columns=ensemble.layer_names
    )


def bic_table(ensemble: EnsembleResult) -> pd.DataFrame:
    """BIC-like score per number of clusters (rows) and replicate (columns)."""
    return pd.DataFrame(
        ensemble.bic_mat,
        index=pd.RangeIndex(1, ensemble.bic_mat.shape[0] + 1, name='k'),
        columns=_replicate_columns(ensemble)
    )


def k_frequency_table(ensemble: EnsembleResult) -> pd.DataFrame:
    """How often every k was selected."""
    frequency = ensemble.k_frequency()
    total = sum(frequency.values())
    return pd.DataFrame({
        'k': list(frequency.keys()),
        'count': list(frequency.values()),
        'proportion': [c / total for c in frequency.values()] if total else []
    })


def q_matrix_frame(q_matrix: QMatrix) -> pd.DataFrame:
    """Membership proportions with one column per cluster."""
    return pd.DataFrame(
        q_matrix.values,
        index=pd.Index(q_matrix.row_names, name='individual'),
        columns=[f"cluster_{c + 1}" for c in range(q_matrix.n_clusters)]
    )


def cluster_sizes(q_matrix: QMatrix) -> Dict[int, int]:
    """Number of individuals whose most frequent cluster is each cluster."""
    counts = np.bincount(q_matrix.assignments(), minlength=q_matrix.n_clusters + 1)[1:]
    return {c + 1: int(n) for c, n in enumerate(counts)}


def codebook_frames(replicate: ReplicateResult,
                    column_names: Optional[Dict[str, List[str]]] = None) -> Dict[str, pd.DataFrame]:
    """Codebook vectors of one replicate, one frame per layer."""
    frames = {}
    for name, codes in replicate.model.codes.items():
        columns = (column_names or {}).get(name)
        if columns is None or len(columns) != codes.shape[1]:
            columns = [f"V{j + 1}" for j in range(codes.shape[1])]
        frames[name] = pd.DataFrame(
            codes,
            index=pd.RangeIndex(1, codes.shape[0] + 1, name='unit'),
            columns=columns
        )
    return frames


def unit_assignments(replicate: ReplicateResult) -> pd.DataFrame:
    """Cluster label, grid position and sample count of every unit."""
    grid = replicate.model.grid
    counts = np.bincount(replicate.model.unit_classif, minlength=grid.n_units)
    return pd.DataFrame({
        'unit': np.arange(1, grid.n_units + 1),
        'x': grid.pts[:, 0],
        'y': grid.pts[:, 1],
        'cluster': replicate.unit_labels,
        'n_samples': counts
    })


def variable_importance(replicate: ReplicateResult,
                        column_names: Optional[Dict[str, List[str]]] = None) -> pd.DataFrame:
    """Share of every variable's codebook variance explained by the unit clusters.

    Values are between-cluster sum of squares divided by total sum of squares,
    0 for variables that are constant across units.
    """
    rows = []
    labels = replicate.unit_labels
    for name, frame in codebook_frames(replicate, column_names).items():
        codes = frame.to_numpy()
        grand_mean = codes.mean(axis=0)
        total_ss = np.sum((codes - grand_mean) ** 2, axis=0)

        between_ss = np.zeros(codes.shape[1])
        for label in np.unique(labels):
            members = codes[labels == label]
            between_ss += len(members) * (members.mean(axis=0) - grand_mean) ** 2

        with np.errstate(invalid='ignore', divide='ignore'):
            share = np.where(total_ss > 0, between_ss / total_ss, 0.0)
        share = np.clip(share, 0.0, 1.0)

        for variable, value in zip(frame.columns, share):
            rows.append({'layer': name, 'variable': variable, 'importance': float(value)})

    return pd.DataFrame(rows, columns=['layer', 'variable', 'importance'])


def write_outputs(result: DelimitationResult, output_dir: Union[str, Path]) -> List[Path]:
    """Write the standard result tables as CSV files.

    Returns:
        Paths of the written files
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    ensemble = result.ensemble
    written = []

    def write(frame: pd.DataFrame, filename: str, index: bool = True):
        path = output_dir / filename
        frame.to_csv(path, index=index)
        written.append(path)

    write(q_matrix_frame(result.q_matrix), 'q_matrix.csv')
    write(bic_table(ensemble), 'bic.csv')
    write(k_frequency_table(ensemble), 'k_frequency.csv', index=False)
    for name, frame in learning_traces(ensemble).items():
        write(frame, f"learning_{name}.csv")

    weights = distance_weights_table(ensemble)
    if weights is not None:
        write(weights, 'distance_weights.csv')

    logger.info(f"Wrote {len(written)} result tables to {output_dir}")
    return written
