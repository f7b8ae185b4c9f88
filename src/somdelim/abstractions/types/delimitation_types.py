"""Data types for the delimitation ensemble and its results."""

from dataclasses import dataclass, field
from typing import Optional, List, Dict, Any
import numpy as np

from .som_types import SOMModel


@dataclass
class InputLayer:
    """One preconditioned data matrix.

    Rows are individuals, columns are variables. Values are in [0, 1] after
    preconditioning and NaN marks missing entries.
    """
    name: str
    data: np.ndarray
    row_names: List[str]
    column_names: List[str]

    @property
    def n_samples(self) -> int:
        return self.data.shape[0]

    @property
    def n_features(self) -> int:
        return self.data.shape[1]

    @property
    def missing_fraction(self) -> float:
        if self.data.size == 0:
            return 0.0
        return float(np.isnan(self.data).mean())


@dataclass(frozen=True)
class ClusterCountTrial:
    """WSS and BIC-like scores for k = 1..max_k of one replicate."""
    k_values: np.ndarray
    wss: np.ndarray
    bic: np.ndarray
    selected_k: int

    @property
    def max_k(self) -> int:
        return len(self.k_values)


@dataclass
class ReplicateResult:
    """Output of one training replicate.

    ``unit_labels`` and ``sample_labels`` hold cluster labels in 1..k.
    """
    replicate: int
    seed: Optional[int]
    model: SOMModel
    trial: ClusterCountTrial
    unit_labels: np.ndarray
    sample_labels: np.ndarray
    runtime_seconds: float = 0.0

    @property
    def k(self) -> int:
        return self.trial.selected_k


@dataclass
class EnsembleResult:
    """All replicates of a run, one column per replicate.

    Attributes:
        c_mat: Cluster label per individual and replicate (n_samples, n_replicates)
        bic_mat: BIC-like score per k and replicate (max_k, n_replicates)
        k_values: Selected k per replicate
        learning: Change trace per layer, each (n_steps, n_replicates)
        distance_weights: Layer weights per replicate (n_replicates, n_layers),
            None for single-layer runs
        replicates: Full per-replicate results
        replicate_ids: Replicate index of every column
        layer_names: Names of the training layers
        row_names: Individual identifiers
        config: Configuration echo
    """
    c_mat: np.ndarray
    bic_mat: np.ndarray
    k_values: np.ndarray
    learning: Dict[str, np.ndarray]
    distance_weights: Optional[np.ndarray]
    replicates: List[ReplicateResult]
    replicate_ids: np.ndarray
    layer_names: List[str]
    row_names: List[str]
    config: Dict[str, Any] = field(default_factory=dict)

    @property
    def n_replicates(self) -> int:
        """Number of replicate columns actually accumulated."""
        return self.c_mat.shape[1]

    @property
    def n_samples(self) -> int:
        return self.c_mat.shape[0]

    def k_frequency(self) -> Dict[int, int]:
        """How often each k was selected across replicates."""
        values, counts = np.unique(self.k_values, return_counts=True)
        return {int(k): int(c) for k, c in zip(values, counts)}


@dataclass
class QMatrix:
    """Membership proportions per individual across inferred clusters.

    Attributes:
        values: (n_samples, max observed k), rows sum to 1
        row_names: Individual identifiers
        reference_labels: Reference k-means labelling per k
        reference_layer: Name of the layer the reference was built from
        retained_replicates: Replicate indices that entered the matrix
        relabelled: Matched labels per individual and retained replicate
    """
    values: np.ndarray
    row_names: List[str]
    reference_labels: Dict[int, np.ndarray]
    reference_layer: str
    retained_replicates: List[int]
    relabelled: np.ndarray

    @property
    def n_clusters(self) -> int:
        return self.values.shape[1]

    def assignments(self) -> np.ndarray:
        """Most frequent cluster (1-based) per individual."""
        return np.argmax(self.values, axis=1) + 1


@dataclass
class DelimitationResult:
    """Everything a delimitation run produces, persisted as one bundle."""
    ensemble: EnsembleResult
    q_matrix: QMatrix
    layers: List[InputLayer]
    preconditioning: Dict[str, Any]
    config: Dict[str, Any]
    runtime_seconds: float
    timestamp: str
