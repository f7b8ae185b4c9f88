"""
SOM species delimitation analyzer.

Runs the complete delimitation:
- Precondition and validate the input layers
- Build the hexagonal grid
- Train the replicate ensemble (SOM or SuperSOM per replicate)
- Match labels across replicates and build the Q-matrix
"""

import time
from contextlib import contextmanager
from datetime import datetime
from typing import Optional, Callable, Union, Mapping, Sequence, List

from somdelim.abstractions.types.som_types import GridTopology
from somdelim.abstractions.types.delimitation_types import (
    InputLayer, DelimitationResult, EnsembleResult, QMatrix
)
from somdelim.config.delimitation_config import DelimitationConfig, get_delimitation_config
from somdelim.core.result_cache import ResultCache, compute_fingerprint
from somdelim.ensemble import train_ensemble
from somdelim.exceptions import ConfigurationError
from somdelim.infrastructure.logging import get_logger, LoggingContext, log_operation
from somdelim.methods.som.grid import build_grid
from somdelim.methods.clustering.label_matching import LabelMatcher
from somdelim.shared.data.preprocessing import MatrixPreconditioner, PreconditionReport

logger = get_logger(__name__)

# Share of the overall progress spent training replicates
TRAINING_PROGRESS_START = 0.1
TRAINING_PROGRESS_END = 0.9


class SOMDelimitationAnalyzer:
    """Unsupervised species delimitation with self-organizing map ensembles."""

    def __init__(self,
                 config: Optional[DelimitationConfig] = None,
                 progress_callback: Optional[Callable[[str, float], None]] = None,
                 experiment_id: Optional[str] = None,
                 stage_callback: Optional[Callable[[str], None]] = None):
        """
        Initialize the analyzer.

        Args:
            config: Run configuration (the shared configuration when None)
            progress_callback: Optional callback receiving (message, fraction)
            experiment_id: Run ID for log correlation (generated if None)
            stage_callback: Optional callback receiving the name of every
                stage as it starts (precondition, train_ensemble, label_matching)
        """
        self.config = config if config is not None else get_delimitation_config().get_config()
        self.progress_callback = progress_callback
        self.experiment_id = experiment_id
        self.stage_callback = stage_callback
        self.cache = ResultCache()

    def update_progress(self, message: str, progress: float) -> None:
        """Report progress through the callback, or log it."""
        if self.progress_callback:
            self.progress_callback(message, progress)
        else:
            logger.info(f"{message} ({progress*100:.0f}%)")

    def analyze(self,
                layers: Union[Mapping, Sequence, object],
                row_names: Optional[Sequence[str]] = None,
                reference_layer: Optional[str] = None,
                **overrides) -> DelimitationResult:
        """
        Delimit clusters among the individuals described by ``layers``.

        Args:
            layers: Mapping name -> matrix, sequence of matrices or one matrix
            row_names: Row identifiers for numpy input
            reference_layer: Name of the layer used as label reference
                (first layer when None)
            **overrides: Configuration fields overriding ``self.config``

        Returns:
            DelimitationResult with ensemble and Q-matrix

        Raises:
            DelimitationError: On invalid input or configuration
        """
        config = self.config.with_overrides(**overrides).validate()
        ctx = LoggingContext(self.experiment_id)

        with ctx.pipeline('som_delimitation',
                          n_replicates=config.n_replicates, max_k=config.max_k):
            with self._stage(ctx, 'precondition'):
                self.update_progress("Preconditioning input layers", 0.0)
                preconditioner = MatrixPreconditioner(missing_markers=config.missing_markers)
                prepared, report = preconditioner.prepare(layers, row_names)

            grid = build_grid(prepared[0].n_samples, config.neighbourhood_fct)
            reference = self._select_reference(prepared, reference_layer)
            self._validate_against_data(config, prepared, grid)

            fingerprint = compute_fingerprint(
                {**config.to_dict(), 'reference_layer': reference.name}, prepared
            )
            result = self.cache.load_or_compute(
                config.output_path,
                lambda: self._compute(ctx, prepared, report, reference, grid, config),
                fingerprint,
                force=config.overwrite
            )

        self.update_progress("Delimitation complete", 1.0)
        return result

    def _compute(self, ctx: LoggingContext, layers: List[InputLayer],
                 report: PreconditionReport, reference: InputLayer,
                 grid: GridTopology, config: DelimitationConfig) -> DelimitationResult:
        start = time.time()
        logger.info(
            f"Training {config.n_replicates} replicates on a {grid.xdim}x{grid.ydim} "
            f"hexagonal grid with {len(layers)} layer(s)"
        )

        with self._stage(ctx, 'train_ensemble', n_replicates=config.n_replicates):
            ensemble = train_ensemble(layers, grid, config, self._training_progress)

        with self._stage(ctx, 'label_matching'):
            self.update_progress("Matching labels across replicates", TRAINING_PROGRESS_END)
            q_matrix = self._build_q_matrix(ensemble, reference, config)

        return DelimitationResult(
            ensemble=ensemble,
            q_matrix=q_matrix,
            layers=layers,
            preconditioning=report.to_dict(),
            config=config.to_dict(),
            runtime_seconds=time.time() - start,
            timestamp=datetime.now().isoformat()
        )

    @log_operation("build_q_matrix")
    def _build_q_matrix(self, ensemble: EnsembleResult, reference: InputLayer,
                        config: DelimitationConfig) -> QMatrix:
        matcher = LabelMatcher(
            max_k=config.max_k,
            n_init=config.kmeans_n_init,
            max_iter=config.kmeans_max_iter,
            random_state=config.random_seed
        )
        return matcher.build_q_matrix(ensemble, reference, n_replicates=config.n_replicates)

    @contextmanager
    def _stage(self, ctx: LoggingContext, name: str, **metadata):
        if self.stage_callback:
            self.stage_callback(name)
        with ctx.stage(name, **metadata):
            yield

    def _training_progress(self, message: str, fraction: float) -> None:
        span = TRAINING_PROGRESS_END - TRAINING_PROGRESS_START
        self.update_progress(message, TRAINING_PROGRESS_START + span * fraction)

    @staticmethod
    def _select_reference(layers: List[InputLayer], name: Optional[str]) -> InputLayer:
        if name is None:
            return layers[0]
        for layer in layers:
            if layer.name == name:
                return layer
        raise ConfigurationError(
            f"Reference layer '{name}' not found, available: {[l.name for l in layers]}"
        )

    @staticmethod
    def _validate_against_data(config: DelimitationConfig, layers: List[InputLayer],
                               grid: GridTopology) -> None:
        """Check parameters that depend on the data size."""
        n_samples = layers[0].n_samples
        if config.max_k > n_samples:
            raise ConfigurationError(
                f"max_k ({config.max_k}) exceeds the number of samples ({n_samples})"
            )
        if config.max_k > grid.n_units:
            raise ConfigurationError(
                f"max_k ({config.max_k}) exceeds the number of map units ({grid.n_units})"
            )
        if config.layer_weights is not None and len(config.layer_weights) != len(layers):
            raise ConfigurationError(
                f"Got {len(config.layer_weights)} layer weights for {len(layers)} layers"
            )
