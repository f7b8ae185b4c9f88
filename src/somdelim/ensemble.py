"""Replicate training and ensemble accumulation.

Every replicate trains its own map, selects its number of clusters and
labels the individuals. Replicates are independent, so they run either
serially or on a process pool; each gets a child seed spawned from the
global seed so results do not depend on scheduling.
"""

import time
import numpy as np
from concurrent.futures import ProcessPoolExecutor, TimeoutError as FutureTimeoutError
from typing import List, Optional, Callable, Dict, Any
import psutil

from somdelim.abstractions.types.som_types import GridTopology
from somdelim.abstractions.types.delimitation_types import (
    InputLayer, ReplicateResult, EnsembleResult
)
from somdelim.config.delimitation_config import DelimitationConfig
from somdelim.exceptions import ConfigurationError
from somdelim.infrastructure.logging import get_logger, replicate_context
from somdelim.methods.som.supersom_core import SuperSOM
from somdelim.methods.clustering.cluster_count import ClusterCountSelector
from somdelim.methods.clustering.codebook_clusterer import CodebookClusterer

logger = get_logger(__name__)

ProgressCallback = Callable[[str, float], None]


def spawn_seeds(random_seed: Optional[int], n_replicates: int) -> List[int]:
    """Independent per-replicate seeds derived from one global seed."""
    children = np.random.SeedSequence(random_seed).spawn(n_replicates)
    return [int(child.generate_state(1)[0]) for child in children]


def resolve_n_jobs(n_jobs: int, n_replicates: int) -> int:
    """Number of worker processes; -1 means all physical cores."""
    if n_jobs == -1:
        n_jobs = psutil.cpu_count(logical=False) or 1
    return max(1, min(n_jobs, n_replicates))


def run_replicate(layers: List[InputLayer], grid: GridTopology,
                  config: DelimitationConfig, replicate: int,
                  seed: Optional[int]) -> ReplicateResult:
    """Train, select k and cluster one replicate.

    Pure computation on its arguments, safe to run in a worker process.
    """
    token = replicate_context.set(replicate)
    try:
        start = time.time()
        rng = np.random.default_rng(seed)

        model = SuperSOM(grid, config, rng).fit(layers)

        selector = ClusterCountSelector(
            max_k=config.max_k,
            n_init=config.kmeans_n_init,
            max_iter=config.kmeans_max_iter
        )
        trial = selector.select(model.combined_codes(), rng)

        unit_labels, sample_labels = CodebookClusterer(config.linkage).cluster(
            model, trial.selected_k
        )

        runtime = time.time() - start
        logger.debug(f"Replicate {replicate} finished with k = {trial.selected_k} in {runtime:.2f}s")

        return ReplicateResult(
            replicate=replicate,
            seed=seed,
            model=model,
            trial=trial,
            unit_labels=unit_labels,
            sample_labels=sample_labels,
            runtime_seconds=runtime
        )
    finally:
        replicate_context.reset(token)


class EnsembleBuilder:
    """Accumulate replicate results into the ensemble matrices.

    Replicates may arrive in any order; each is stored at its own column.
    After ``finalize`` the builder accepts no further results.
    """

    def __init__(self, n_samples: int, n_replicates: int, max_k: int, n_steps: int,
                 layer_names: List[str], row_names: List[str],
                 config: Optional[Dict[str, Any]] = None):
        self.n_samples = n_samples
        self.n_replicates = n_replicates
        self.max_k = max_k
        self.n_steps = n_steps
        self.layer_names = list(layer_names)
        self.row_names = list(row_names)
        self.config = dict(config or {})
        self._results: Dict[int, ReplicateResult] = {}
        self._finalized = False

    @property
    def n_completed(self) -> int:
        return len(self._results)

    def add(self, result: ReplicateResult) -> None:
        """Store one replicate."""
        if self._finalized:
            raise RuntimeError("Cannot add replicates to a finalized ensemble")
        if not 0 <= result.replicate < self.n_replicates:
            raise ConfigurationError(
                f"Replicate index {result.replicate} outside 0..{self.n_replicates - 1}"
            )
        if result.replicate in self._results:
            raise ConfigurationError(f"Replicate {result.replicate} was already added")
        if len(result.sample_labels) != self.n_samples:
            raise ConfigurationError(
                f"Replicate {result.replicate} labels {len(result.sample_labels)} samples, "
                f"expected {self.n_samples}"
            )
        self._results[result.replicate] = result

    def finalize(self) -> EnsembleResult:
        """Assemble the ensemble from the completed replicates."""
        self._finalized = True
        order = sorted(self._results)
        results = [self._results[r] for r in order]

        if len(results) < self.n_replicates:
            logger.warning(
                f"Ensemble is partial: {len(results)} of {self.n_replicates} replicates completed"
            )

        c_mat = np.zeros((self.n_samples, len(results)), dtype=int)
        bic_mat = np.zeros((self.max_k, len(results)))
        learning = {name: np.zeros((self.n_steps, len(results))) for name in self.layer_names}
        multi_layer = len(self.layer_names) > 1
        weights = np.zeros((len(results), len(self.layer_names))) if multi_layer else None

        for col, result in enumerate(results):
            c_mat[:, col] = result.sample_labels
            bic_mat[:, col] = result.trial.bic
            for name in self.layer_names:
                learning[name][:, col] = result.model.changes[name]
            if multi_layer:
                weights[col] = result.model.distance_weights

        config = {'n_replicates': self.n_replicates, **self.config}

        return EnsembleResult(
            c_mat=c_mat,
            bic_mat=bic_mat,
            k_values=np.array([r.k for r in results], dtype=int),
            learning=learning,
            distance_weights=weights,
            replicates=results,
            replicate_ids=np.array(order, dtype=int),
            layer_names=self.layer_names,
            row_names=self.row_names,
            config=config
        )


def train_ensemble(layers: List[InputLayer], grid: GridTopology,
                   config: DelimitationConfig,
                   progress_callback: Optional[ProgressCallback] = None) -> EnsembleResult:
    """Train all replicates and accumulate them into an EnsembleResult.

    Args:
        layers: Preconditioned layers
        grid: Map grid shared by every replicate
        config: Validated configuration
        progress_callback: Optional callable receiving (message, fraction)
    """
    n_replicates = config.n_replicates
    seeds = spawn_seeds(config.random_seed, n_replicates)
    n_jobs = resolve_n_jobs(config.n_jobs, n_replicates)

    builder = EnsembleBuilder(
        n_samples=layers[0].n_samples,
        n_replicates=n_replicates,
        max_k=config.max_k,
        n_steps=config.n_steps,
        layer_names=[layer.name for layer in layers],
        row_names=layers[0].row_names,
        config=config.to_dict()
    )

    def report(result: ReplicateResult):
        builder.add(result)
        message = (f"Replicate {result.replicate + 1}/{n_replicates} done (k = {result.k})")
        logger.info(message)
        if progress_callback:
            progress_callback(message, builder.n_completed / n_replicates)

    start = time.time()
    if n_jobs == 1:
        if config.replicate_timeout is not None:
            logger.warning("replicate_timeout only applies when replicates run in worker processes")
        for replicate, seed in enumerate(seeds):
            report(run_replicate(layers, grid, config, replicate, seed))
    else:
        _run_parallel(layers, grid, config, seeds, n_jobs, report)

    logger.log_performance('train_ensemble', time.time() - start,
                           items_processed=builder.n_completed, n_jobs=n_jobs)
    return builder.finalize()


def _run_parallel(layers, grid, config, seeds, n_jobs, report) -> None:
    """Run replicates on a process pool, omitting those that time out.

    Results are awaited in submission order and ``replicate_timeout`` counts
    from the moment a replicate's result is awaited, so a replicate queued
    behind slower ones may run longer than the timeout. Timed-out workers are
    not interrupted; they finish in the background after the pool shuts down.
    """
    logger.info(f"Running {len(seeds)} replicates on {n_jobs} worker processes")
    executor = ProcessPoolExecutor(max_workers=n_jobs)
    timed_out = False
    try:
        futures = {
            executor.submit(run_replicate, layers, grid, config, replicate, seed): replicate
            for replicate, seed in enumerate(seeds)
        }
        for future, replicate in futures.items():
            try:
                result = future.result(timeout=config.replicate_timeout)
            except FutureTimeoutError:
                timed_out = True
                future.cancel()
                logger.error(
                    f"Replicate {replicate} did not finish within {config.replicate_timeout}s, omitting it"
                )
                continue
            report(result)
    finally:
        executor.shutdown(wait=not timed_out, cancel_futures=True)
