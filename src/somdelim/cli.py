"""Command line entry point for SOM species delimitation."""

import sys
import argparse
from pathlib import Path
from typing import Dict, List, Optional
import pandas as pd

from somdelim.analyzer import SOMDelimitationAnalyzer
from somdelim.config.delimitation_config import DelimitationConfigManager, get_delimitation_config
from somdelim.exceptions import DelimitationError
from somdelim.exports import cluster_sizes, write_outputs
from somdelim.infrastructure.logging import get_logger, setup_logging
from somdelim.methods.som.progress_tracker import DelimitationProgressTracker, create_progress_callback


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='somdelim',
        description='Delimit species from one or more data matrices with SOM ensembles'
    )

    parser.add_argument(
        'layers', nargs='+', type=Path,
        help='CSV files, one per layer; the first column holds the individual identifiers'
    )
    parser.add_argument('--output-dir', '-o', type=Path, required=True,
                        help='Directory for the result tables')

    parser.add_argument('--steps', type=int, dest='n_steps', help='Training epochs per replicate')
    parser.add_argument('--replicates', type=int, dest='n_replicates', help='Number of replicates')
    parser.add_argument('--max-k', type=int, dest='max_k', help='Largest number of clusters considered')
    parser.add_argument('--alpha', type=float, nargs=2, dest='learning_rate',
                        metavar=('INITIAL', 'FINAL'), help='Initial and final learning rate')
    parser.add_argument('--max-na', type=float, dest='max_na_fraction',
                        help='Largest tolerated fraction of missing values')
    parser.add_argument('--kmeans-starts', type=int, dest='kmeans_n_init',
                        help='Random restarts for every k-means fit')
    parser.add_argument('--neighbourhood', choices=['gaussian', 'bubble'], dest='neighbourhood_fct',
                        help='Neighbourhood function')
    parser.add_argument('--jobs', type=int, dest='n_jobs',
                        help='Worker processes (-1 for all physical cores)')
    parser.add_argument('--seed', type=int, dest='random_seed', help='Global random seed')

    parser.add_argument('--config', type=Path, help='YAML configuration file')
    parser.add_argument('--cache', type=Path, dest='output_path',
                        help='Result bundle reused on later runs with the same inputs')
    parser.add_argument('--overwrite', action='store_true', default=None,
                        help='Recompute even when the cached result matches')
    parser.add_argument('--reference-layer', help='Layer used as label reference (default: first)')
    parser.add_argument('--progress-file', type=Path, help='JSON file with live progress')
    parser.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        default='INFO', help='Logging level')
    parser.add_argument('--log-file', type=Path, help='JSON log file')

    return parser


def read_layers(paths: List[Path]) -> Dict[str, pd.DataFrame]:
    """Read every CSV as strings so missing markers reach the preconditioner."""
    layers = {}
    for path in paths:
        name = path.stem
        suffix = 2
        while name in layers:
            name = f"{path.stem}_{suffix}"
            suffix += 1
        layers[name] = pd.read_csv(path, index_col=0, dtype=str, keep_default_na=False)
    return layers


def main(argv: Optional[List[str]] = None) -> int:
    """Run a delimitation from the command line; returns the exit code."""
    args = build_parser().parse_args(argv)

    setup_logging(log_level=args.log_level, log_file=args.log_file)
    logger = get_logger('somdelim.cli')

    tracker = None
    try:
        if args.config:
            config = DelimitationConfigManager(args.config).get_config()
        else:
            config = get_delimitation_config().get_config()

        # Options left out on the command line keep the configured value
        overrides = {
            key: getattr(args, key)
            for key in ('n_steps', 'n_replicates', 'max_k', 'learning_rate', 'max_na_fraction',
                        'kmeans_n_init', 'neighbourhood_fct', 'n_jobs', 'random_seed',
                        'output_path', 'overwrite')
            if getattr(args, key) is not None
        }
        if 'output_path' in overrides:
            overrides['output_path'] = str(overrides['output_path'])
        config = config.with_overrides(**overrides).validate()

        callback = stage_callback = None
        if args.progress_file:
            tracker = DelimitationProgressTracker(str(args.progress_file))
            callback = create_progress_callback(tracker)
            stage_callback = tracker.update_phase

        layers = read_layers(args.layers)
        analyzer = SOMDelimitationAnalyzer(
            config=config, progress_callback=callback, stage_callback=stage_callback
        )
        result = analyzer.analyze(layers, reference_layer=args.reference_layer)

        written = write_outputs(result, args.output_dir)
        if tracker:
            tracker.mark_complete(success=True)

        logger.info(
            f"Delimitation finished: {result.q_matrix.n_clusters} clusters, "
            f"k frequency {result.ensemble.k_frequency()}, "
            f"individuals per cluster {cluster_sizes(result.q_matrix)}; "
            f"{len(written)} tables in {args.output_dir}"
        )
        return 0

    except (DelimitationError, OSError, pd.errors.ParserError) as e:
        logger.log_error_with_context(e, operation='somdelim')
        if tracker:
            tracker.mark_complete(success=False)
        return 1


if __name__ == '__main__':
    sys.exit(main())
