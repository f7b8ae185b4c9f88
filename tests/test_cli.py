"""Tests for the somdelim command line."""

import json
import pytest
import pandas as pd

from somdelim.cli import main, read_layers, build_parser


@pytest.fixture
def csv_layers(tmp_path, genotype_frame, environment_frame):
    genetic = tmp_path / 'genetic.csv'
    environment = tmp_path / 'environment.csv'
    frame = genotype_frame.astype(object)
    frame.iloc[0, 0] = '?'
    frame.to_csv(genetic)
    environment_frame.to_csv(environment)
    return genetic, environment


class TestCli:
    """Test suite for the CLI entry point."""

    def test_parser_options(self):
        args = build_parser().parse_args(
            ['a.csv', '-o', 'out', '--steps', '3', '--alpha', '0.4', '0.1', '--jobs', '-1']
        )
        assert args.n_steps == 3
        assert args.learning_rate == [0.4, 0.1]
        assert args.n_jobs == -1
        assert args.overwrite is None

    def test_read_layers_keeps_markers(self, csv_layers):
        layers = read_layers(list(csv_layers))

        assert list(layers) == ['genetic', 'environment']
        assert layers['genetic'].iloc[0, 0] == '?'

    def test_duplicate_layer_names(self, csv_layers):
        genetic, _ = csv_layers
        assert list(read_layers([genetic, genetic])) == ['genetic', 'genetic_2']

    def test_full_run(self, csv_layers, tmp_path):
        out = tmp_path / 'results'
        progress = tmp_path / 'progress.json'
        code = main([str(p) for p in csv_layers] + [
            '-o', str(out), '--steps', '3', '--replicates', '2', '--max-k', '3',
            '--kmeans-starts', '2', '--progress-file', str(progress), '--log-level', 'WARNING'
        ])

        assert code == 0
        q = pd.read_csv(out / 'q_matrix.csv', index_col=0)
        assert q.shape[0] == 50
        assert (out / 'distance_weights.csv').exists()
        status = json.loads(progress.read_text())
        assert status['status'] == 'completed'
        assert status['progress_percent'] == 100.0
        assert status['current_phase'] == 'label_matching'

    def test_error_exit_code(self, tmp_path):
        bad = tmp_path / 'bad.csv'
        pd.DataFrame({'a': ['x', 'y'], 'b': ['1', '2']}, index=['i1', 'i2']).to_csv(bad)

        code = main([str(bad), '-o', str(tmp_path / 'out'), '--log-level', 'ERROR'])
        assert code == 1

    def test_invalid_parameter_exit_code(self, csv_layers, tmp_path):
        code = main([str(csv_layers[0]), '-o', str(tmp_path / 'out'), '--max-k', '40',
                     '--log-level', 'ERROR'])
        assert code == 1
