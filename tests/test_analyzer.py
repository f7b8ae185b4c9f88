"""End-to-end tests for SOMDelimitationAnalyzer."""

import pytest
from unittest.mock import patch
import numpy as np
import pandas as pd

from somdelim.analyzer import SOMDelimitationAnalyzer
from somdelim.abstractions.types.delimitation_types import DelimitationResult
from somdelim.config import DelimitationConfig
from somdelim.exceptions import (
    ConfigurationError, LabelMismatchError, ShapeMismatchError, ReplicateCountMismatch
)
from somdelim.methods.som.supersom_core import SuperSOM


class TestSOMDelimitationAnalyzer:
    """Test suite for the full delimitation run."""

    @pytest.fixture
    def analyzer(self, fast_config):
        return SOMDelimitationAnalyzer(config=fast_config)

    def test_single_layer_run(self, analyzer, genotype_frame):
        result = analyzer.analyze(genotype_frame)

        assert isinstance(result, DelimitationResult)
        assert result.ensemble.c_mat.shape == (50, 3)
        q = result.q_matrix.values
        assert q.shape[0] == 50
        np.testing.assert_allclose(q.sum(axis=1), 1.0)
        assert result.q_matrix.row_names == list(genotype_frame.index)
        assert result.config['n_replicates'] == 3

    def test_genotype_matrix_label_matrix_shape(self):
        rng = np.random.default_rng(12)
        data = rng.choice([0.0, 0.5, 1.0], size=(50, 120))
        config = DelimitationConfig(
            n_steps=10, n_replicates=10, max_k=5, kmeans_n_init=3, kmeans_max_iter=200
        )
        result = SOMDelimitationAnalyzer(config=config).analyze(data)

        assert result.ensemble.c_mat.shape == (50, 10)
        assert result.ensemble.bic_mat.shape == (5, 10)
        assert result.q_matrix.values.shape[1] == result.ensemble.k_values.max()
        assert sum(result.ensemble.k_frequency().values()) == 10

    def test_three_layers(self, fast_config):
        rng = np.random.default_rng(2)
        index = [f"ind_{i}" for i in range(50)]
        layers = {
            'genetic': pd.DataFrame(rng.choice([0.0, 0.5, 1.0], size=(50, 120)), index=index),
            'morphology': pd.DataFrame(rng.normal(10, 2, size=(50, 38)), index=index),
            'environment': pd.DataFrame(rng.normal(0, 1, size=(50, 6)), index=index),
        }
        result = SOMDelimitationAnalyzer(config=fast_config).analyze(layers)

        weights = result.ensemble.distance_weights
        assert weights.shape == (3, 3)
        assert np.all(weights > 0)
        np.testing.assert_allclose(weights.sum(axis=1), 1.0)
        assert result.preconditioning['layers']['morphology']['normalized'] is True

    def test_label_mismatch_before_training(self, analyzer, genotype_frame, environment_frame):
        shuffled = environment_frame.sample(frac=1.0, random_state=0)
        with patch.object(SuperSOM, 'fit') as mock_fit:
            with pytest.raises(LabelMismatchError):
                analyzer.analyze({'genetic': genotype_frame, 'environment': shuffled})

        mock_fit.assert_not_called()

    def test_shape_mismatch(self, analyzer, genotype_frame, environment_frame):
        with pytest.raises(ShapeMismatchError):
            analyzer.analyze({'genetic': genotype_frame, 'environment': environment_frame.iloc[:-2]})

    def test_max_k_above_sample_count(self, genotypes):
        config = DelimitationConfig(n_steps=2, n_replicates=1, max_k=8)
        with pytest.raises(ConfigurationError):
            SOMDelimitationAnalyzer(config=config).analyze(genotypes[:6])

    def test_invalid_override(self, analyzer, genotype_frame):
        with pytest.raises(ConfigurationError):
            analyzer.analyze(genotype_frame, n_steps=0)

    def test_unknown_reference_layer(self, analyzer, genotype_frame):
        with pytest.raises(ConfigurationError):
            analyzer.analyze(genotype_frame, reference_layer='missing')

    def test_minimal_run(self, genotype_frame):
        config = DelimitationConfig(n_steps=1, n_replicates=1, max_k=3,
                                    kmeans_n_init=1, kmeans_max_iter=50)
        result = SOMDelimitationAnalyzer(config=config).analyze(genotype_frame)

        assert result.ensemble.c_mat.shape == (50, 1)
        assert result.ensemble.learning['layer_1'].shape == (1, 1)
        np.testing.assert_allclose(result.q_matrix.values.sum(axis=1), 1.0)

    def test_progress_callback(self, fast_config, genotype_frame):
        updates = []
        analyzer = SOMDelimitationAnalyzer(
            config=fast_config,
            progress_callback=lambda message, fraction: updates.append(fraction)
        )
        analyzer.analyze(genotype_frame)

        assert updates[0] == 0.0
        assert updates[-1] == 1.0
        assert updates == sorted(updates)

    def test_cached_result_reused(self, fast_config, genotype_frame, tmp_path):
        bundle = tmp_path / 'result.pkl.gz'
        config = fast_config.with_overrides(output_path=str(bundle))

        first = SOMDelimitationAnalyzer(config=config).analyze(genotype_frame)
        assert bundle.exists()
        second = SOMDelimitationAnalyzer(config=config).analyze(genotype_frame)

        assert second.timestamp == first.timestamp
        forced = SOMDelimitationAnalyzer(config=config).analyze(genotype_frame, overwrite=True)
        assert forced.timestamp != first.timestamp

    def test_unseeded_override(self, analyzer, genotype_frame):
        result = analyzer.analyze(genotype_frame, random_seed=None)

        assert result.config['random_seed'] is None
        np.testing.assert_allclose(result.q_matrix.values.sum(axis=1), 1.0)

    def test_stage_callback(self, fast_config, genotype_frame, tmp_path):
        config = fast_config.with_overrides(output_path=str(tmp_path / 'result.pkl.gz'))
        stages = []
        analyzer = SOMDelimitationAnalyzer(config=config, stage_callback=stages.append)

        analyzer.analyze(genotype_frame)
        assert stages == ['precondition', 'train_ensemble', 'label_matching']

        # A reused result skips training and matching
        stages.clear()
        analyzer.analyze(genotype_frame)
        assert stages == ['precondition']

    @pytest.mark.slow
    def test_timed_out_replicates_rejected(self, genotype_frame):
        config = DelimitationConfig(
            n_steps=50, n_replicates=4, max_k=3, kmeans_n_init=2, kmeans_max_iter=100,
            n_jobs=2, replicate_timeout=0.01
        )
        with pytest.raises(ReplicateCountMismatch):
            SOMDelimitationAnalyzer(config=config).analyze(genotype_frame)
