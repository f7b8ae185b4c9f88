"""Tests for cross-replicate label matching and the Q-matrix."""

import itertools
import pytest
import numpy as np

from somdelim.abstractions.types.delimitation_types import EnsembleResult, InputLayer
from somdelim.exceptions import ConfigurationError, ReplicateCountMismatch
from somdelim.methods.clustering.label_matching import (
    LabelMatcher, best_permutation, membership_proportions
)


def make_ensemble(c_mat, k_values, n_replicates=None):
    c_mat = np.asarray(c_mat, dtype=int)
    n_cols = c_mat.shape[1]
    return EnsembleResult(
        c_mat=c_mat,
        bic_mat=np.zeros((4, n_cols)),
        k_values=np.asarray(k_values, dtype=int),
        learning={},
        distance_weights=None,
        replicates=[],
        replicate_ids=np.arange(n_cols),
        layer_names=['genetic'],
        row_names=[f"ind_{i + 1}" for i in range(c_mat.shape[0])],
        config={'n_replicates': n_replicates if n_replicates is not None else n_cols}
    )


class TestBestPermutation:
    """Test the exhaustive permutation search."""

    def test_identity_when_aligned(self):
        labels = np.array([1, 1, 2, 2, 3, 3])
        np.testing.assert_array_equal(best_permutation(labels, labels), [1, 2, 3])

    def test_recovers_swapped_labels(self):
        reference = np.array([1, 1, 2, 2, 3, 3])
        labels = np.array([3, 3, 1, 1, 2, 2])
        perm = best_permutation(labels, reference)

        np.testing.assert_array_equal(perm[labels - 1], reference)

    def test_first_minimizer_wins(self):
        # Every permutation of two labels costs the same here
        labels = np.array([1, 2])
        reference = np.array([1, 1])
        perm = best_permutation(labels, reference, k=2)

        np.testing.assert_array_equal(perm, [1, 2])

    def test_batches_match_single_pass(self):
        rng = np.random.default_rng(3)
        reference = rng.integers(1, 6, 40)
        labels = rng.integers(1, 6, 40)

        np.testing.assert_array_equal(
            best_permutation(labels, reference, k=5, batch_size=7),
            best_permutation(labels, reference, k=5, batch_size=5040)
        )

    def test_matches_brute_force(self):
        rng = np.random.default_rng(8)
        reference = rng.integers(1, 5, 30)
        labels = rng.integers(1, 5, 30)

        costs = [
            np.abs(np.array(p)[labels - 1] - reference).sum()
            for p in itertools.permutations(range(1, 5))
        ]
        perm = best_permutation(labels, reference, k=4)
        assert np.abs(perm[labels - 1] - reference).sum() == min(costs)

    def test_length_mismatch(self):
        with pytest.raises(ConfigurationError):
            best_permutation(np.array([1, 2]), np.array([1, 2, 3]))


class TestMembershipProportions:

    def test_rows_sum_to_one(self):
        relabelled = np.array([[1, 1, 2], [2, 2, 2], [3, 1, 1]])
        q = membership_proportions(relabelled, 3)

        np.testing.assert_allclose(q.sum(axis=1), 1.0)
        np.testing.assert_allclose(q[0], [2 / 3, 1 / 3, 0.0])


class TestLabelMatcher:
    """Test suite for LabelMatcher."""

    @pytest.fixture
    def reference_layer(self, genotypes):
        return InputLayer(
            name='genetic',
            data=genotypes,
            row_names=[f"ind_{i + 1}" for i in range(len(genotypes))],
            column_names=[f"V{j + 1}" for j in range(genotypes.shape[1])]
        )

    @pytest.fixture
    def matcher(self):
        return LabelMatcher(max_k=4, n_init=5, max_iter=300, random_state=0)

    def test_reference_labels(self, matcher, reference_layer, group_labels):
        references = matcher.reference_labels(reference_layer)

        assert sorted(references) == [1, 2, 3, 4]
        np.testing.assert_array_equal(references[1], 1)
        for k, labels in references.items():
            assert labels.min() == 1
            assert labels.max() == k
        # Three well separated groups are recovered up to relabeling
        perm = best_permutation(references[3], group_labels, k=3)
        np.testing.assert_array_equal(perm[references[3] - 1], group_labels)

    def test_reference_with_missing_values(self, matcher, genotypes):
        data = genotypes.copy()
        data[0, :5] = np.nan
        references = matcher.reference_labels(data)
        assert len(references[2]) == len(data)

    def test_all_replicates_single_cluster(self, matcher, reference_layer):
        ensemble = make_ensemble(np.ones((50, 5)), [1] * 5)
        q = matcher.build_q_matrix(ensemble, reference_layer)

        assert q.values.shape == (50, 1)
        np.testing.assert_array_equal(q.values, 1.0)
        np.testing.assert_array_equal(q.assignments(), 1)

    def test_invariant_to_relabeling(self, matcher, reference_layer, group_labels):
        swapped = np.array([3, 1, 2])[group_labels - 1]
        original = make_ensemble(np.column_stack([group_labels] * 3), [3, 3, 3])
        relabelled = make_ensemble(np.column_stack([group_labels, swapped, group_labels]), [3, 3, 3])

        q_original = matcher.build_q_matrix(original, reference_layer)
        q_relabelled = matcher.build_q_matrix(relabelled, reference_layer)

        np.testing.assert_allclose(q_original.values, q_relabelled.values)
        np.testing.assert_allclose(q_original.values.max(axis=1), 1.0)

    def test_rows_sum_to_one_with_mixed_k(self, matcher, reference_layer, group_labels):
        two = np.where(group_labels == 3, 2, group_labels)
        ensemble = make_ensemble(np.column_stack([group_labels, two, np.ones(50, dtype=int)]), [3, 2, 1])
        q = matcher.build_q_matrix(ensemble, reference_layer)

        assert q.values.shape == (50, 3)
        np.testing.assert_allclose(q.values.sum(axis=1), 1.0)
        assert q.relabelled.shape == (50, 3)
        assert q.reference_layer == 'genetic'

    def test_replicates_above_max_k_discarded(self, reference_layer, group_labels):
        matcher = LabelMatcher(max_k=2, n_init=2, max_iter=100, random_state=0)
        two = np.where(group_labels == 3, 2, group_labels)
        ensemble = make_ensemble(np.column_stack([group_labels, two]), [3, 2])
        q = matcher.build_q_matrix(ensemble, reference_layer)

        assert q.retained_replicates == [1]
        assert q.values.shape == (50, 2)

    def test_no_retained_replicate(self, reference_layer, group_labels):
        matcher = LabelMatcher(max_k=2, n_init=2, max_iter=100, random_state=0)
        ensemble = make_ensemble(group_labels[:, np.newaxis], [3])
        with pytest.raises(ConfigurationError):
            matcher.build_q_matrix(ensemble, reference_layer)

    def test_replicate_count_mismatch(self, matcher, reference_layer):
        ensemble = make_ensemble(np.ones((50, 4)), [1] * 4, n_replicates=5)
        with pytest.raises(ReplicateCountMismatch):
            matcher.build_q_matrix(ensemble, reference_layer)

    def test_explicit_replicate_count(self, matcher, reference_layer):
        ensemble = make_ensemble(np.ones((50, 4)), [1] * 4)
        with pytest.raises(ReplicateCountMismatch):
            matcher.build_q_matrix(ensemble, reference_layer, n_replicates=10)
