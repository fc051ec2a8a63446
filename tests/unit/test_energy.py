"""
Unit tests for the interface-energy matrix.
"""

import numpy as np
import pytest

from spksort.clustering.energy import compute_energy_matrix, group_by_cluster, pair_energy
from spksort.utils.exceptions import ValidationError
from tests.fixtures.synthetic_clusters import random_state


def brute_force_energy(features, assignment, n_clusters, d0):
    """Reference implementation with explicit loops over spike pairs."""
    energy = np.zeros((n_clusters, n_clusters))
    for i in range(n_clusters):
        for j in range(i, n_clusters):
            a = features[assignment == i + 1]
            b = features[assignment == j + 1]
            total = 0.0
            for x in a:
                for y in b:
                    total += np.exp(-np.linalg.norm(x - y) / d0)
            energy[i, j] = total
        energy[i, i] = (energy[i, i] - np.sum(assignment == i + 1)) / 2
    return energy


class TestPairEnergy:
    """Tests for pair_energy."""

    def test_known_distance(self):
        a = np.array([[0.0, 0.0]])
        b = np.array([[3.0, 4.0]])
        assert pair_energy(a, b, d0=5.0) == pytest.approx(np.exp(-1.0))

    def test_empty_group(self):
        assert pair_energy(np.zeros((0, 2)), np.ones((3, 2)), d0=1.0) == 0.0


class TestComputeEnergyMatrix:
    """Tests for compute_energy_matrix."""

    def test_matches_brute_force(self):
        features, assignment = random_state(n_clusters=4, n_per_cluster=6, seed=1)
        expected = brute_force_energy(features, assignment, 4, d0=0.7)
        energy = compute_energy_matrix(features, assignment, 4, d0=0.7, n_workers=1)
        np.testing.assert_allclose(energy, expected, rtol=1e-12)

    def test_threaded_matches_serial(self):
        features, assignment = random_state(n_clusters=6, n_per_cluster=10, seed=2)
        serial = compute_energy_matrix(features, assignment, 6, d0=1.0, n_workers=1)
        threaded = compute_energy_matrix(features, assignment, 6, d0=1.0, n_workers=4)
        np.testing.assert_array_equal(serial, threaded)

    def test_lower_triangle_zero(self):
        features, assignment = random_state(n_clusters=5, seed=3)
        energy = compute_energy_matrix(features, assignment, 5, d0=1.0)
        assert not np.tril(energy, k=-1).any()

    def test_diagonal_counts_each_pair_once(self):
        """Two coincident spikes give one pair with energy exp(0) = 1."""
        features = np.zeros((2, 3))
        assignment = np.array([1, 1])
        energy = compute_energy_matrix(features, assignment, 1, d0=1.0)
        assert energy[0, 0] == pytest.approx(1.0)

    def test_singleton_self_energy_zero(self):
        features = np.array([[0.0], [10.0], [10.5]])
        assignment = np.array([1, 2, 2])
        energy = compute_energy_matrix(features, assignment, 2, d0=1.0)
        assert energy[0, 0] == 0.0

    def test_rejected_spikes_ignored(self):
        """Spikes with id 0 and empty clusters contribute nothing."""
        features, assignment = random_state(n_clusters=3, seed=4)
        with_rejected = assignment.copy()
        with_rejected[with_rejected == 2] = 0

        energy = compute_energy_matrix(features, with_rejected, 3, d0=1.0)
        assert not energy[1, :].any()
        assert not energy[:, 1].any()

        kept = with_rejected > 0
        reference = compute_energy_matrix(features[kept], with_rejected[kept], 3, d0=1.0)
        np.testing.assert_allclose(energy, reference)

    @pytest.mark.parametrize("d0", [0.0, -1.0, np.inf, np.nan])
    def test_invalid_d0_raises(self, d0):
        features, assignment = random_state(n_clusters=2, seed=5)
        with pytest.raises(ValidationError, match="d0"):
            compute_energy_matrix(features, assignment, 2, d0=d0)

    def test_out_of_range_assignment_raises(self):
        features = np.zeros((4, 2))
        with pytest.raises(ValidationError, match="Assignment ids"):
            compute_energy_matrix(features, np.array([1, 2, 3, 4]), 3, d0=1.0)

    def test_group_by_cluster(self):
        features = np.arange(10, dtype=float).reshape(5, 2)
        groups = group_by_cluster(features, np.array([2, 1, 2, 0, 1]), 2)
        np.testing.assert_array_equal(groups[0], features[[1, 4]])
        np.testing.assert_array_equal(groups[1], features[[0, 2]])
