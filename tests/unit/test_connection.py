"""
Unit tests for connection strength.
"""

import numpy as np
import pytest

from spksort.clustering.connection import (
    connection_strength,
    off_diagonal_strengths,
    update_connection_row,
)
from tests.fixtures.synthetic_clusters import SCENARIO_STRENGTHS, scenario_state


class TestConnectionStrength:
    """Tests for connection_strength."""

    def test_prescribed_strengths_recovered(self):
        energy, sizes, _ = scenario_state()
        J = connection_strength(energy, sizes)

        for (i, j), value in SCENARIO_STRENGTHS.items():
            assert J[i - 1, j - 1] == pytest.approx(value)
        np.testing.assert_allclose(np.diag(J), 1.0)

    def test_formula(self):
        """J(i, j) = 2 En(i, j) / (En(i, i) + En(j, j))."""
        sizes = np.array([3, 4])
        energy = np.array([[2.0, 6.0], [0.0, 3.0]])
        J = connection_strength(energy, sizes)

        en_11 = 2.0 / 3.0
        en_22 = 3.0 / 6.0
        en_12 = 6.0 / 12.0
        assert J[0, 1] == pytest.approx(2 * en_12 / (en_11 + en_22))
        assert J[1, 0] == 0.0

    def test_zero_self_energy_gives_unit_diagonal(self):
        """A cluster with E(i, i) = 0 has J(i, i) = 1, never NaN."""
        sizes = np.array([1, 5, 4])
        energy = np.array([
            [0.0, 2.0, 1.0],
            [0.0, 0.0, 3.0],
            [0.0, 0.0, 4.0],
        ])
        J = connection_strength(energy, sizes)

        assert J[0, 0] == 1.0
        assert J[1, 1] == 1.0
        assert np.all(np.isfinite(J))

    def test_dead_cluster_entries_zero(self):
        energy, sizes, _ = scenario_state()
        sizes = sizes.copy()
        sizes[2] = 0
        energy[2, :] = 0.0
        energy[:, 2] = 0.0

        J = connection_strength(energy, sizes)
        assert not J[2, [0, 1, 3, 4]].any()
        assert not J[[0, 1], 2].any()
        assert J[2, 2] == 1.0

    def test_two_singletons_finite(self):
        """Singletons have zero pair normalisers; the off-diagonal entry is 0."""
        sizes = np.array([1, 1])
        energy = np.array([[0.0, 0.5], [0.0, 0.0]])
        J = connection_strength(energy, sizes)
        assert J[0, 1] == 0.0
        assert np.all(np.isfinite(J))


class TestUpdateConnectionRow:
    """Tests for the O(C) line update."""

    def test_matches_full_recompute(self):
        energy, sizes, _ = scenario_state()
        J = connection_strength(energy, sizes)

        energy[1, 3] *= 2.0
        energy[1, 1] *= 1.5
        sizes = sizes.copy()
        sizes[1] += 3

        update_connection_row(J, energy, sizes, 1)
        np.testing.assert_allclose(J, connection_strength(energy, sizes))


class TestOffDiagonalStrengths:
    """Tests for off_diagonal_strengths."""

    def test_live_pairs_only(self):
        energy, sizes, _ = scenario_state()
        J = connection_strength(energy, sizes)

        assert off_diagonal_strengths(J, sizes).size == 10

        sizes = sizes.copy()
        sizes[0] = 0
        values = off_diagonal_strengths(J, sizes)
        assert values.size == 6
        assert values[0] == pytest.approx(SCENARIO_STRENGTHS[(2, 3)])
