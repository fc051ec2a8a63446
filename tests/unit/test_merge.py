"""
Unit tests for the MergeEngine.
"""

import numpy as np
import pytest

from spksort.clustering.connection import connection_strength
from spksort.clustering.energy import compute_energy_matrix
from spksort.clustering.merge import MergeEngine, MergeStatus
from spksort.utils.exceptions import StaleReferenceError, ValidationError
from tests.fixtures.synthetic_clusters import (
    assignment_from_sizes,
    energy_from_strengths,
    random_state,
    scenario_state,
)


@pytest.fixture
def scenario_engine():
    energy, sizes, assignment = scenario_state()
    return MergeEngine(energy, sizes, assignment)


@pytest.fixture
def feature_engine():
    """Engine built from real features, with the features kept for recomputation."""
    features, assignment = random_state(n_clusters=8, n_per_cluster=15, seed=11)
    energy = compute_energy_matrix(features, assignment, 8, d0=1.5, n_workers=1)
    sizes = np.bincount(assignment, minlength=9)[1:]
    return MergeEngine(energy, sizes, assignment), features


class TestScenario:
    """Five clusters where only (2, 3) is connected above 0.5."""

    def test_first_merge(self, scenario_engine):
        assert scenario_engine.suggest() == (2, 3)
        record = scenario_engine.step(0.5)

        assert record == (2, 3)
        assert scenario_engine.snapshot().sizes[1] == 15
        assert scenario_engine.snapshot().sizes[2] == 0

    def test_run_terminates(self, scenario_engine):
        merges = scenario_engine.run(0.5)

        assert merges == [(2, 3)]
        assert scenario_engine.n_clusters == 4
        assert scenario_engine.status() is MergeStatus.TERMINATED

    def test_merged_strength(self, scenario_engine):
        scenario_engine.step(0.5)
        # En(2, 2) = 100 / 105 after the merge
        assert scenario_engine.strength(1, 2) == pytest.approx(2 * 0.2 / (1 + 100 / 105))

    def test_assignment_relabelled(self, scenario_engine):
        scenario_engine.step(0.5)
        state = scenario_engine.snapshot()
        assert 3 not in state.assignment
        assert np.sum(state.assignment == 2) == 15


class TestMergeProperties:
    """Invariants of automatic merging."""

    def test_sizes_monotone(self, feature_engine):
        """Live sizes never shrink and their total is constant."""
        engine, _ = feature_engine
        total = engine.snapshot().sizes.sum()

        while True:
            before = engine.snapshot().sizes.copy()
            record = engine.step(0.0)
            if record is None:
                break
            low, high = record
            after = engine.snapshot().sizes
            assert after[low - 1] == before[low - 1] + before[high - 1]
            assert after[high - 1] == 0
            assert after.sum() == total

    def test_incremental_energy_matches_recompute(self, feature_engine):
        engine, features = feature_engine
        for _ in range(5):
            engine.step(0.0)

        state = engine.snapshot()
        recomputed = compute_energy_matrix(features, state.assignment, 8, d0=1.5, n_workers=1)
        np.testing.assert_allclose(state.energy, recomputed, rtol=1e-10, atol=1e-12)
        np.testing.assert_allclose(
            engine.connection, connection_strength(recomputed, state.sizes), rtol=1e-10, atol=1e-12
        )

    def test_run_bounded_by_cluster_count(self, feature_engine):
        """A zero cutoff merges down to exactly one cluster."""
        engine, _ = feature_engine
        merges = engine.run(0.0)

        assert len(merges) == 7
        assert engine.n_clusters == 1
        assert engine.step(0.0) is None
        assert engine.status(0.0) is MergeStatus.TERMINATED

    def test_infinite_cutoff_merges_nothing(self, feature_engine):
        engine, _ = feature_engine
        assert engine.run(np.inf) == []
        assert engine.n_clusters == 8

    def test_connection_stays_finite(self, feature_engine):
        engine, _ = feature_engine
        for _ in range(7):
            engine.step(0.0)
            assert np.all(np.isfinite(engine.connection))

    def test_lower_triangle_stays_zero(self, feature_engine):
        engine, _ = feature_engine
        engine.run(0.0)
        assert not np.tril(engine.snapshot().energy, k=-1).any()
        assert not np.tril(engine.connection, k=-1).any()

    def test_dead_entries_nulled(self, scenario_engine):
        scenario_engine.merge(1, 4)
        energy = scenario_engine.snapshot().energy
        J = scenario_engine.connection

        assert not energy[3, :].any()
        assert not energy[:, 3].any()
        assert not J[3, [0, 1, 2, 4]].any()
        assert J[3, 3] == 1.0

    def test_ties_break_to_lowest_pair(self):
        sizes = np.array([10, 10, 10, 10])
        energy = energy_from_strengths(sizes, {(1, 4): 0.7, (2, 3): 0.7, (1, 2): 0.1})
        engine = MergeEngine(energy, sizes, assignment_from_sizes(sizes))
        assert engine.suggest() == (1, 4)


class TestManualPrimitives:
    """merge, reject, suggest and replay."""

    def test_merge_either_order(self, scenario_engine):
        assert scenario_engine.merge(5, 1) == (1, 5)
        assert scenario_engine.merge_history == [(1, 5)]

    def test_merge_dead_cluster_raises(self, scenario_engine):
        scenario_engine.merge(2, 3)
        revision = scenario_engine.revision
        with pytest.raises(StaleReferenceError) as exc_info:
            scenario_engine.merge(3, 4)
        assert exc_info.value.cluster_id == 3
        assert scenario_engine.revision == revision

    @pytest.mark.parametrize("a,b", [(2, 2), (0, 1), (1, 6)])
    def test_invalid_merge_raises(self, scenario_engine, a, b):
        with pytest.raises(StaleReferenceError):
            scenario_engine.merge(a, b)

    def test_reject(self, scenario_engine):
        n_rejected = scenario_engine.reject(4)
        state = scenario_engine.snapshot()

        assert n_rejected == 8
        assert state.rejected == (4,)
        assert np.sum(state.assignment == 0) == 8
        assert state.sizes[3] == 0
        assert not state.energy[3, :].any()
        assert not state.energy[:, 3].any()
        assert scenario_engine.connection[3, 3] == 1.0

        with pytest.raises(StaleReferenceError):
            scenario_engine.reject(4)

    def test_suggest_selected(self, scenario_engine):
        """The strongest partner of a selected cluster."""
        assert scenario_engine.suggest(5) == (1, 5)
        assert scenario_engine.suggest(4) == (2, 4)

    def test_suggest_ignores_dead_partners(self, scenario_engine):
        scenario_engine.reject(1)
        assert scenario_engine.suggest(5) == (4, 5)

    def test_suggest_none_with_one_cluster(self):
        sizes = np.array([10, 5])
        engine = MergeEngine(energy_from_strengths(sizes, {(1, 2): 0.5}), sizes, assignment_from_sizes(sizes))
        engine.merge(1, 2)
        assert engine.suggest() is None
        with pytest.raises(StaleReferenceError):
            engine.suggest(2)

    def test_replay_reproduces_state(self, feature_engine):
        engine, _ = feature_engine
        initial = engine.snapshot()

        engine.merge(3, 7)
        engine.reject(2)
        engine.merge(4, 5)
        engine.merge(1, 8)
        final = engine.snapshot()

        replayed = MergeEngine.from_state(initial).replay(final.merge_history, final.rejected)

        np.testing.assert_allclose(replayed.energy, final.energy)
        np.testing.assert_array_equal(replayed.sizes, final.sizes)
        np.testing.assert_array_equal(replayed.assignment, final.assignment)
        assert replayed.merge_history == final.merge_history

    def test_snapshot_read_only(self, scenario_engine):
        state = scenario_engine.snapshot()
        with pytest.raises(ValueError):
            state.energy[0, 0] = 1.0

    def test_snapshot_isolated_from_later_merges(self, scenario_engine):
        state = scenario_engine.snapshot()
        scenario_engine.merge(2, 3)
        assert state.sizes[2] == 5
        assert state.revision == 0


class TestConstruction:
    """Input validation."""

    def test_sizes_must_match_assignment(self):
        energy, sizes, assignment = scenario_state()
        sizes = sizes.copy()
        sizes[0] += 1
        with pytest.raises(ValidationError, match="sizes"):
            MergeEngine(energy, sizes, assignment)

    def test_energy_shape_checked(self):
        _, sizes, assignment = scenario_state()
        with pytest.raises(ValidationError, match="shape"):
            MergeEngine(np.zeros((4, 4)), sizes, assignment)

    def test_missing_cutoff_raises(self, scenario_engine):
        with pytest.raises(ValueError, match="cutoff"):
            scenario_engine.step()
