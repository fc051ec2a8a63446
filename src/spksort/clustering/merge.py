"""
Agglomerative merging of spike clusters by connection strength.

The engine repeatedly merges the pair of live clusters with the strongest
connection until that strength falls below the cutoff. Merging cluster j
into cluster i (i < j) updates the raw interface energy exactly by addition,

    n(i)    <- n(i) + n(j)
    E(i, i) <- E(i, i) + E(j, j) + E(i, j)
    E(i, k) <- E(i, k) + E(j, k)      for every other cluster k

after which every entry of j is nulled and only the connection strengths
along row/column i are recomputed. Cluster ids are 1-based in assignments
and merge records; matrices are indexed by id - 1. Assignment 0 marks a
rejected spike.

The same primitives (merge, reject, suggest) serve the manual review
session in spksort.manual.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

import numpy as np

from spksort.clustering.connection import connection_strength, update_connection_row
from spksort.clustering.triangular import cluster_line, l_shaped_indices, upper_pair
from spksort.utils.exceptions import StaleReferenceError, ValidationError
from spksort.utils.logging import LoggerMixin
from spksort.utils.validation import validate_assignment, validate_square_matrix


class MergeStatus(str, Enum):
    """Whether another automatic merge would happen at the current cutoff."""
    ACTIVE = "active"
    TERMINATED = "terminated"


def _frozen(array: np.ndarray) -> np.ndarray:
    array = np.array(array, copy=True)
    array.setflags(write=False)
    return array


@dataclass(frozen=True, eq=False)
class MergeState:
    """Read-only snapshot of a merge.

    Attributes:
        energy: Raw interface energy (C0, C0), upper triangle.
        sizes: Spikes per cluster (C0,); 0 for dead clusters.
        assignment: Cluster id per spike; 0 for rejected spikes.
        merge_history: (low id, high id) per merge, in order.
        rejected: Rejected cluster ids, in order.
        cutoff: Cutoff in effect, if any.
        revision: Incremented by every mutation.
    """
    energy: np.ndarray
    sizes: np.ndarray
    assignment: np.ndarray
    merge_history: Tuple[Tuple[int, int], ...]
    rejected: Tuple[int, ...]
    cutoff: Optional[float]
    revision: int

    @property
    def n_initial_clusters(self) -> int:
        return int(self.sizes.shape[0])

    @property
    def live_ids(self) -> np.ndarray:
        """1-based ids of clusters that still hold spikes."""
        return np.flatnonzero(self.sizes > 0) + 1

    @property
    def n_clusters(self) -> int:
        return int(np.count_nonzero(self.sizes))


class MergeEngine(LoggerMixin):
    """
    Mutable merge state for one electrode.

    Args:
        energy: Raw interface energy of the initial clusters (C0, C0).
        sizes: Spikes per cluster (C0,).
        assignment: Cluster id (1..C0, or 0) per spike.
        cutoff: Connection-strength cutoff used by step() and run().
        electrode_id: Electrode identifier for logging.

    Raises:
        ValidationError: If shapes disagree or sizes do not match the assignment.
    """

    def __init__(
        self,
        energy: np.ndarray,
        sizes: np.ndarray,
        assignment: np.ndarray,
        cutoff: Optional[float] = None,
        electrode_id: Optional[int] = None,
    ):
        sizes = np.asarray(sizes)
        if sizes.ndim != 1:
            raise ValidationError(f"sizes must be a vector, got shape {sizes.shape}", field="sizes")

        n_clusters = sizes.shape[0]
        self._energy = np.triu(validate_square_matrix(energy, n_clusters, "energy"))
        self._sizes = sizes.astype(np.int64)
        self._assignment = validate_assignment(assignment, np.asarray(assignment).shape[0], n_clusters)

        counts = np.bincount(self._assignment, minlength=n_clusters + 1)[1:]
        if not np.array_equal(counts, self._sizes):
            raise ValidationError(
                "sizes do not match the number of spikes assigned to each cluster",
                field="sizes",
            )

        self._J = connection_strength(self._energy, self._sizes)
        self._history: List[Tuple[int, int]] = []
        self._rejected: List[int] = []
        self._revision = 0
        self.cutoff = cutoff
        self.electrode_id = electrode_id

    @classmethod
    def from_state(cls, state: MergeState, electrode_id: Optional[int] = None) -> "MergeEngine":
        """Start a new engine from a snapshot (history and revision are carried over)."""
        engine = cls(state.energy, state.sizes, state.assignment, state.cutoff, electrode_id)
        engine._history = list(state.merge_history)
        engine._rejected = list(state.rejected)
        engine._revision = state.revision
        return engine

    # -------------------------------------------------------------------------
    # Read-only views
    # -------------------------------------------------------------------------

    @property
    def n_initial_clusters(self) -> int:
        return int(self._sizes.shape[0])

    @property
    def n_clusters(self) -> int:
        """Number of live clusters."""
        return int(np.count_nonzero(self._sizes))

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def merge_history(self) -> List[Tuple[int, int]]:
        return list(self._history)

    @property
    def connection(self) -> np.ndarray:
        """Copy of the current connection-strength matrix."""
        return self._J.copy()

    def strength(self, a: int, b: int) -> float:
        """Connection strength between clusters a and b (1-based, either order)."""
        i, j = upper_pair(a - 1, b - 1)
        return float(self._J[i, j])

    def is_live(self, cluster_id: int) -> bool:
        return 1 <= cluster_id <= self.n_initial_clusters and self._sizes[cluster_id - 1] > 0

    def snapshot(self) -> MergeState:
        return MergeState(
            energy=_frozen(self._energy),
            sizes=_frozen(self._sizes),
            assignment=_frozen(self._assignment),
            merge_history=tuple(self._history),
            rejected=tuple(self._rejected),
            cutoff=self.cutoff,
            revision=self._revision,
        )

    # -------------------------------------------------------------------------
    # Pair selection
    # -------------------------------------------------------------------------

    def _check_live(self, cluster_id: int) -> None:
        if not self.is_live(cluster_id):
            raise StaleReferenceError(
                f"Cluster {cluster_id} is not a live cluster", cluster_id=cluster_id
            )

    def _best_pair(self, selected: Optional[int] = None) -> Optional[Tuple[int, int, float]]:
        """
        Strongest live pair as 0-based (low, high, strength), or None.

        Ties resolve to the lowest (low, high) in row-major order.
        """
        if self.n_initial_clusters < 2:
            return None
        live = self._sizes > 0

        if selected is None:
            candidates = np.where(
                np.triu(live[:, None] & live[None, :], k=1), self._J, -np.inf
            )
            flat = int(np.argmax(candidates))
            i, j = divmod(flat, candidates.shape[1])
            value = candidates[i, j]
            if not np.isfinite(value):
                return None
            return i, j, float(value)

        index = selected - 1
        rows, cols = cluster_line(index, self.n_initial_clusters)
        partners = np.where(rows == index, cols, rows)
        values = np.where(live[partners], self._J[rows, cols], -np.inf)
        if values.size == 0 or not np.isfinite(values.max()):
            return None
        best = int(np.argmax(values))
        return int(rows[best]), int(cols[best]), float(values[best])

    def suggest(self, selected: Optional[int] = None) -> Optional[Tuple[int, int]]:
        """
        Next pair to merge, as 1-based (low, high) ids.

        Args:
            selected: If given, the strongest live partner of this cluster is
                returned instead of the strongest pair overall.

        Returns:
            The pair, or None if fewer than two clusters are live.

        Raises:
            StaleReferenceError: If selected is not a live cluster.
        """
        if selected is not None:
            self._check_live(selected)
        pair = self._best_pair(selected)
        if pair is None:
            return None
        return pair[0] + 1, pair[1] + 1

    def status(self, cutoff: Optional[float] = None) -> MergeStatus:
        """ACTIVE if the strongest live pair reaches the cutoff."""
        cutoff = self._resolve_cutoff(cutoff)
        pair = self._best_pair()
        if pair is None or pair[2] < cutoff:
            return MergeStatus.TERMINATED
        return MergeStatus.ACTIVE

    def _resolve_cutoff(self, cutoff: Optional[float]) -> float:
        if cutoff is None:
            cutoff = self.cutoff
        if cutoff is None:
            raise ValueError("No cutoff given and none set on the engine")
        return float(cutoff)

    # -------------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------------

    def _merge(self, low: int, high: int) -> None:
        """Merge 0-based cluster `high` into `low`; low < high, both live."""
        E = self._energy
        n = self._sizes

        n[low] += n[high]
        n[high] = 0

        E[low, low] += E[high, high] + E[low, high]

        regions = l_shaped_indices(low, high, self.n_initial_clusters)
        E[regions.low] += E[regions.high]

        E[regions.high] = 0.0
        E[low, high] = 0.0
        E[high, high] = 0.0

        update_connection_row(self._J, E, n, high)
        update_connection_row(self._J, E, n, low)

        self._history.append((low + 1, high + 1))
        self._assignment[self._assignment == high + 1] = low + 1
        self._revision += 1

    def merge(self, a: int, b: int) -> Tuple[int, int]:
        """
        Merge two live clusters; the higher id is absorbed by the lower.

        Returns:
            The merge record (low id, high id).

        Raises:
            StaleReferenceError: If either cluster is dead or unknown, or a == b.
        """
        self._check_live(a)
        self._check_live(b)
        if a == b:
            raise StaleReferenceError(f"Cannot merge cluster {a} with itself", cluster_id=a)

        low, high = sorted((a, b))
        self._merge(low - 1, high - 1)
        self.logger.debug(f"Electrode {self.electrode_id}: merged {high} into {low}")
        return low, high

    def reject(self, cluster_id: int) -> int:
        """
        Reject a live cluster: its spikes move to id 0 and its entries are nulled.

        Returns:
            Number of spikes rejected.

        Raises:
            StaleReferenceError: If the cluster is dead or unknown.
        """
        self._check_live(cluster_id)
        index = cluster_id - 1
        n_spikes = int(self._sizes[index])

        rows, cols = cluster_line(index, self.n_initial_clusters)
        self._energy[rows, cols] = 0.0
        self._energy[index, index] = 0.0
        self._sizes[index] = 0
        update_connection_row(self._J, self._energy, self._sizes, index)

        self._assignment[self._assignment == cluster_id] = 0
        self._rejected.append(cluster_id)
        self._revision += 1

        self.logger.debug(f"Electrode {self.electrode_id}: rejected cluster {cluster_id} ({n_spikes} spikes)")
        return n_spikes

    def step(self, cutoff: Optional[float] = None) -> Optional[Tuple[int, int]]:
        """
        Perform one automatic merge.

        Returns:
            The merge record, or None if the strongest pair is below the cutoff
            or fewer than two clusters are live.
        """
        cutoff = self._resolve_cutoff(cutoff)
        pair = self._best_pair()
        if pair is None or pair[2] < cutoff:
            return None
        low, high, _ = pair
        self._merge(low, high)
        return low + 1, high + 1

    def run(self, cutoff: Optional[float] = None) -> List[Tuple[int, int]]:
        """
        Merge until the strongest live pair falls below the cutoff.

        Args:
            cutoff: Cutoff to use; also becomes the engine's cutoff.

        Returns:
            Merge records performed by this call, in order.
        """
        cutoff = self._resolve_cutoff(cutoff)
        self.cutoff = cutoff
        merges: List[Tuple[int, int]] = []

        # Each merge removes one live cluster
        for _ in range(max(self.n_clusters - 1, 0)):
            record = self.step(cutoff)
            if record is None:
                break
            merges.append(record)

        self.logger.info(
            f"Electrode {self.electrode_id}: {len(merges)} merges at cutoff {cutoff:.4g}, "
            f"{self.n_clusters} clusters remain"
        )
        return merges

    def replay(
        self,
        history: Iterable[Sequence[int]],
        rejected: Iterable[int] = (),
    ) -> MergeState:
        """
        Apply recorded merges, then recorded rejections.

        Explicit merges never involve a cluster after it has been rejected, so
        applying all merges before all rejections reproduces the recorded state.

        Raises:
            StaleReferenceError: If a record refers to a dead cluster.
        """
        for low, high in history:
            self.merge(int(low), int(high))
        for cluster_id in rejected:
            self.reject(int(cluster_id))
        return self.snapshot()
