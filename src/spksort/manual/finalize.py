"""
Finalize a reviewed merge state into numbered units.

Surviving clusters are renumbered 1..K by ascending waveform RMS (ties by
original id), and per-unit waveform statistics are computed.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import numpy as np

from spksort.clustering.merge import MergeState
from spksort.utils.validation import validate_waveforms


@dataclass
class FinalizeResult:
    """Final units of one electrode.

    Attributes:
        assignment: Final unit id (1..K) per spike; 0 for rejected spikes.
        id_map: Original cluster id -> final unit id. Merged-away clusters
            map to the unit they ended up in; rejected clusters map to 0.
        wave_avg: Mean waveform per unit (K, n_samples).
        wave_var: Waveform variance per unit, ddof=1 (K, n_samples).
        rms: Waveform RMS per unit (K,), ascending.
        counts: Spikes per unit (K,).
        energy: Interface energy at finalization, indexed by original id - 1.
        merge_history: Merge records (original ids).
        rejected: Rejected original ids.
        cutoff: Cutoff in effect.
    """
    assignment: np.ndarray
    id_map: Dict[int, int]
    wave_avg: np.ndarray
    wave_var: np.ndarray
    rms: np.ndarray
    counts: np.ndarray
    energy: np.ndarray
    merge_history: List[Tuple[int, int]] = field(default_factory=list)
    rejected: List[int] = field(default_factory=list)
    cutoff: Optional[float] = None

    @property
    def n_units(self) -> int:
        return int(self.counts.shape[0])


def resolve_survivors(state: MergeState) -> Dict[int, int]:
    """
    Follow merge chains to the cluster each original id ended up in.

    Returns:
        Original id -> surviving id, or 0 if that cluster was rejected.
    """
    parent = {cluster_id: cluster_id for cluster_id in range(1, state.n_initial_clusters + 1)}
    for low, high in state.merge_history:
        parent[high] = low

    rejected = set(state.rejected)
    survivors = {}
    for cluster_id in parent:
        root = cluster_id
        while parent[root] != root:
            root = parent[root]
        survivors[cluster_id] = 0 if root in rejected or state.sizes[root - 1] == 0 else root
    return survivors


def build_id_map(state: MergeState, order: np.ndarray) -> Dict[int, int]:
    """
    Map every original id to its final unit id.

    Args:
        state: Merge state being finalized.
        order: Surviving ids in final order; order[k] becomes unit k + 1.
    """
    final_ids = {int(cluster_id): k + 1 for k, cluster_id in enumerate(order)}
    final_ids[0] = 0
    return {
        cluster_id: final_ids[survivor]
        for cluster_id, survivor in resolve_survivors(state).items()
    }


def finalize_clusters(state: MergeState, waveforms: np.ndarray) -> FinalizeResult:
    """
    Renumber surviving clusters and compute their waveform statistics.

    Args:
        state: Merge state to freeze.
        waveforms: Array (n_spikes, n_samples), rows aligned with state.assignment.

    Returns:
        FinalizeResult

    Raises:
        ValidationError: If waveforms do not match the number of spikes.
    """
    waveforms = validate_waveforms(waveforms, state.assignment.shape[0])
    n_samples = waveforms.shape[1]

    live = state.live_ids
    rms = np.array([
        np.sqrt(np.mean(waveforms[state.assignment == cluster_id] ** 2))
        for cluster_id in live
    ])

    # Ascending RMS, ties by original id
    ranking = np.lexsort((live, rms))
    order = live[ranking]
    rms = rms[ranking]

    wave_avg = np.zeros((order.size, n_samples))
    wave_var = np.zeros((order.size, n_samples))
    counts = np.zeros(order.size, dtype=np.int64)

    for k, cluster_id in enumerate(order):
        members = waveforms[state.assignment == cluster_id]
        counts[k] = members.shape[0]
        wave_avg[k] = members.mean(axis=0)
        if members.shape[0] > 1:
            wave_var[k] = members.var(axis=0, ddof=1)

    id_map = build_id_map(state, order)

    lookup = np.zeros(state.n_initial_clusters + 1, dtype=np.int64)
    for cluster_id, final_id in id_map.items():
        lookup[cluster_id] = final_id

    return FinalizeResult(
        assignment=lookup[state.assignment],
        id_map=id_map,
        wave_avg=wave_avg,
        wave_var=wave_var,
        rms=rms,
        counts=counts,
        energy=np.array(state.energy),
        merge_history=list(state.merge_history),
        rejected=list(state.rejected),
        cutoff=state.cutoff,
    )
