"""
Interface-energy matrix between spike clusters.

The interface energy between clusters i and j sums a decaying exponential
kernel over every pair of spikes drawn from the two clusters:

    E(i, j) = sum_{a in i, b in j} exp(-|a - b| / d0)

Only the upper triangle and the diagonal are filled. The diagonal is
bias-corrected: the n_i zero-distance self pairs are removed and each
unordered pair is counted once,

    E(i, i) = (sum_{a, b in i} exp(-|a - b| / d0) - n_i) / 2

The raw (un-normalised) energy is kept because it can be updated exactly by
addition when clusters merge; connection strengths are derived from it.

Performance:
    Each cluster pair is independent. Rows of the upper triangle are
    computed concurrently with a ThreadPoolExecutor; every worker writes a
    disjoint row, so no locking is needed.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional

import numpy as np
from scipy.spatial.distance import cdist
from tqdm import tqdm

from spksort.utils.exceptions import ValidationError
from spksort.utils.validation import validate_assignment, validate_features


logger = logging.getLogger(__name__)


def pair_energy(a: np.ndarray, b: np.ndarray, d0: float) -> float:
    """
    Raw interface energy between two groups of spikes.

    Args:
        a: Features of the first group (n_a, n_components)
        b: Features of the second group (n_b, n_components)
        d0: Kernel distance scale

    Returns:
        Sum of exp(-distance / d0) over all n_a * n_b spike pairs
    """
    if a.shape[0] == 0 or b.shape[0] == 0:
        return 0.0
    return float(np.exp(-cdist(a, b) / d0).sum())


def group_by_cluster(
    features: np.ndarray,
    assignment: np.ndarray,
    n_clusters: int,
) -> List[np.ndarray]:
    """Split features into one array per cluster id 1..n_clusters."""
    return [features[assignment == k + 1] for k in range(n_clusters)]


def _default_workers(n_tasks: int) -> int:
    """Use 80% of CPU cores, but never more workers than tasks."""
    cpu_count = os.cpu_count() or 4
    return max(1, min(int(cpu_count * 0.8), n_tasks))


def compute_energy_matrix(
    features: np.ndarray,
    assignment: np.ndarray,
    n_clusters: int,
    d0: float,
    n_workers: Optional[int] = None,
    show_progress: bool = False,
) -> np.ndarray:
    """
    Compute the raw interface-energy matrix for one electrode.

    Args:
        features: Array (n_spikes, n_components).
        assignment: Cluster id per spike, 1..n_clusters; 0 (rejected) is ignored.
        n_clusters: Number of initial clusters C0 (matrix size).
        d0: Kernel distance scale, > 0.
        n_workers: Thread count (default: 80% of CPU cores).
        show_progress: Whether to show a tqdm progress bar.

    Returns:
        Array (n_clusters, n_clusters); entries with row <= col hold the
        energy, the strict lower triangle is zero. Clusters without spikes
        have an all-zero row and column.

    Raises:
        ValidationError: If inputs are malformed or d0 is not positive.
    """
    if not np.isfinite(d0) or d0 <= 0:
        raise ValidationError(f"d0 must be a positive finite number, got {d0}", field="d0")

    features = validate_features(features, min_spikes=1)
    assignment = validate_assignment(assignment, features.shape[0], n_clusters)

    groups = group_by_cluster(features, assignment, n_clusters)
    sizes = np.array([g.shape[0] for g in groups], dtype=np.float64)
    energy = np.zeros((n_clusters, n_clusters), dtype=np.float64)

    def compute_row(i: int) -> int:
        """Fill row i of the upper triangle in place."""
        for j in range(i, n_clusters):
            energy[i, j] = pair_energy(groups[i], groups[j], d0)
        energy[i, i] = (energy[i, i] - sizes[i]) / 2.0
        return i

    if n_workers is None:
        n_workers = _default_workers(n_clusters)

    logger.debug(
        f"Computing interface energy: {n_clusters} clusters, "
        f"{n_clusters * (n_clusters + 1) // 2} pairs, {n_workers} workers"
    )

    if n_workers <= 1 or n_clusters <= 1:
        rows = range(n_clusters)
        if show_progress:
            rows = tqdm(rows, desc="Interface energy", unit="row")
        for i in rows:
            compute_row(i)
        return energy

    with ThreadPoolExecutor(max_workers=n_workers) as executor:
        futures = {executor.submit(compute_row, i): i for i in range(n_clusters)}

        completed = as_completed(futures)
        if show_progress:
            completed = tqdm(completed, total=len(futures), desc="Interface energy", unit="row")
        for future in completed:
            future.result()  # Raises exception if any

    return energy
