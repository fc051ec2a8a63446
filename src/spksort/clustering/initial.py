"""
Initial over-clustering of spike features.

Implements the initial clustering of Fee et al. (1996), as used by
UltraMegaSort2000: cluster centres are repeatedly bisected and spikes
re-assigned until many small clusters tile feature space. Over-segmentation
lets small clusters follow waveforms that drift or form non-convex clouds;
the merge stage later re-assembles them.

References:
    Fee MS, Mitra PP, Kleinfeld D. J Neurosci Methods. 1996;69(2):175-88.
    Hill DN, Mehta SB, Kleinfeld D. J Neurosci. 2011;31(24):8699-705.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional, Tuple

import numpy as np
from scipy.spatial.distance import cdist

from spksort.utils.validation import validate_features

if TYPE_CHECKING:
    from spksort.pipeline.config import SortConfig


logger = logging.getLogger(__name__)

# Number of random spike pairs used to estimate the mean inter-spike distance
MEAN_DISTANCE_SAMPLES = 5000

# Centre jitter is mean distance / JITTER_DIVISOR / n_components
JITTER_DIVISOR = 100.0

# d0 = sqrt(trace(W)) / KERNEL_SCALE_DIVISOR
KERNEL_SCALE_DIVISOR = 10.0


@dataclass
class InitialClustering:
    """Result of initial clustering on one electrode.

    Attributes:
        assignment: Cluster id (1..n_clusters) of each spike.
        sizes: Number of spikes in each cluster; sizes[k] belongs to id k + 1.
        centres: Cluster centres (n_clusters, n_components).
        d0: Distance scale of the interface-energy kernel.
    """
    assignment: np.ndarray
    sizes: np.ndarray
    centres: np.ndarray
    d0: float

    @property
    def n_clusters(self) -> int:
        return int(self.sizes.shape[0])


def estimate_mean_distance(
    features: np.ndarray,
    n_pairs: int,
    rng: np.random.Generator,
) -> float:
    """
    Estimate the mean Euclidean distance between distinct spikes.

    Args:
        features: Array (n_spikes, n_components) with at least two rows.
        n_pairs: Number of pairs of different spikes to sample.
        rng: Random generator.

    Returns:
        Mean distance over the sampled pairs.
    """
    n_spikes = features.shape[0]
    distances = np.empty(n_pairs, dtype=np.float64)
    found = 0

    while found < n_pairs:
        pairs = rng.integers(0, n_spikes, size=(2, n_pairs - found))
        pairs = pairs[:, pairs[0] != pairs[1]]
        n_new = pairs.shape[1]
        if n_new == 0:
            continue
        distances[found:found + n_new] = np.linalg.norm(
            features[pairs[0]] - features[pairs[1]], axis=1
        )
        found += n_new

    return float(distances.mean())


def _centroids(features: np.ndarray, labels: np.ndarray, n_clusters: int) -> np.ndarray:
    """Mean feature vector of each cluster."""
    sums = np.zeros((n_clusters, features.shape[1]), dtype=np.float64)
    np.add.at(sums, labels, features)
    counts = np.bincount(labels, minlength=n_clusters).astype(np.float64)
    return sums / counts[:, None]


def _assign_spikes(distances: np.ndarray, min_spikes: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Assign spikes to their nearest centre, dissolving undersized clusters.

    Clusters below min_spikes are visited in index order. If still too small
    when visited, their spikes move to the next-nearest cluster and the
    dissolved cluster's distance column is set to infinity so it cannot
    receive spikes again.

    Args:
        distances: Spike-to-centre distances (n_spikes, n_centres); modified.
        min_spikes: Minimum cluster size.

    Returns:
        (labels, sizes)
    """
    n_centres = distances.shape[1]
    labels = np.argmin(distances, axis=1)
    sizes = np.bincount(labels, minlength=n_centres)

    for k in np.flatnonzero(sizes < min_spikes):
        # May have grown past the minimum by absorbing an earlier cluster
        if sizes[k] >= min_spikes:
            continue

        members = np.flatnonzero(labels == k)
        distances[:, k] = np.inf

        if members.size:
            moved = np.argmin(distances[members], axis=1)
            labels[members] = moved
            sizes += np.bincount(moved, minlength=n_centres)

        sizes[k] = 0

    return labels, sizes


def _kernel_scale(features: np.ndarray, spike_centres: np.ndarray) -> float:
    """
    Scale term d0 for the interface-energy kernel.

    Within-cluster scatter W = T - B, where T is the total covariance of the
    spikes and B the covariance of each spike's cluster centre.
    """
    total = float(np.sum(np.var(features, axis=0, ddof=1)))
    between = float(np.sum(np.var(spike_centres, axis=0, ddof=1)))
    d0 = np.sqrt(max(total - between, 0.0)) / KERNEL_SCALE_DIVISOR

    if not np.isfinite(d0) or d0 <= 0:
        logger.warning(
            f"Degenerate kernel scale (d0={d0}); zero within-cluster variance. "
            f"Using machine epsilon instead."
        )
        d0 = float(np.finfo(np.float64).eps)

    return float(d0)


def initial_clustering(
    features: np.ndarray,
    config: "SortConfig",
    rng: Optional[np.random.Generator] = None,
    electrode_id: Optional[int] = None,
) -> InitialClustering:
    """
    Over-segment one electrode's spike features into many small clusters.

    Outline:
        1) Duplicate every cluster centre and jitter all centres randomly.
        2) Assign each spike to the nearest centre.
        3) Dissolve clusters with fewer than min_spikes spikes.
        4) Recompute each centre from its spikes.
        5) Repeat 2-4 until assignments settle or assign_passes is reached.
        6) Repeat 1-5 for each bisection.

    Up to 2 ** bisections clusters are produced, each with at least
    min_spikes spikes.

    Args:
        features: Array (n_spikes, n_components), one row per spike.
        config: Sort configuration (bisections, assign_passes, min_spikes).
        rng: Random generator; defaults to one seeded with config.random_seed.
        electrode_id: Electrode identifier for logging and errors.

    Returns:
        InitialClustering with dense ids 1..C0, sizes, centres and d0.

    Raises:
        ValidationError: If there are fewer spikes than min_spikes (or two).
    """
    features = validate_features(
        features, min_spikes=max(config.min_spikes, 2), electrode_id=electrode_id
    )
    if rng is None:
        rng = np.random.default_rng(config.random_seed)

    n_spikes, n_components = features.shape

    jitter = estimate_mean_distance(features, MEAN_DISTANCE_SAMPLES, rng)
    jitter = jitter / JITTER_DIVISOR / n_components

    centres = features.mean(axis=0, keepdims=True)
    labels = np.zeros(n_spikes, dtype=np.intp)

    for bisection in range(config.bisections):
        centres = np.vstack([centres, centres])
        centres = centres + jitter * rng.random(centres.shape)
        previous = None

        for _ in range(config.assign_passes):
            labels, sizes = _assign_spikes(cdist(features, centres), config.min_spikes)

            # Drop empty clusters and relabel densely
            live = np.flatnonzero(sizes)
            if live.size < centres.shape[0]:
                lookup = np.full(centres.shape[0], -1, dtype=np.intp)
                lookup[live] = np.arange(live.size)
                labels = lookup[labels]
                centres = centres[live]

            if previous is not None and np.array_equal(labels, previous):
                break
            previous = labels.copy()

            centres = _centroids(features, labels, centres.shape[0])

        logger.debug(
            f"Electrode {electrode_id}: bisection {bisection + 1}/{config.bisections} "
            f"-> {centres.shape[0]} clusters"
        )

    n_clusters = centres.shape[0]
    centres = _centroids(features, labels, n_clusters)
    sizes = np.bincount(labels, minlength=n_clusters).astype(np.int64)
    d0 = _kernel_scale(features, centres[labels])

    logger.info(
        f"Electrode {electrode_id}: initial clustering produced {n_clusters} clusters "
        f"from {n_spikes} spikes (d0={d0:.4g})"
    )

    return InitialClustering(
        assignment=labels.astype(np.int64) + 1,
        sizes=sizes,
        centres=centres,
        d0=d0,
    )
