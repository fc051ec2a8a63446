"""
Clustering stages for one electrode.

Provides:
    - initial_clustering: over-segmentation into many small clusters
    - compute_energy_matrix: raw interface energy between clusters
    - connection_strength: normalised energy used to order merges
    - estimate_cutoff: per-electrode stopping threshold, with FallbackRegistry
    - MergeEngine: agglomerative merging and its manual primitives
"""

from spksort.clustering.initial import InitialClustering, initial_clustering
from spksort.clustering.energy import compute_energy_matrix
from spksort.clustering.connection import (
    connection_strength,
    update_connection_row,
    off_diagonal_strengths,
)
from spksort.clustering.cutoff import (
    CutoffEstimate,
    FallbackRegistry,
    estimate_cutoff,
)
from spksort.clustering.merge import MergeEngine, MergeState, MergeStatus

__all__ = [
    # Initial clustering
    "InitialClustering",
    "initial_clustering",
    # Energy and connection strength
    "compute_energy_matrix",
    "connection_strength",
    "update_connection_row",
    "off_diagonal_strengths",
    # Cutoff
    "CutoffEstimate",
    "FallbackRegistry",
    "estimate_cutoff",
    # Merging
    "MergeEngine",
    "MergeState",
    "MergeStatus",
]
