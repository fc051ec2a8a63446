"""
Pipeline orchestration for spike sorting.

Provides:
    - Configuration loading and validation
    - Per-electrode and batch sorting runners
    - Opening a manual review session on an automatic result
    - Collecting finalized electrodes into batch arrays
"""

from spksort.pipeline.config import (
    SortConfig,
    build_sort_config,
    load_json_config,
    load_sort_config,
)

from spksort.pipeline.runner import (
    ElectrodeSpikes,
    ElectrodeSortResult,
    SortResult,
    BatchFinalizeResult,
    collect_finalized,
    sort_electrode,
    sort_electrodes,
    create_merge_session,
)

__all__ = [
    # Configuration
    "SortConfig",
    "build_sort_config",
    "load_json_config",
    "load_sort_config",
    # Runner functions
    "sort_electrode",
    "sort_electrodes",
    "create_merge_session",
    "collect_finalized",
    # Data types
    "ElectrodeSpikes",
    "ElectrodeSortResult",
    "SortResult",
    "BatchFinalizeResult",
]
