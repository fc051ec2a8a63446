"""
Manual review of automated merges.

Provides:
    - ManualMergeSession: reset, set_cutoff, merge, reject, suggest, finalize
    - finalize_clusters: renumber surviving clusters by waveform RMS
"""

from spksort.manual.finalize import FinalizeResult, build_id_map, finalize_clusters
from spksort.manual.session import ManualMergeSession, ResetMode

__all__ = [
    "ManualMergeSession",
    "ResetMode",
    "FinalizeResult",
    "finalize_clusters",
    "build_id_map",
]
