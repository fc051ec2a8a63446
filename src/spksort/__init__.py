"""
Spike Sorting by Interface Energy

Offline sorting of extracellular spikes, one electrode at a time. Spikes are
over-clustered, then merged agglomeratively by kernel-based connection
strength until a per-electrode cutoff is reached. A reviewer can redirect the
result before the final units are numbered.

Architecture:
    - clustering/ : Initial clustering, interface energy, cutoff, merging
    - manual/     : Manual review session and finalization
    - pipeline/   : Configuration and per-electrode batch runner
    - utils/      : Shared utilities (logging, hashing, validation)
    - cli         : `spksort` command for batch runs
"""

__version__ = "0.1.0"
__author__ = "Jiang Lab"

# Users should import from subpackages directly:
#   from spksort.pipeline import sort_electrodes
#   from spksort.manual import ManualMergeSession
