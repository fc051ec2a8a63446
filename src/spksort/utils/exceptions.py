"""
Exception hierarchy for the spike sorting engine.

All custom exceptions inherit from SpikeSortError.
"""

from typing import Optional


class SpikeSortError(Exception):
    """
    Base exception for all spike sorting errors.

    All custom exceptions MUST inherit from this class.
    """
    pass


class ConfigurationError(SpikeSortError):
    """
    Invalid configuration or parameters.

    Raised when:
    - Bisection count or reassignment passes are not positive
    - Percentile outside [0, 100]
    - Cutoff outside [0, 1]
    - Unknown cutoff fallback policy
    - Config file not found or malformed
    """
    pass


class ValidationError(SpikeSortError):
    """
    Input data validation failed.

    Raised when:
    - Feature or waveform matrices have the wrong shape
    - Fewer spikes than a cluster requires
    - Cluster assignment ids out of range
    """

    def __init__(
        self,
        message: str,
        entity: Optional[str] = None,
        entity_id: Optional[str] = None,
        field: Optional[str] = None,
    ):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id
        self.field = field


class StaleReferenceError(SpikeSortError):
    """
    A command referenced a cluster or snapshot that is no longer current.

    Raised when:
    - Merging or rejecting a cluster that was merged away or rejected
    - Merging a cluster with itself
    - A command carries a snapshot revision older than the current one

    Raised before any state is mutated.
    """

    def __init__(
        self,
        message: str,
        cluster_id: Optional[int] = None,
        revision: Optional[int] = None,
    ):
        super().__init__(message)
        self.cluster_id = cluster_id
        self.revision = revision


class SessionError(SpikeSortError):
    """
    Error with ManualMergeSession operations.

    Raised when:
    - A command is issued after the session was finalized
    - An unknown command name is dispatched
    """

    def __init__(
        self,
        message: str,
        electrode_id: Optional[int] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.electrode_id = electrode_id
        self.operation = operation


class ElectrodeSortError(SpikeSortError):
    """
    Sorting failed for a single electrode.

    The batch runner records these per electrode and keeps processing the
    remaining electrodes.
    """

    def __init__(
        self,
        message: str,
        electrode_id: Optional[int] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.electrode_id = electrode_id
        self.original_error = original_error
