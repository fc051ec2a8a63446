"""
Input validation utilities for the spike sorting engine.
"""

from typing import Optional

import numpy as np

from spksort.utils.exceptions import ValidationError


def validate_features(
    features: np.ndarray,
    min_spikes: int = 2,
    electrode_id: Optional[int] = None,
) -> np.ndarray:
    """
    Validate a per-electrode feature matrix.

    Args:
        features: Array (n_spikes, n_components), one row per spike
        min_spikes: Minimum number of rows required
        electrode_id: Electrode identifier (for error messages)

    Returns:
        Features as a C-contiguous float64 array

    Raises:
        ValidationError: If the array is not 2-D, too short, or not finite
    """
    features = np.asarray(features, dtype=np.float64)
    entity_id = None if electrode_id is None else str(electrode_id)

    if features.ndim != 2:
        raise ValidationError(
            f"Features must be a 2-D array (n_spikes, n_components), got shape {features.shape}",
            entity="electrode", entity_id=entity_id, field="features",
        )

    if features.shape[1] < 1:
        raise ValidationError(
            "Features must have at least one component",
            entity="electrode", entity_id=entity_id, field="features",
        )

    if features.shape[0] < min_spikes:
        raise ValidationError(
            f"Features must have at least {min_spikes} spikes, got {features.shape[0]}",
            entity="electrode", entity_id=entity_id, field="features",
        )

    if not np.all(np.isfinite(features)):
        raise ValidationError(
            "Features contain NaN or infinite values",
            entity="electrode", entity_id=entity_id, field="features",
        )

    return np.ascontiguousarray(features)


def validate_waveforms(
    waveforms: np.ndarray,
    n_spikes: int,
    electrode_id: Optional[int] = None,
) -> np.ndarray:
    """
    Validate a waveform matrix against the number of spikes.

    Args:
        waveforms: Array (n_spikes, n_samples)
        n_spikes: Expected number of rows
        electrode_id: Electrode identifier (for error messages)

    Returns:
        Waveforms as a float64 array

    Raises:
        ValidationError: If the shape does not match
    """
    waveforms = np.asarray(waveforms, dtype=np.float64)
    entity_id = None if electrode_id is None else str(electrode_id)

    if waveforms.ndim != 2 or waveforms.shape[0] != n_spikes:
        raise ValidationError(
            f"Waveforms must have shape ({n_spikes}, n_samples), got {waveforms.shape}",
            entity="electrode", entity_id=entity_id, field="waveforms",
        )

    return waveforms


def validate_assignment(
    assignment: np.ndarray,
    n_spikes: int,
    n_clusters: int,
) -> np.ndarray:
    """
    Validate a cluster assignment vector.

    Cluster ids run from 1 to n_clusters; 0 marks a rejected spike.

    Args:
        assignment: Integer vector with one cluster id per spike
        n_spikes: Expected length
        n_clusters: Number of initial clusters

    Returns:
        Assignment as an int64 array

    Raises:
        ValidationError: If length or id range is wrong
    """
    assignment = np.asarray(assignment)

    if assignment.ndim != 1 or assignment.shape[0] != n_spikes:
        raise ValidationError(
            f"Assignment must be a vector of length {n_spikes}, got shape {assignment.shape}",
            field="assignment",
        )

    if assignment.size and not np.issubdtype(assignment.dtype, np.integer):
        if not np.all(np.mod(assignment, 1) == 0):
            raise ValidationError("Assignment must contain integer cluster ids", field="assignment")

    assignment = assignment.astype(np.int64)

    if assignment.size and (assignment.min() < 0 or assignment.max() > n_clusters):
        raise ValidationError(
            f"Assignment ids must lie in [0, {n_clusters}], "
            f"got [{assignment.min()}, {assignment.max()}]",
            field="assignment",
        )

    return assignment


def validate_square_matrix(matrix: np.ndarray, size: int, name: str = "energy") -> np.ndarray:
    """
    Validate a square C x C matrix.

    Args:
        matrix: Array to check
        size: Expected number of rows and columns
        name: Field name for error messages

    Returns:
        Matrix as a float64 array (copy)

    Raises:
        ValidationError: If shape is wrong
    """
    matrix = np.array(matrix, dtype=np.float64)

    if matrix.shape != (size, size):
        raise ValidationError(
            f"{name} matrix must have shape ({size}, {size}), got {matrix.shape}",
            field=name,
        )

    return matrix
