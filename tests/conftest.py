"""
Pytest configuration and shared fixtures for spike sorting tests.

This module provides:
    - Sort configurations
    - Synthetic electrode data
    - Common test utilities
"""

import pytest
import tempfile
from pathlib import Path

import numpy as np

from spksort.pipeline.config import build_sort_config
from tests.fixtures.synthetic_clusters import generate_blobs, generate_waveforms


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after the test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def small_config():
    """Fast configuration: few bisections and resamples."""
    return build_sort_config(
        bisections=3,
        assign_passes=5,
        min_spikes=10,
        default_cutoff=0.0,
        n_bootstrap=200,
        n_workers=1,
    )


@pytest.fixture
def two_blob_features():
    """Two well separated 2-D blobs of 150 spikes each, with blob labels."""
    return generate_blobs([[0.0, 0.0], [25.0, 25.0]], n_per_blob=150, spread=1.0, seed=7)


@pytest.fixture
def two_blob_waveforms(two_blob_features):
    """Waveforms matching two_blob_features; blob 1 is larger."""
    _, labels = two_blob_features
    return generate_waveforms(labels, amplitudes=[1.0, 3.0], seed=7)


@pytest.fixture
def rng():
    """Seeded random generator."""
    return np.random.default_rng(12345)
