"""Test fixtures for spike sorting tests."""

from tests.fixtures.synthetic_clusters import (
    SCENARIO_SIZES,
    SCENARIO_STRENGTHS,
    assignment_from_sizes,
    energy_from_strengths,
    generate_blobs,
    generate_waveforms,
    random_state,
    scenario_state,
    split_in_tiles,
)

__all__ = [
    "SCENARIO_SIZES",
    "SCENARIO_STRENGTHS",
    "assignment_from_sizes",
    "energy_from_strengths",
    "generate_blobs",
    "generate_waveforms",
    "random_state",
    "scenario_state",
    "split_in_tiles",
]
