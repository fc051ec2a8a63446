"""
Command line entry point for batch spike sorting.

Reads per-electrode features from an .npz archive holding arrays named
features_<electrode_id> (and optionally waveforms_<electrode_id>), sorts
every electrode and prints a summary. Results are not written anywhere.

Usage:
    spksort spikes.npz --config config/sort_defaults.json --progress
"""

import argparse
import logging
import re
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np

from spksort.pipeline.config import load_sort_config
from spksort.pipeline.runner import ElectrodeSpikes, SortResult, sort_electrodes
from spksort.utils.exceptions import SpikeSortError, ValidationError
from spksort.utils.logging import setup_logging


logger = logging.getLogger(__name__)

FEATURE_KEY = re.compile(r"^features_(\d+)$")


def load_electrodes(path: Path) -> List[ElectrodeSpikes]:
    """
    Read electrode inputs from an .npz archive.

    Raises:
        ValidationError: If the archive holds no features_<id> arrays
    """
    electrodes = []
    with np.load(path) as archive:
        for key in sorted(archive.files):
            match = FEATURE_KEY.match(key)
            if match is None:
                continue
            electrode_id = int(match.group(1))
            waveform_key = f"waveforms_{electrode_id}"
            electrodes.append(ElectrodeSpikes(
                electrode_id=electrode_id,
                features=archive[key],
                waveforms=archive[waveform_key] if waveform_key in archive.files else None,
            ))

    if not electrodes:
        raise ValidationError(
            f"No features_<electrode_id> arrays in {path}",
            entity="archive", entity_id=str(path), field="features",
        )
    return sorted(electrodes, key=lambda e: e.electrode_id)


def print_summary(result: SortResult) -> None:
    print("=" * 70)
    print(f"{'Electrode':>10} {'Initial':>8} {'Final':>6} {'Cutoff':>8}  Method")
    for electrode_id, res in result.results.items():
        print(
            f"{electrode_id:>10} {res.n_initial_clusters:>8} {res.n_clusters:>6} "
            f"{res.cutoff.value:>8.4f}  {res.cutoff.method}"
        )
    print("=" * 70)
    print(f"Sorted:  {len(result.results)}")
    print(f"Skipped: {len(result.skipped)}")
    print(f"Failed:  {len(result.failed)}")
    for electrode_id, error in list(result.failed.items())[:10]:
        print(f"  - electrode {electrode_id}: {error}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Sort spikes of many electrodes by interface-energy merging"
    )
    parser.add_argument("spikes", type=Path, help="Archive (.npz) of features_<id> arrays")
    parser.add_argument(
        "--config", type=Path, default=None,
        help="JSON sort configuration (default: config/sort_defaults.json)"
    )
    parser.add_argument("--workers", type=int, default=None, help="Electrodes sorted in parallel")
    parser.add_argument("--progress", action="store_true", help="Show progress bars")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the batch sort. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    overrides = {"show_progress": True} if args.progress else {}
    if args.debug:
        overrides["log_level"] = "DEBUG"

    try:
        config = load_sort_config(args.config, **overrides)
    except SpikeSortError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    setup_logging(config.log_level)

    try:
        electrodes = load_electrodes(args.spikes)
        result = sort_electrodes(electrodes, config, max_workers=args.workers)
    except (OSError, ValueError, SpikeSortError) as e:
        logger.error(f"Sorting failed: {e}")
        return 1

    print_summary(result)
    return 0 if result.success else 1


if __name__ == "__main__":
    sys.exit(main())
