"""
Per-electrode sorting runner.

Runs initial clustering, interface energy, cutoff estimation and automatic
merging for each electrode. Electrodes are independent: they run
concurrently, a failure on one electrode is recorded and the rest continue.
"""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

import numpy as np
from tqdm import tqdm

from spksort.clustering.cutoff import CutoffEstimate, estimate_cutoff
from spksort.clustering.energy import compute_energy_matrix
from spksort.clustering.initial import initial_clustering
from spksort.clustering.merge import MergeEngine, MergeState
from spksort.manual.finalize import FinalizeResult
from spksort.manual.session import ManualMergeSession
from spksort.pipeline.config import SortConfig, build_sort_config
from spksort.utils.exceptions import ElectrodeSortError, ValidationError
from spksort.utils.hashing import hash_config
from spksort.utils.validation import validate_features, validate_waveforms


logger = logging.getLogger(__name__)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ElectrodeSpikes:
    """Spikes recorded on one electrode.

    Attributes:
        electrode_id: Non-negative electrode identifier.
        features: Reduced features (n_spikes, n_components).
        waveforms: Spike waveforms (n_spikes, n_samples); needed for review.
        d0: Kernel distance scale overriding the clustering estimate.
    """
    electrode_id: int
    features: np.ndarray
    waveforms: Optional[np.ndarray] = None
    d0: Optional[float] = None

    @property
    def n_spikes(self) -> int:
        return int(np.shape(self.features)[0])


@dataclass
class ElectrodeSortResult:
    """Result of automatic sorting on one electrode."""
    electrode_id: int
    initial_energy: np.ndarray
    energy: np.ndarray
    initial_assignment: np.ndarray
    assignment: np.ndarray
    initial_sizes: np.ndarray
    sizes: np.ndarray
    d0: float
    cutoff: CutoffEstimate
    merge_history: List[Tuple[int, int]] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    elapsed_s: float = 0.0
    config_hash: str = ""

    @property
    def n_initial_clusters(self) -> int:
        return int(self.initial_sizes.shape[0])

    @property
    def n_clusters(self) -> int:
        return int(np.count_nonzero(self.sizes))

    def initial_state(self) -> MergeState:
        """Merge state before any merge."""
        return MergeEngine(
            self.initial_energy, self.initial_sizes, self.initial_assignment
        ).snapshot()

    def automated_state(self) -> MergeState:
        """Merge state after the automatic merge."""
        engine = MergeEngine.from_state(self.initial_state(), self.electrode_id)
        engine.cutoff = self.cutoff.value
        return engine.replay(self.merge_history)


@dataclass
class SortResult:
    """Result of sorting a batch of electrodes."""
    results: Dict[int, ElectrodeSortResult] = field(default_factory=dict)
    failed: Dict[int, str] = field(default_factory=dict)
    skipped: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    config_hash: str = ""

    @property
    def success(self) -> bool:
        return not self.failed


@dataclass
class BatchFinalizeResult:
    """
    Reviewed units of many electrodes.

    Attributes:
        electrode_ids: Electrode ids in ascending order.
        cutoffs: Cutoff in effect per electrode (NaN if none was set).
        n_units: Final unit count per electrode.
        id_maps: Electrode id -> (original cluster id -> final unit id).
        units: Electrode id -> FinalizeResult.
    """
    electrode_ids: np.ndarray
    cutoffs: np.ndarray
    n_units: np.ndarray
    id_maps: Dict[int, Dict[int, int]] = field(default_factory=dict)
    units: Dict[int, FinalizeResult] = field(default_factory=dict)

    @property
    def total_units(self) -> int:
        return int(self.n_units.sum())


# =============================================================================
# Single Electrode
# =============================================================================

def electrode_rng(random_seed: int, electrode_id: int) -> np.random.Generator:
    """Random generator that depends only on the seed and the electrode."""
    if electrode_id < 0:
        raise ValidationError(
            f"Electrode ids must be non-negative, got {electrode_id}",
            entity="electrode", entity_id=str(electrode_id), field="electrode_id",
        )
    return np.random.default_rng([random_seed, electrode_id])


def sort_electrode(
    spikes: ElectrodeSpikes,
    config: Optional[SortConfig] = None,
    rng: Optional[np.random.Generator] = None,
) -> ElectrodeSortResult:
    """
    Sort the spikes of one electrode automatically.

    Args:
        spikes: Electrode features (and optionally waveforms and d0)
        config: Sort configuration (default: built-in defaults)
        rng: Random generator (default: derived from random_seed and electrode_id)

    Returns:
        ElectrodeSortResult

    Raises:
        ValidationError: If the inputs are malformed
    """
    start = time.perf_counter()
    config = config or build_sort_config()
    electrode_id = spikes.electrode_id
    warnings: List[str] = []

    if rng is None:
        rng = electrode_rng(config.random_seed, electrode_id)

    features = validate_features(spikes.features, min_spikes=2, electrode_id=electrode_id)
    if spikes.waveforms is not None:
        validate_waveforms(spikes.waveforms, features.shape[0], electrode_id)

    initial = initial_clustering(features, config, rng=rng, electrode_id=electrode_id)

    d0 = initial.d0
    if spikes.d0 is not None:
        if not np.isfinite(spikes.d0) or spikes.d0 <= 0:
            raise ValidationError(
                f"d0 must be a positive finite number, got {spikes.d0}",
                entity="electrode", entity_id=str(electrode_id), field="d0",
            )
        d0 = float(spikes.d0)
    elif d0 <= np.finfo(np.float64).eps:
        warnings.append("Zero within-cluster variance; d0 set to machine epsilon")

    energy = compute_energy_matrix(
        features,
        initial.assignment,
        initial.n_clusters,
        d0,
        n_workers=config.n_workers,
        show_progress=config.show_progress,
    )

    engine = MergeEngine(energy, initial.sizes, initial.assignment, electrode_id=electrode_id)
    initial_state = engine.snapshot()

    estimate = estimate_cutoff(engine.connection, initial.sizes, config, rng=rng)
    if estimate.method == "fallback":
        warnings.append(f"Cutoff fallback '{estimate.fallback}': {estimate.reason}")

    engine.run(estimate.value)
    final_state = engine.snapshot()

    elapsed = time.perf_counter() - start
    logger.info(
        f"Electrode {electrode_id}: {initial.n_clusters} -> {final_state.n_clusters} clusters "
        f"(cutoff {estimate.value:.4g}, {estimate.method}) in {elapsed:.2f}s"
    )

    return ElectrodeSortResult(
        electrode_id=electrode_id,
        initial_energy=np.array(initial_state.energy),
        energy=np.array(final_state.energy),
        initial_assignment=np.array(initial_state.assignment),
        assignment=np.array(final_state.assignment),
        initial_sizes=np.array(initial_state.sizes),
        sizes=np.array(final_state.sizes),
        d0=d0,
        cutoff=estimate,
        merge_history=list(final_state.merge_history),
        warnings=warnings,
        elapsed_s=elapsed,
        config_hash=hash_config(config.model_dump()),
    )


def create_merge_session(
    result: ElectrodeSortResult,
    waveforms: np.ndarray,
) -> ManualMergeSession:
    """
    Open a manual review session on an automatic result.

    Args:
        result: Automatic result of one electrode
        waveforms: Waveforms (n_spikes, n_samples) of the same spikes

    Returns:
        ManualMergeSession starting at the automated state
    """
    return ManualMergeSession(
        initial=result.initial_state(),
        automated=result.automated_state(),
        waveforms=waveforms,
        electrode_id=result.electrode_id,
    )


def collect_finalized(finalized: Mapping[int, FinalizeResult]) -> BatchFinalizeResult:
    """
    Gather finalized electrodes into per-batch arrays.

    Args:
        finalized: Electrode id -> FinalizeResult (e.g. from session.finalize())

    Returns:
        BatchFinalizeResult ordered by electrode id
    """
    electrode_ids = sorted(int(electrode_id) for electrode_id in finalized)
    units = {electrode_id: finalized[electrode_id] for electrode_id in electrode_ids}

    cutoffs = np.array([
        np.nan if res.cutoff is None else res.cutoff for res in units.values()
    ], dtype=np.float64)
    n_units = np.array([res.n_units for res in units.values()], dtype=np.int64)

    logger.info(f"Collected {int(n_units.sum())} units from {len(units)} electrodes")
    return BatchFinalizeResult(
        electrode_ids=np.array(electrode_ids, dtype=np.int64),
        cutoffs=cutoffs,
        n_units=n_units,
        id_maps={electrode_id: dict(res.id_map) for electrode_id, res in units.items()},
        units=units,
    )


# =============================================================================
# Batch
# =============================================================================

def sort_electrodes(
    electrodes: Iterable[ElectrodeSpikes],
    config: Optional[SortConfig] = None,
    max_workers: Optional[int] = None,
) -> SortResult:
    """
    Sort many electrodes concurrently.

    Electrodes with fewer than min_spikes spikes are skipped. A failure on one
    electrode is logged and recorded in SortResult.failed; the remaining
    electrodes are still sorted.

    Args:
        electrodes: Electrode inputs (unique electrode ids)
        config: Sort configuration (default: built-in defaults)
        max_workers: Thread count (default: 80% of CPU cores)

    Returns:
        SortResult

    Example:
        >>> result = sort_electrodes(electrodes, build_sort_config(default_cutoff=0.0))
        >>> for electrode_id, res in result.results.items():
        ...     print(electrode_id, res.n_clusters)
    """
    config = config or build_sort_config()
    batch = SortResult(config_hash=hash_config(config.model_dump()))

    to_sort: List[ElectrodeSpikes] = []
    seen = set()
    for spikes in electrodes:
        if spikes.electrode_id in seen:
            raise ValidationError(
                f"Duplicate electrode id {spikes.electrode_id}",
                entity="electrode", entity_id=str(spikes.electrode_id), field="electrode_id",
            )
        seen.add(spikes.electrode_id)
        if spikes.n_spikes < max(config.min_spikes, 2):
            logger.info(
                f"Skipping electrode {spikes.electrode_id}: {spikes.n_spikes} spikes "
                f"(minimum {config.min_spikes})"
            )
            batch.skipped.append(spikes.electrode_id)
            continue
        to_sort.append(spikes)

    if not to_sort:
        logger.warning("No electrodes to sort")
        return batch

    if max_workers is None:
        cpu_count = os.cpu_count() or 4
        max_workers = max(1, min(int(cpu_count * 0.8), len(to_sort)))

    def run_one(spikes: ElectrodeSpikes) -> Tuple[int, Optional[ElectrodeSortResult], Optional[ElectrodeSortError]]:
        """Sort one electrode. Returns (electrode_id, result, error)."""
        try:
            return spikes.electrode_id, sort_electrode(spikes, config), None
        except Exception as e:
            error = ElectrodeSortError(
                f"Sorting failed for electrode {spikes.electrode_id}: {e}",
                electrode_id=spikes.electrode_id,
                original_error=e,
            )
            return spikes.electrode_id, None, error

    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {executor.submit(run_one, spikes): spikes.electrode_id for spikes in to_sort}

        for future in tqdm(as_completed(futures), total=len(futures),
                           desc="Sorting electrodes", unit="electrode",
                           disable=not config.show_progress):
            electrode_id, result, error = future.result()
            if error is not None:
                logger.error(str(error))
                batch.failed[electrode_id] = str(error.original_error)
                batch.warnings.append(str(error))
                continue
            batch.results[electrode_id] = result

    batch.results = dict(sorted(batch.results.items()))
    logger.info(
        f"Sorted {len(batch.results)} electrodes "
        f"({len(batch.failed)} failed, {len(batch.skipped)} skipped)"
    )
    return batch
