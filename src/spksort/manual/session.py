"""
Manual review of an electrode's merge result.

A ManualMergeSession holds the initial and automated merge states of one
electrode and applies reviewer commands to a working MergeEngine. Commands
are synchronous: each one takes the session lock, applies atomically, and
returns the new MergeState. A GUI client sends commands through dispatch()
and redraws from the returned state; no clustering logic lives in callbacks.
"""

import threading
from dataclasses import replace
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

import numpy as np

from spksort.clustering.merge import MergeEngine, MergeState
from spksort.manual.finalize import FinalizeResult, finalize_clusters
from spksort.utils.exceptions import ConfigurationError, SessionError, StaleReferenceError
from spksort.utils.logging import LoggerMixin
from spksort.utils.validation import validate_waveforms


class ResetMode(Enum):
    """State a session can be reset to."""
    AUTOMATED = "automated"  # Result of the automatic merge
    INITIAL = "initial"      # Initial clusters, nothing merged


class ManualMergeSession(LoggerMixin):
    """
    Reviewer-driven merging for one electrode.

    Args:
        initial: State before any merge.
        automated: State after the automatic merge.
        waveforms: Array (n_spikes, n_samples) used by finalize().
        electrode_id: Electrode identifier for logging and errors.

    Example:
        >>> session = ManualMergeSession(initial, automated, waveforms)
        >>> state = session.set_cutoff(0.2)
        >>> state = session.merge(3, 7, expected_revision=state.revision)
        >>> result = session.finalize()
    """

    COMMANDS = ("reset", "set_cutoff", "merge", "reject", "suggest", "finalize")

    def __init__(
        self,
        initial: MergeState,
        automated: MergeState,
        waveforms: np.ndarray,
        electrode_id: Optional[int] = None,
    ):
        self._initial = initial
        self._automated = automated
        self._waveforms = validate_waveforms(waveforms, initial.assignment.shape[0], electrode_id)
        self.electrode_id = electrode_id

        self._lock = threading.RLock()
        self._engine = MergeEngine.from_state(automated, electrode_id)
        self._revision = 0
        self._result: Optional[FinalizeResult] = None

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def state(self) -> MergeState:
        """Current state; its revision is the session's command counter."""
        with self._lock:
            return replace(self._engine.snapshot(), revision=self._revision)

    @property
    def is_finalized(self) -> bool:
        return self._result is not None

    @property
    def result(self) -> Optional[FinalizeResult]:
        return self._result

    # =========================================================================
    # Commands
    # =========================================================================

    def _begin(self, operation: str, expected_revision: Optional[int]) -> None:
        """Checks shared by every mutating command; call with the lock held."""
        if self._result is not None:
            raise SessionError(
                f"Session for electrode {self.electrode_id} is finalized; cannot {operation}",
                electrode_id=self.electrode_id, operation=operation,
            )
        if expected_revision is not None and expected_revision != self._revision:
            raise StaleReferenceError(
                f"Command based on revision {expected_revision}, session is at {self._revision}",
                revision=expected_revision,
            )

    def _commit(self) -> MergeState:
        self._revision += 1
        return replace(self._engine.snapshot(), revision=self._revision)

    def reset(self, mode: ResetMode = ResetMode.AUTOMATED, expected_revision: Optional[int] = None) -> MergeState:
        """Discard manual changes and return to the automated or initial state."""
        mode = ResetMode(mode)
        with self._lock:
            self._begin("reset", expected_revision)
            source = self._automated if mode is ResetMode.AUTOMATED else self._initial
            self._engine = MergeEngine.from_state(source, self.electrode_id)
            self.logger.info(f"Electrode {self.electrode_id}: reset to {mode.value} state")
            return self._commit()

    def set_cutoff(self, value: float, expected_revision: Optional[int] = None) -> MergeState:
        """
        Re-run automatic merging from the initial clusters with a new cutoff.

        The result depends only on the initial state and value; earlier
        manual merges and rejections are discarded.

        Raises:
            ConfigurationError: If value is outside [0, 1].
        """
        value = float(value)
        if not 0.0 <= value <= 1.0:
            raise ConfigurationError(f"Cutoff must lie in [0, 1], got {value}")

        with self._lock:
            self._begin("set_cutoff", expected_revision)
            engine = MergeEngine.from_state(self._initial, self.electrode_id)
            engine.run(value)
            self._engine = engine
            return self._commit()

    def merge(self, a: int, b: int, expected_revision: Optional[int] = None) -> MergeState:
        """Merge two live clusters.

        Raises:
            StaleReferenceError: If either cluster is dead or a == b.
        """
        with self._lock:
            self._begin("merge", expected_revision)
            self._engine.merge(a, b)
            return self._commit()

    def reject(self, cluster_id: int, expected_revision: Optional[int] = None) -> MergeState:
        """Reject a live cluster; its spikes are assigned id 0."""
        with self._lock:
            self._begin("reject", expected_revision)
            self._engine.reject(cluster_id)
            return self._commit()

    def suggest(self, selected: Optional[int] = None) -> Optional[Tuple[int, int]]:
        """Strongest pair overall, or the strongest partner of `selected`."""
        with self._lock:
            return self._engine.suggest(selected)

    def finalize(self) -> FinalizeResult:
        """
        Freeze the session and number the surviving clusters.

        Raises:
            SessionError: If the session was already finalized.
        """
        with self._lock:
            self._begin("finalize", None)
            self._result = finalize_clusters(self._engine.snapshot(), self._waveforms)
            self.logger.info(
                f"Electrode {self.electrode_id}: finalized {self._result.n_units} units "
                f"({len(self._result.rejected)} clusters rejected)"
            )
            return self._result

    def dispatch(self, command: str, *args, **kwargs):
        """
        Run a command by name.

        Args:
            command: One of COMMANDS.
            *args, **kwargs: Passed to the command method.

        Raises:
            SessionError: If the command is unknown.
        """
        handlers: Dict[str, Callable] = {name: getattr(self, name) for name in self.COMMANDS}
        if command not in handlers:
            raise SessionError(
                f"Unknown command: '{command}'. Available: {', '.join(self.COMMANDS)}",
                electrode_id=self.electrode_id, operation=command,
            )
        self.logger.debug(f"Electrode {self.electrode_id}: dispatch {command}{args}")
        return handlers[command](*args, **kwargs)
