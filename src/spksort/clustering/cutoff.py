"""
Connection-strength cutoff estimation.

Merging stops once the strongest remaining connection falls below a cutoff.
The cutoff is either given explicitly (default_cutoff > 0) or estimated per
electrode: the off-diagonal connection strengths between initial clusters
are bootstrapped, the `percentile`-th percentile is taken of each resample,
and the upper bound of the (1 - alpha) bias-corrected and accelerated (BCa)
confidence interval of that percentile is returned.

When there are too few cluster pairs to bootstrap, a named fallback policy
supplies the cutoff instead. Fallbacks are registered with a decorator:

    @FallbackRegistry.register("my_policy")
    def my_policy(strengths, config):
        return 0.1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Tuple

import numpy as np
from scipy.stats import bootstrap

from spksort.clustering.connection import off_diagonal_strengths

if TYPE_CHECKING:
    from spksort.pipeline.config import SortConfig


logger = logging.getLogger(__name__)

# Percentile definition matching MATLAB's prctile
PERCENTILE_METHOD = "hazen"

# Bootstrap resamples evaluated per vectorised batch
BOOTSTRAP_BATCH = 1000

FallbackPolicy = Callable[[np.ndarray, "SortConfig"], float]


@dataclass
class CutoffEstimate:
    """Connection-strength cutoff for one electrode.

    Attributes:
        value: The cutoff.
        method: "default", "bootstrap", "degenerate" or "fallback".
        n_pairs: Number of off-diagonal cluster pairs available.
        interval: BCa confidence interval (low, high) when bootstrapped.
        fallback: Name of the fallback policy used, if any.
        reason: Why a fallback or degenerate bound was used.
    """
    value: float
    method: str
    n_pairs: int
    interval: Optional[Tuple[float, float]] = None
    fallback: Optional[str] = None
    reason: str = ""


class FallbackRegistry:
    """
    Registry of cutoff fallback policies, keyed by name.

    A policy receives the available off-diagonal strengths (possibly empty)
    and the sort configuration, and returns a cutoff.
    """

    _registry: Dict[str, FallbackPolicy] = {}

    @classmethod
    def register(cls, name: str):
        """
        Decorator to register a fallback policy.

        Raises:
            ValueError: If name is already registered
        """
        def decorator(policy: FallbackPolicy) -> FallbackPolicy:
            if name in cls._registry:
                raise ValueError(f"Fallback '{name}' is already registered")
            cls._registry[name] = policy
            logger.debug(f"Registered cutoff fallback: {name} -> {policy.__name__}")
            return policy

        return decorator

    @classmethod
    def get(cls, name: str) -> FallbackPolicy:
        """
        Get a registered fallback policy by name.

        Raises:
            KeyError: If the policy is not registered
        """
        if name not in cls._registry:
            available = ", ".join(sorted(cls._registry.keys())) or "(none)"
            raise KeyError(f"Unknown fallback: '{name}'. Available fallbacks: {available}")
        return cls._registry[name]

    @classmethod
    def list_all(cls) -> List[str]:
        """Sorted list of registered fallback names."""
        return sorted(cls._registry.keys())

    @classmethod
    def is_registered(cls, name: str) -> bool:
        return name in cls._registry


@FallbackRegistry.register("zero")
def zero_fallback(strengths: np.ndarray, config: "SortConfig") -> float:
    """Cutoff of zero: any remaining pair may merge."""
    return 0.0


@FallbackRegistry.register("percentile")
def percentile_fallback(strengths: np.ndarray, config: "SortConfig") -> float:
    """Plain percentile of the available strengths, without a confidence bound."""
    if strengths.size == 0:
        return 0.0
    return float(np.percentile(strengths, config.percentile, method=PERCENTILE_METHOD))


@FallbackRegistry.register("fixed")
def fixed_fallback(strengths: np.ndarray, config: "SortConfig") -> float:
    """The configured fallback_cutoff."""
    return float(config.fallback_cutoff)


def bootstrap_percentile_interval(
    values: np.ndarray,
    percentile: float,
    n_bootstrap: int,
    alpha: float,
    rng: np.random.Generator,
) -> Tuple[float, float]:
    """
    BCa bootstrap confidence interval of a percentile.

    Args:
        values: 1-D sample.
        percentile: Percentile in [0, 100] computed on each resample.
        n_bootstrap: Number of resamples.
        alpha: Two-sided interval has confidence level 1 - alpha.
        rng: Random generator.

    Returns:
        (low, high); either may be NaN if the interval is undefined.
    """
    def statistic(sample, axis):
        return np.percentile(sample, percentile, axis=axis, method=PERCENTILE_METHOD)

    result = bootstrap(
        (values,),
        statistic,
        n_resamples=n_bootstrap,
        batch=BOOTSTRAP_BATCH,
        vectorized=True,
        confidence_level=1.0 - alpha,
        method="BCa",
        rng=rng,
    )
    interval = result.confidence_interval
    return float(interval.low), float(interval.high)


def _apply_fallback(strengths: np.ndarray, config: "SortConfig", reason: str) -> CutoffEstimate:
    policy = FallbackRegistry.get(config.fallback)
    value = float(policy(strengths, config))
    logger.warning(f"Cutoff bootstrap not possible ({reason}); fallback '{config.fallback}' -> {value:.4g}")
    return CutoffEstimate(
        value=value,
        method="fallback",
        n_pairs=int(strengths.size),
        fallback=config.fallback,
        reason=reason,
    )


def estimate_cutoff(
    J: np.ndarray,
    sizes: np.ndarray,
    config: "SortConfig",
    rng: Optional[np.random.Generator] = None,
) -> CutoffEstimate:
    """
    Derive the connection-strength cutoff for one electrode.

    Args:
        J: Connection strengths of the initial clusters (C, C).
        sizes: Spikes per cluster (C,).
        config: Sort configuration (default_cutoff, n_bootstrap, alpha,
            percentile, fallback, min_bootstrap_pairs).
        rng: Random generator; defaults to one seeded with config.random_seed.

    Returns:
        CutoffEstimate. Never raises for small or degenerate inputs.
    """
    strengths = off_diagonal_strengths(J, sizes)

    if config.default_cutoff > 0:
        return CutoffEstimate(
            value=float(config.default_cutoff),
            method="default",
            n_pairs=int(strengths.size),
        )

    if strengths.size < config.min_bootstrap_pairs:
        return _apply_fallback(
            strengths, config,
            f"{strengths.size} cluster pairs, need {config.min_bootstrap_pairs}",
        )

    if np.ptp(strengths) == 0:
        value = float(strengths[0])
        logger.info(f"All {strengths.size} connection strengths equal; cutoff = {value:.4g}")
        return CutoffEstimate(
            value=value,
            method="degenerate",
            n_pairs=int(strengths.size),
            interval=(value, value),
            reason="constant connection strengths",
        )

    if rng is None:
        rng = np.random.default_rng(config.random_seed)

    low, high = bootstrap_percentile_interval(
        strengths, config.percentile, config.n_bootstrap, config.alpha, rng
    )

    if not np.isfinite(high):
        return _apply_fallback(strengths, config, "undefined BCa interval")

    logger.debug(
        f"Bootstrap cutoff: {config.percentile}th percentile of {strengths.size} pairs, "
        f"{100 * (1 - config.alpha):.3g}% CI [{low:.4g}, {high:.4g}]"
    )

    return CutoffEstimate(
        value=high,
        method="bootstrap",
        n_pairs=int(strengths.size),
        interval=(low, high),
    )
