"""
Connection strength between spike clusters.

Raw interface energy is normalised by the number of spike pairs it sums over,

    En(i, j) = E(i, j) / (n_i * n_j)            i != j
    En(i, i) = E(i, i) / ((n_i ** 2 - n_i) / 2)

and compared with each cluster's own cohesion,

    J(i, j) = 2 * En(i, j) / (En(i, i) + En(j, j))

J is the only statistic that orders merges.

Degenerate values never propagate as NaN:
    - A cluster whose self-energy is zero gets J(i, i) = 1.
    - Off-diagonal entries touching a dead cluster (n = 0) are 0.
    - Any other non-finite off-diagonal entry (e.g. two singletons) is 0,
      so it can never win a similarity search.
"""

import numpy as np

from spksort.clustering.triangular import cluster_line, off_diagonal_mask


def _self_normalised(energy_diag: np.ndarray, sizes: np.ndarray) -> np.ndarray:
    """En(i, i) for every cluster."""
    n = sizes.astype(np.float64)
    with np.errstate(divide="ignore", invalid="ignore"):
        return energy_diag / ((n * n - n) / 2.0)


def _diagonal_strength(energy_diag: np.ndarray, self_norm: np.ndarray) -> np.ndarray:
    """J(i, i), with the zero self-energy convention."""
    with np.errstate(divide="ignore", invalid="ignore"):
        diag = 2.0 * self_norm / (self_norm + self_norm)
    diag[(energy_diag == 0) | ~np.isfinite(diag)] = 1.0
    return diag


def connection_strength(energy: np.ndarray, sizes: np.ndarray) -> np.ndarray:
    """
    Compute the full connection-strength matrix.

    Args:
        energy: Raw interface energy (C, C), upper triangle + diagonal.
        sizes: Spikes per cluster (C,); 0 marks a dead cluster.

    Returns:
        J (C, C) with the same triangular layout as energy; strict lower
        triangle is zero and every entry is finite.
    """
    energy = np.asarray(energy, dtype=np.float64)
    n = np.asarray(sizes, dtype=np.float64)
    size = n.shape[0]

    energy_diag = np.diag(energy).copy()
    self_norm = _self_normalised(energy_diag, n)

    with np.errstate(divide="ignore", invalid="ignore"):
        normalised = energy / np.outer(n, n)
        strength = 2.0 * normalised / (self_norm[:, None] + self_norm[None, :])

    off = off_diagonal_mask(size)
    dead = n == 0
    invalid = ~np.isfinite(strength) | dead[:, None] | dead[None, :]

    J = np.where(off & ~invalid, strength, 0.0)
    J[np.diag_indices(size)] = _diagonal_strength(energy_diag, self_norm)
    return J


def update_connection_row(
    J: np.ndarray,
    energy: np.ndarray,
    sizes: np.ndarray,
    index: int,
) -> None:
    """
    Recompute J in place along the row and column of one cluster.

    Only entries that involve `index` change after it absorbs another
    cluster, so this is O(C) instead of O(C^2).

    Args:
        J: Connection-strength matrix to update (C, C).
        energy: Current raw interface energy (C, C).
        sizes: Current spikes per cluster (C,).
        index: 0-based cluster index whose line is recomputed.
    """
    n = np.asarray(sizes, dtype=np.float64)
    size = n.shape[0]
    rows, cols = cluster_line(index, size)

    energy_diag = np.diag(energy).copy()
    self_norm = _self_normalised(energy_diag, n)

    with np.errstate(divide="ignore", invalid="ignore"):
        values = 2.0 * (energy[rows, cols] / (n[rows] * n[cols])) / (
            self_norm[rows] + self_norm[cols]
        )

    invalid = ~np.isfinite(values) | (n[rows] == 0) | (n[cols] == 0)
    values[invalid] = 0.0
    J[rows, cols] = values

    J[index, index] = _diagonal_strength(energy_diag[[index]], self_norm[[index]])[0]


def off_diagonal_strengths(J: np.ndarray, sizes: np.ndarray) -> np.ndarray:
    """
    Connection strengths between every pair of distinct live clusters.

    Args:
        J: Connection-strength matrix (C, C).
        sizes: Spikes per cluster (C,).

    Returns:
        1-D array of J(i, j), i < j, for clusters with n > 0, in row-major order.
    """
    live = np.flatnonzero(np.asarray(sizes) > 0)
    sub = np.asarray(J)[np.ix_(live, live)]
    return sub[off_diagonal_mask(live.size)]
