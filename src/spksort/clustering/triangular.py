"""
Index helpers for upper-triangular cluster matrices.

Interface-energy and connection-strength matrices store the pair (i, j) only
at row = min(i, j), col = max(i, j); the strict lower triangle is unused.
When cluster `high` is merged into cluster `low`, the merged cluster's energy
to every third cluster k is E(low, k) + E(high, k). Both terms live in
"L-shaped" regions of the upper triangle: the column above the diagonal
plus the row to the right of it. l_shaped_indices builds those two regions as
explicit (row, col) index arrays in O(size).
"""

from typing import NamedTuple, Tuple

import numpy as np


class LShapedIndices(NamedTuple):
    """Paired index sets for a merge of `high` into `low`.

    Attributes:
        low_rows, low_cols: Upper-triangle positions of (low, k) for every k
            other than low and high.
        high_rows, high_cols: Upper-triangle positions of (high, k) for the
            same k, in the same order.
        others: The k values, ascending.
    """
    low_rows: np.ndarray
    low_cols: np.ndarray
    high_rows: np.ndarray
    high_cols: np.ndarray
    others: np.ndarray

    @property
    def low(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.low_rows, self.low_cols

    @property
    def high(self) -> Tuple[np.ndarray, np.ndarray]:
        return self.high_rows, self.high_cols


def upper_pair(i: int, j: int) -> Tuple[int, int]:
    """Return (row, col) of the pair in the upper triangle."""
    return (i, j) if i <= j else (j, i)


def l_shaped_indices(low: int, high: int, size: int) -> LShapedIndices:
    """
    Build the two L-shaped index sets used when merging `high` into `low`.

    Args:
        low: Surviving cluster index (0-based), low < high
        high: Absorbed cluster index (0-based)
        size: Number of rows/columns of the matrix

    Returns:
        LShapedIndices whose low and high sets are disjoint, exclude the
        (low, high) entry and both diagonal entries, and are aligned so that
        position m of each refers to the same third cluster.

    Raises:
        ValueError: If low >= high or either index is out of range
    """
    if not 0 <= low < high < size:
        raise ValueError(
            f"Expected 0 <= low < high < size, got low={low}, high={high}, size={size}"
        )

    others = np.concatenate([
        np.arange(0, low),
        np.arange(low + 1, high),
        np.arange(high + 1, size),
    ]).astype(np.intp)

    low_rows = np.minimum(others, low)
    low_cols = np.maximum(others, low)
    high_rows = np.minimum(others, high)
    high_cols = np.maximum(others, high)

    return LShapedIndices(low_rows, low_cols, high_rows, high_cols, others)


def cluster_line(index: int, size: int) -> Tuple[np.ndarray, np.ndarray]:
    """
    Upper-triangle positions of every off-diagonal pair that involves `index`.

    Returns:
        (rows, cols) for (k, index) with k < index followed by (index, k)
        with k > index.
    """
    others = np.concatenate([np.arange(0, index), np.arange(index + 1, size)]).astype(np.intp)
    return np.minimum(others, index), np.maximum(others, index)


def off_diagonal_mask(size: int) -> np.ndarray:
    """Boolean mask of the strict upper triangle."""
    return np.triu(np.ones((size, size), dtype=bool), k=1)
