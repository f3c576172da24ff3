"""
Bin edges shared by score histograms and range brushes.

ChrF and familiarity live in [0, 1] and are drawn as 20 equal-width bins.
Brush selections are snapped onto the same edges so the highlighted bars
and the filter boundary always agree.
"""

from __future__ import annotations

import math
from typing import List, Optional, Sequence, Tuple

import numpy as np

# 19 interior thresholds -> 20 bins
SCORE_THRESHOLD_COUNT = 19
# Catalog table rows use coarser histograms
ROW_THRESHOLD_COUNT = 9


def bin_size(threshold_count: int = SCORE_THRESHOLD_COUNT) -> float:
    return 1 / (threshold_count + 1)


def thresholds(threshold_count: int = SCORE_THRESHOLD_COUNT) -> List[float]:
    """Interior bin edges, computed as ``(i + 1) * (1 / (n + 1))``."""
    size = bin_size(threshold_count)
    return [(i + 1) * size for i in range(threshold_count)]


def bin_edges(threshold_count: int = SCORE_THRESHOLD_COUNT) -> List[Tuple[float, float]]:
    """(start, end) of every bin; the outer edges are pinned to 0.0 and 1.0."""
    inner = thresholds(threshold_count)
    starts = [0.0] + inner
    ends = inner + [1.0]
    return list(zip(starts, ends))


def valid_scores(values: Sequence[Optional[float]]) -> np.ndarray:
    """Scores that can be binned: not null, not NaN and inside [0, 1]."""
    arr = np.asarray([v for v in values if v is not None], dtype=np.float64)
    if arr.size == 0:
        return arr
    arr = arr[~np.isnan(arr)]
    return arr[(arr >= 0.0) & (arr <= 1.0)]


def bin_counts(
    values: Sequence[Optional[float]],
    threshold_count: int = SCORE_THRESHOLD_COUNT,
) -> List[int]:
    """Count values per bin.

    A value equal to a threshold belongs to the bin above it; 1.0 lands in
    the last bin. Values rejected by ``valid_scores`` are not counted.
    """
    arr = valid_scores(values)
    counts = np.zeros(threshold_count + 1, dtype=np.int64)
    if arr.size == 0:
        return counts.tolist()

    positions = np.searchsorted(np.asarray(thresholds(threshold_count)), arr, side="right")
    np.add.at(counts, positions, 1)
    return counts.tolist()


def snap_to_bin(value: float, threshold_count: int = SCORE_THRESHOLD_COUNT) -> float:
    """Quantize a brushed value down onto a bin edge.

    The rule is ``floor(floor(value * 100) / (bin_size * 100)) * bin_size``.
    The value is truncated to hundredths first, so 0.149 snaps to 0.10, and
    floating point noise in ``value * 100`` (0.29 * 100 == 28.999999999999996)
    truncates to the hundredth below.
    """
    size = bin_size(threshold_count)
    multiple = math.floor(math.floor(value * 100) / (size * 100))
    return multiple * size
