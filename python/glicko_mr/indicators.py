"""Rating z-score signal.

The z-score of a rating is measured against the trailing window of the N
*previous* ratings (the current point is not part of its own window).
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

from .types import RatingPoint, Signal, ZScorePoint

# A window whose std is below this (relative to its mean) is treated as flat:
# summing identical floats is not exact, so a constant window can produce a
# std of a few ulps instead of 0.
_FLAT_RTOL = 1e-12


def _window_stats(values: np.ndarray) -> tuple[float, float]:
    mean = float(np.mean(values))
    std = float(np.std(values))  # population std (ddof=0)
    if std <= _FLAT_RTOL * max(1.0, abs(mean)):
        std = 0.0
    return mean, std


def zscore_point(window: Sequence[RatingPoint], current: RatingPoint) -> ZScorePoint:
    """Z-score of `current` against `window`."""
    if len(window) == 0:
        raise ValueError("window must contain at least one rating")
    mean, std = _window_stats(np.asarray([p.rating for p in window], dtype=float))
    z = (current.rating - mean) / std if std > 0 else 0.0
    return ZScorePoint(
        timestamp=current.timestamp,
        rating=float(current.rating),
        moving_average=mean,
        standard_deviation=std,
        z_score=float(z),
    )


def zscore_series(ratings: Sequence[RatingPoint], period: int) -> list[ZScorePoint]:
    """Rolling z-scores for a time-ordered rating series.

    Emits one point per rating that has `period` predecessors; the first
    `period` ratings produce nothing.
    """
    if period <= 1:
        raise ValueError("period must be > 1")
    n = len(ratings)
    if n <= period:
        return []

    values = np.asarray([p.rating for p in ratings], dtype=float)
    windows = np.lib.stride_tricks.sliding_window_view(values[:-1], period)
    means = windows.mean(axis=1)
    stds = windows.std(axis=1)

    out: list[ZScorePoint] = []
    for k, i in enumerate(range(period, n)):
        mean = float(means[k])
        std = float(stds[k])
        if std <= _FLAT_RTOL * max(1.0, abs(mean)):
            std = 0.0
        current = float(values[i])
        out.append(
            ZScorePoint(
                timestamp=ratings[i].timestamp,
                rating=current,
                moving_average=mean,
                standard_deviation=std,
                z_score=(current - mean) / std if std > 0 else 0.0,
            )
        )
    return out


def classify(z_score: float, threshold: float) -> Signal:
    """BUY when z >= +threshold, SELL when z <= -threshold, else HOLD."""
    if threshold <= 0:
        raise ValueError("threshold must be positive")
    if z_score >= threshold:
        return Signal.BUY
    if z_score <= -threshold:
        return Signal.SELL
    return Signal.HOLD
