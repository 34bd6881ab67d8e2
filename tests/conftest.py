"""
Shared test fixtures for the glicko_mr tests.

Series builders produce daily candles / ratings / z-scores starting at
2024-01-01 so tests can describe paths as plain lists of numbers.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence

import numpy as np
import pytest

from glicko_mr.config import BacktestConfig
from glicko_mr.data_provider import InMemoryProvider
from glicko_mr.types import PricePoint, RatingPoint, ZScorePoint

ASSET = "BTCUSDT"
T0 = datetime(2024, 1, 1)


def day(i: int) -> datetime:
    return T0 + timedelta(days=i)


def make_prices(
    closes: Sequence[float],
    start: int = 0,
    highs: Optional[Sequence[float]] = None,
    lows: Optional[Sequence[float]] = None,
    asset: str = ASSET,
) -> list[PricePoint]:
    out = []
    for k, c in enumerate(closes):
        out.append(
            PricePoint(
                asset=asset,
                timestamp=day(start + k),
                open=float(c),
                high=float(highs[k]) if highs is not None else float(c),
                low=float(lows[k]) if lows is not None else float(c),
                close=float(c),
                volume=100.0,
            )
        )
    return out


def make_zscores(values: Sequence[float], start: int = 0) -> list[ZScorePoint]:
    return [
        ZScorePoint(timestamp=day(start + k), rating=1500.0, moving_average=1500.0, standard_deviation=1.0, z_score=z)
        for k, z in enumerate(values)
    ]


def make_ratings(values: Sequence[float], start: int = 0, asset: str = ASSET) -> list[RatingPoint]:
    return [
        RatingPoint(asset=asset, timestamp=day(start + k), rating=float(r), deviation=100.0, volatility=0.06)
        for k, r in enumerate(values)
    ]


def make_config(n_days: int, **overrides) -> BacktestConfig:
    params = dict(asset=ASSET, start_time=day(0), end_time=day(n_days - 1))
    params.update(overrides)
    return BacktestConfig(**params)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def config_10d() -> BacktestConfig:
    """10-day window, default strategy parameters (threshold 2.0, tp 5%, sl 2.5%)."""
    return make_config(10)


@pytest.fixture
def random_walk_provider() -> InMemoryProvider:
    """400 days of a seeded random walk with ratings that swing around 1500."""
    rng = np.random.default_rng(7)
    n = 400
    closes = 100.0 * np.exp(np.cumsum(rng.normal(0.0, 0.02, n)))
    ratings = 1500.0 + 60.0 * np.sin(np.arange(n) / 6.0) + rng.normal(0.0, 10.0, n)

    start = -100
    prices = make_prices(closes.tolist(), start=start)
    return InMemoryProvider(
        prices={ASSET: prices},
        ratings={ASSET: make_ratings(ratings.tolist(), start=start)},
    )
