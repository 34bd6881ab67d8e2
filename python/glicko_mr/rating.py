"""Glicko-style asset ratings.

Each asset plays one game per rating period against a synthetic reference
opponent (a stable "market" player). The game outcome is a [0, 1] score
derived from the period's candles (price direction confirmed by taker-buy
volume).

Volatility uses the closed-form approximation

    sigma' = sqrt(sigma^2 + delta^2 / v)

clamped to [min_volatility, max_volatility], instead of the iterative
(Illinois) root finding of the full Glicko-2 procedure. This is an accepted
simplification for per-period online updates.
"""

from __future__ import annotations

import logging
import math
from typing import Dict, Optional, Sequence

import numpy as np
import pandas as pd

from .config import RatingConfig
from .types import PricePoint, RatingPoint, RatingState

logger = logging.getLogger(__name__)

# ln(10) / 400 expressed as its reciprocal: rating points per internal unit.
GLICKO2_SCALE = 173.7178
CENTER_RATING = 1500.0


def to_glicko2_scale(rating: float, deviation: float) -> tuple[float, float]:
    """Rating/deviation -> internal (mu, phi)."""
    return (rating - CENTER_RATING) / GLICKO2_SCALE, deviation / GLICKO2_SCALE


def from_glicko2_scale(mu: float, phi: float) -> tuple[float, float]:
    """Internal (mu, phi) -> rating/deviation."""
    return GLICKO2_SCALE * mu + CENTER_RATING, GLICKO2_SCALE * phi


def g(phi: float) -> float:
    """Weight of a game given the opponent's deviation."""
    return 1.0 / math.sqrt(1.0 + 3.0 * phi * phi / (math.pi * math.pi))


def expected_score(mu: float, mu_j: float, phi_j: float) -> float:
    """Expected outcome against opponent (mu_j, phi_j)."""
    return 1.0 / (1.0 + math.exp(-g(phi_j) * (mu - mu_j)))


def hybrid_score(bar: PricePoint, draw_band: float = 0.0001) -> float:
    """Outcome of one candle in [0, 1].

    - flat candle (|change| < draw_band): 0.5
    - up, taker buys dominant: 1.0; up otherwise: 0.75
    - down, taker buys dominant: 0.25; down otherwise: 0.0

    Inconsistent volume (negative, or taker buys above the total) scores 0.5.
    Zero volume means an even split, which is not dominant. Without taker
    volume there is no dominance confirmation and moves score as
    low-confidence (0.75 / 0.25).
    """
    o, c = float(bar.open), float(bar.close)
    if not (np.isfinite(o) and np.isfinite(c)) or o <= 0 or c <= 0:
        return 0.5

    buy = bar.taker_buy_volume
    vol = float(bar.volume)
    if vol < 0 or (buy is not None and (buy < 0 or buy > vol)):
        logger.debug("invalid volume on %s at %s: volume=%s taker_buy=%s", bar.asset, bar.timestamp, vol, buy)
        return 0.5

    change = (c - o) / o
    if abs(change) < draw_band:
        return 0.5

    if buy is None:
        return 0.75 if change > 0 else 0.25

    buy_ratio = float(buy) / vol if vol > 0 else 0.5
    buy_dominant = buy_ratio > 1.0 - buy_ratio
    if change > 0:
        return 1.0 if buy_dominant else 0.75
    return 0.25 if buy_dominant else 0.0


def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


class RatingEngine:
    """Per-period rating updater for a single asset (or many, one at a time)."""

    def __init__(self, cfg: RatingConfig = RatingConfig()):
        self.cfg = cfg

    def initial_state(self) -> RatingState:
        cfg = self.cfg
        return RatingState(
            rating=cfg.initial_rating,
            deviation=_clamp(cfg.initial_deviation, cfg.deviation_floor, cfg.deviation_ceiling),
            volatility=_clamp(cfg.initial_volatility, cfg.min_volatility, cfg.max_volatility),
        )

    def reference(self) -> RatingState:
        cfg = self.cfg
        return RatingState(cfg.reference_rating, cfg.reference_deviation, cfg.initial_volatility)

    def update(self, state: RatingState, outcome: float, reference: Optional[RatingState] = None) -> RatingState:
        """Play one game against `reference` and return the next-period triple."""
        if not np.isfinite(outcome):
            raise ValueError(f"outcome must be finite, got {outcome!r}")
        cfg = self.cfg
        ref = reference if reference is not None else self.reference()
        outcome = _clamp(float(outcome), 0.0, 1.0)

        mu, phi = to_glicko2_scale(state.rating, state.deviation)
        mu_j, phi_j = to_glicko2_scale(ref.rating, ref.deviation)

        g_j = g(phi_j)
        eps = cfg.expectation_epsilon
        e = _clamp(expected_score(mu, mu_j, phi_j), eps, 1.0 - eps)

        v = 1.0 / (g_j * g_j * e * (1.0 - e))
        delta = v * g_j * (outcome - e)

        sigma = _clamp(math.sqrt(state.volatility ** 2 + delta * delta / v), cfg.min_volatility, cfg.max_volatility)

        phi_star = math.sqrt(phi * phi + sigma * sigma)
        new_phi = 1.0 / math.sqrt(1.0 / (phi_star * phi_star) + 1.0 / v)
        new_mu = mu + new_phi * new_phi * g_j * (outcome - e)

        rating, deviation = from_glicko2_scale(new_mu, new_phi)
        return RatingState(
            rating=rating,
            deviation=_clamp(deviation, cfg.deviation_floor, cfg.deviation_ceiling),
            volatility=sigma,
        )

    def decay(self, state: RatingState) -> RatingState:
        """Inactive period: uncertainty grows by the volatility, rating unchanged."""
        mu, phi = to_glicko2_scale(state.rating, state.deviation)
        new_phi = math.sqrt(phi * phi + state.volatility ** 2)
        _, deviation = from_glicko2_scale(mu, new_phi)
        return RatingState(
            rating=state.rating,
            deviation=_clamp(deviation, self.cfg.deviation_floor, self.cfg.deviation_ceiling),
            volatility=state.volatility,
        )

    def rate_series(
        self,
        prices: Sequence[PricePoint],
        asset: Optional[str] = None,
        initial: Optional[RatingState] = None,
    ) -> list[RatingPoint]:
        """Batch candles into rating periods and emit one RatingPoint per period.

        The period outcome is the mean candle score. Empty periods between
        populated ones decay the deviation without emitting a point.
        """
        if not prices:
            return []
        asset = asset or prices[0].asset
        cfg = self.cfg

        ts = pd.to_datetime([p.timestamp for p in prices])
        df = pd.DataFrame(
            {"ts": ts, "score": [hybrid_score(p, cfg.draw_band) for p in prices]},
            index=pd.DatetimeIndex(ts),
        ).sort_index()

        grouped = df.resample(cfg.period).agg({"score": ["mean", "count"], "ts": "max"})
        grouped.columns = ["score", "count", "ts"]

        state = initial if initial is not None else self.initial_state()
        out: list[RatingPoint] = []
        for _, row in grouped.iterrows():
            if int(row["count"]) == 0:
                state = self.decay(state)
                continue
            score = float(row["score"])
            state = self.update(state, score)
            out.append(
                RatingPoint(
                    asset=asset,
                    timestamp=pd.Timestamp(row["ts"]).to_pydatetime(),
                    rating=state.rating,
                    deviation=state.deviation,
                    volatility=state.volatility,
                    performance_score=score,
                )
            )

        logger.debug("rated %s: %d candles -> %d periods", asset, len(prices), len(out))
        return out


def recenter(latest: Dict[str, RatingPoint], center: float = CENTER_RATING) -> Dict[str, RatingPoint]:
    """Shift a pool's latest ratings so their mean equals `center`.

    Keeps a closed pool of assets from drifting (inflation/deflation).
    """
    if not latest:
        return {}
    shift = center - float(np.mean([p.rating for p in latest.values()]))
    return {
        asset: RatingPoint(
            asset=p.asset,
            timestamp=p.timestamp,
            rating=p.rating + shift,
            deviation=p.deviation,
            volatility=p.volatility,
            performance_score=p.performance_score,
        )
        for asset, p in latest.items()
    }
