"""Shared types for the rating / z-score / simulation pipeline.

The guiding principle is to keep the runtime objects small and explicit.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Any, Optional

import pandas as pd


class Signal(str, Enum):
    BUY = "BUY"
    SELL = "SELL"
    HOLD = "HOLD"


class PositionState(str, Enum):
    FLAT = "FLAT"
    LONG = "LONG"


class ExitReason(str, Enum):
    Z_SCORE_REVERSION = "Z_SCORE_REVERSION"
    PROFIT_TARGET = "PROFIT_TARGET"
    STOP_LOSS = "STOP_LOSS"
    FORCED_CLOSE = "FORCED_CLOSE"


@dataclass(frozen=True)
class PricePoint:
    """OHLCV candle for one asset.

    `taker_buy_volume` is the taker-buy base volume of the candle when the
    source provides it; the rating outcome score uses it to judge who drove
    the move.
    """

    asset: str
    timestamp: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float = 0.0
    taker_buy_volume: Optional[float] = None


@dataclass(frozen=True)
class RatingState:
    """(rating, deviation, volatility) triple updated once per period."""

    rating: float
    deviation: float
    volatility: float


@dataclass(frozen=True)
class RatingPoint:
    asset: str
    timestamp: datetime
    rating: float
    deviation: float
    volatility: float
    performance_score: float = 0.5

    @property
    def state(self) -> RatingState:
        return RatingState(self.rating, self.deviation, self.volatility)


@dataclass(frozen=True)
class ZScorePoint:
    timestamp: datetime
    rating: float
    moving_average: float
    standard_deviation: float
    z_score: float


@dataclass(frozen=True)
class Position:
    """Open long position owned by a single simulator run."""

    entry_time: datetime
    entry_price: float
    quantity: float
    take_profit_price: float
    stop_loss_price: float
    entry_fee: float = 0.0

    @property
    def cost_basis(self) -> float:
        return self.quantity * self.entry_price + self.entry_fee


@dataclass(frozen=True)
class EquityPoint:
    timestamp: datetime
    value: float


@dataclass(frozen=True)
class Trade:
    """A closed round trip (entry + matching exit)."""

    asset: str
    entry_time: datetime
    exit_time: datetime
    entry_price: float
    exit_price: float
    quantity: float
    exit_reason: ExitReason
    profit_loss: float
    profit_loss_percent: float
    duration_hours: float
    fees_paid: float = 0.0
    side: str = "LONG"

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["entry_time"] = pd.Timestamp(self.entry_time).isoformat()
        d["exit_time"] = pd.Timestamp(self.exit_time).isoformat()
        d["exit_reason"] = self.exit_reason.value
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Trade":
        return cls(
            asset=str(d["asset"]),
            entry_time=pd.Timestamp(d["entry_time"]).to_pydatetime(),
            exit_time=pd.Timestamp(d["exit_time"]).to_pydatetime(),
            entry_price=float(d["entry_price"]),
            exit_price=float(d["exit_price"]),
            quantity=float(d["quantity"]),
            exit_reason=ExitReason(d["exit_reason"]),
            profit_loss=float(d["profit_loss"]),
            profit_loss_percent=float(d["profit_loss_percent"]),
            duration_hours=float(d["duration_hours"]),
            fees_paid=float(d.get("fees_paid", 0.0)),
            side=str(d.get("side", "LONG")),
        )


@dataclass(frozen=True)
class MetricsRecord:
    """End-of-run performance summary.

    Units:
    - total_return, annualized_return, benchmark_return, alpha,
      max_drawdown, annualized_volatility: percent
    - win_ratio: fraction in [0, 1]
    """

    total_return: float = 0.0
    annualized_return: float = 0.0
    benchmark_return: float = 0.0
    alpha: float = 0.0
    sharpe_ratio: float = 0.0
    sortino_ratio: float = 0.0
    calmar_ratio: float = 0.0
    max_drawdown: float = 0.0
    annualized_volatility: float = 0.0
    win_ratio: float = 0.0
    profit_factor: float = 0.0
    total_trades: int = 0
    avg_trade_duration_hours: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "MetricsRecord":
        kwargs: dict[str, Any] = {}
        for f in fields(cls):
            if f.name not in d:
                continue
            kwargs[f.name] = int(d[f.name]) if f.name == "total_trades" else float(d[f.name])
        return cls(**kwargs)
