"""Configuration objects.

Style rules:
- keep signatures stable (no alias chaos)
- prefer explicit field names
- validate in __post_init__ so a bad config never reaches the simulator
"""

from __future__ import annotations

import math
import numbers
import os
from dataclasses import dataclass, fields
from datetime import datetime
from typing import Optional

import pandas as pd
from pandas.tseries.frequencies import to_offset

from .errors import ConfigurationError
from .types import MetricsRecord


def _as_datetime(value, name: str) -> datetime:
    # pd.NaT is a datetime subclass, so check it before the passthrough
    if value is None or value is pd.NaT:
        raise ConfigurationError(f"{name} is required", field=name)
    if isinstance(value, datetime):
        return value
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(f"{name} is not a valid timestamp: {value!r}", field=name) from exc
    if pd.isna(ts):
        raise ConfigurationError(f"{name} is not a valid timestamp: {value!r}", field=name)
    return ts.to_pydatetime()


def _as_number(value, name: str) -> float:
    if isinstance(value, bool) or not isinstance(value, numbers.Real):
        raise ConfigurationError(f"{name} must be a number, got {value!r}", field=name)
    if not math.isfinite(value):
        raise ConfigurationError(f"{name} must be finite, got {value!r}", field=name)
    return float(value)


def _as_int(value, name: str) -> int:
    x = _as_number(value, name)
    if not x.is_integer():
        raise ConfigurationError(f"{name} must be an integer, got {value!r}", field=name)
    return int(x)


# camelCase parameter-bag keys -> BacktestConfig field names
PARAM_ALIASES = {
    "asset": "asset",
    "symbol": "asset",
    "startTime": "start_time",
    "endTime": "end_time",
    "zScoreThreshold": "z_score_threshold",
    "movingAverages": "moving_average_period",
    "movingAveragePeriod": "moving_average_period",
    "profitPercent": "profit_percent",
    "stopLossPercent": "stop_loss_percent",
    "initialCapital": "initial_capital",
    "feeRate": "fee_rate",
    "allocationFraction": "allocation_fraction",
    "exitEvaluation": "exit_evaluation",
    "intrabarTieBreak": "intrabar_tie_break",
    "riskFreeRate": "risk_free_rate",
}


@dataclass(frozen=True)
class RatingConfig:
    """Glicko-style rating constants."""

    initial_rating: float = 1500.0
    initial_deviation: float = 350.0
    initial_volatility: float = 0.06

    # Synthetic reference opponent: a stable "market" player.
    reference_rating: float = 1500.0
    reference_deviation: float = 100.0

    deviation_floor: float = 50.0
    deviation_ceiling: float = 350.0
    min_volatility: float = 0.01
    max_volatility: float = 0.2

    # E is clamped into (eps, 1 - eps) so v stays finite.
    expectation_epsilon: float = 1e-9

    # pandas offset alias used to batch candles into rating periods.
    period: str = "7D"

    # |close/open - 1| below this is scored as a draw.
    draw_band: float = 0.0001

    def __post_init__(self):
        if not (0.0 <= self.deviation_floor <= self.deviation_ceiling <= 350.0):
            raise ConfigurationError(
                "deviation bounds must satisfy 0 <= floor <= ceiling <= 350", field="deviation_floor"
            )
        if not (0.0 < self.min_volatility <= self.max_volatility):
            raise ConfigurationError("volatility bounds must satisfy 0 < min <= max", field="min_volatility")
        if not (0.0 < self.expectation_epsilon < 0.5):
            raise ConfigurationError("expectation_epsilon must be in (0, 0.5)", field="expectation_epsilon")
        if self.reference_deviation < 0 or self.initial_deviation < 0:
            raise ConfigurationError("deviations must be non-negative", field="initial_deviation")
        try:
            to_offset(self.period)
        except ValueError as exc:
            raise ConfigurationError(f"unknown rating period: {self.period!r}", field="period") from exc


@dataclass(frozen=True)
class BacktestConfig:
    """One simulation run: asset, window and strategy parameters.

    Notes:
    - exit_evaluation "CLOSE" compares only the candle close against the
      profit/stop prices; "INTRABAR" compares high/low and resolves a candle
      that touches both with `intrabar_tie_break`.
    - allocation_fraction leaves a cash buffer so the entry fee is always covered.
    """

    asset: str
    start_time: datetime
    end_time: datetime

    z_score_threshold: float = 2.0
    moving_average_period: int = 20
    profit_percent: float = 5.0
    stop_loss_percent: float = 2.5

    initial_capital: float = 10_000.0
    fee_rate: float = 0.001
    allocation_fraction: float = 0.95

    exit_evaluation: str = "CLOSE"  # 'CLOSE' or 'INTRABAR'
    intrabar_tie_break: str = "STOP_FIRST"  # 'STOP_FIRST' or 'TARGET_FIRST'

    risk_free_rate: float = 0.02

    def __post_init__(self):
        if not self.asset or not str(self.asset).strip():
            raise ConfigurationError("asset is required", field="asset")
        object.__setattr__(self, "start_time", _as_datetime(self.start_time, "start_time"))
        object.__setattr__(self, "end_time", _as_datetime(self.end_time, "end_time"))
        if (self.start_time.tzinfo is None) != (self.end_time.tzinfo is None):
            raise ConfigurationError(
                "start_time and end_time must both be timezone-aware or both naive", field="start_time"
            )
        for name in (
            "z_score_threshold",
            "profit_percent",
            "stop_loss_percent",
            "initial_capital",
            "fee_rate",
            "allocation_fraction",
            "risk_free_rate",
        ):
            object.__setattr__(self, name, _as_number(getattr(self, name), name))
        object.__setattr__(
            self, "moving_average_period", _as_int(self.moving_average_period, "moving_average_period")
        )
        object.__setattr__(self, "exit_evaluation", str(self.exit_evaluation).upper())
        object.__setattr__(self, "intrabar_tie_break", str(self.intrabar_tie_break).upper())
        self._validate()

    def _validate(self) -> None:
        if self.start_time >= self.end_time:
            raise ConfigurationError("start_time must be before end_time", field="start_time")
        if not self.z_score_threshold > 0:
            raise ConfigurationError("z_score_threshold must be > 0", field="z_score_threshold")
        if self.moving_average_period <= 1:
            raise ConfigurationError("moving_average_period must be > 1", field="moving_average_period")
        if not self.profit_percent > 0:
            raise ConfigurationError("profit_percent must be > 0", field="profit_percent")
        if not (0 < self.stop_loss_percent < 100):
            raise ConfigurationError("stop_loss_percent must be in (0, 100)", field="stop_loss_percent")
        if not self.initial_capital > 0:
            raise ConfigurationError("initial_capital must be > 0", field="initial_capital")
        if not (0 <= self.fee_rate < 1):
            raise ConfigurationError("fee_rate must be in [0, 1)", field="fee_rate")
        if not (0 < self.allocation_fraction <= 1):
            raise ConfigurationError("allocation_fraction must be in (0, 1]", field="allocation_fraction")
        if self.allocation_fraction * (1.0 + self.fee_rate) > 1.0:
            raise ConfigurationError(
                "allocation_fraction leaves no room for the entry fee", field="allocation_fraction"
            )
        if self.exit_evaluation not in ("CLOSE", "INTRABAR"):
            raise ConfigurationError("exit_evaluation must be 'CLOSE' or 'INTRABAR'", field="exit_evaluation")
        if self.intrabar_tie_break not in ("STOP_FIRST", "TARGET_FIRST"):
            raise ConfigurationError(
                "intrabar_tie_break must be 'STOP_FIRST' or 'TARGET_FIRST'", field="intrabar_tie_break"
            )

    @property
    def period_years(self) -> float:
        return (self.end_time - self.start_time).total_seconds() / (365.25 * 24 * 3600)

    @classmethod
    def from_params_dict(cls, d: dict) -> "BacktestConfig":
        """Create BacktestConfig from a camelCase parameter bag.

        Keys follow the optimizer/parameter-set naming (e.g. zScoreThreshold,
        movingAverages). snake_case field names are accepted as-is. Unknown
        keys are ignored.
        """
        kwargs = {}
        for k, v in (d or {}).items():
            name = param_field(k)
            if name is not None:
                kwargs[name] = v

        missing = [n for n in ("asset", "start_time", "end_time") if n not in kwargs]
        if missing:
            raise ConfigurationError(f"missing required parameters: {missing}", field=missing[0])

        return cls(**kwargs)


_FIELD_NAMES = {f.name for f in fields(BacktestConfig)}


def param_field(key: str) -> Optional[str]:
    """BacktestConfig field a parameter-bag key maps to, or None."""
    if key in PARAM_ALIASES:
        return PARAM_ALIASES[key]
    if key in _FIELD_NAMES:
        return key
    return None


_METRIC_NAMES = {f.name for f in fields(MetricsRecord)}


@dataclass(frozen=True)
class SweepConfig:
    """Worker-pool settings for a parameter sweep."""

    max_workers: int = min(os.cpu_count() or 1, 8)
    executor: str = "process"  # 'process' or 'thread'
    run_timeout_seconds: Optional[float] = 600.0
    target_metric: str = "sharpe_ratio"
    max_results: Optional[int] = None

    def __post_init__(self):
        if self.max_workers < 1:
            raise ConfigurationError("max_workers must be >= 1", field="max_workers")
        if self.executor not in ("process", "thread"):
            raise ConfigurationError("executor must be 'process' or 'thread'", field="executor")
        if self.run_timeout_seconds is not None and not self.run_timeout_seconds > 0:
            raise ConfigurationError("run_timeout_seconds must be > 0", field="run_timeout_seconds")
        if self.target_metric not in _METRIC_NAMES:
            raise ConfigurationError(f"unknown target metric: {self.target_metric!r}", field="target_metric")
