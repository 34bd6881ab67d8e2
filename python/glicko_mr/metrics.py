"""Performance metrics.

Everything here is a pure function of its inputs. Degenerate inputs resolve
to documented sentinels (0 or +/-RATIO_CAP), never NaN/inf.
"""

from __future__ import annotations

from typing import Optional, Sequence

import numpy as np
import pandas as pd

from .types import EquityPoint, MetricsRecord, PricePoint, Trade

RATIO_CAP = 9999.0
DAYS_PER_YEAR = 365.25


def _finite(x: float) -> float:
    x = float(x)
    return x if np.isfinite(x) else 0.0


def equity_series(equity_curve: Sequence[EquityPoint]) -> pd.Series:
    """Equity curve as a float Series indexed by timestamp."""
    if not equity_curve:
        return pd.Series(dtype=float)
    idx = pd.DatetimeIndex([pd.Timestamp(p.timestamp) for p in equity_curve])
    return pd.Series([float(p.value) for p in equity_curve], index=idx, dtype=float)


def max_drawdown(equity: pd.Series, initial: Optional[float] = None) -> float:
    """Maximum drawdown in percent (positive number).

    The running peak starts at `initial` when given, so a curve that never
    climbs above the starting capital still registers its losses.
    """
    x = equity.astype(float).to_numpy()
    if initial is not None:
        x = np.concatenate([[float(initial)], x])
    if len(x) == 0:
        return 0.0
    peak = np.maximum.accumulate(x)
    dd = 1.0 - (x / np.maximum(peak, np.finfo(float).tiny))
    return _finite(max(0.0, float(np.nanmax(dd))) * 100.0)


def annualized_return(total_factor: float, period_years: float) -> float:
    """Geometric annualization of an end/start factor, in percent."""
    if period_years <= 0:
        return 0.0
    if total_factor <= 0:
        return -100.0
    return _finite((total_factor ** (1.0 / period_years) - 1.0) * 100.0)


def periods_per_year(index: pd.DatetimeIndex) -> float:
    """Sampling frequency inferred from the median spacing of `index`."""
    if len(index) < 2:
        return DAYS_PER_YEAR
    # index.values may be datetime64[us] or [s] depending on how it was built
    spacing = np.diff(index.values).astype("timedelta64[ns]").astype(np.int64) / 1e9
    spacing = spacing[spacing > 0]
    if len(spacing) == 0:
        return DAYS_PER_YEAR
    median = float(np.median(spacing))
    return DAYS_PER_YEAR * 24 * 3600 / median


def periodic_returns(equity: pd.Series) -> np.ndarray:
    x = equity.astype(float).to_numpy()
    if len(x) < 2:
        return np.empty(0)
    prev, cur = x[:-1], x[1:]
    ok = prev > 0
    return (cur[ok] - prev[ok]) / prev[ok]


def benchmark_return(prices: Sequence[PricePoint]) -> float:
    """Buy-and-hold total return in percent over the first/last close."""
    if len(prices) < 2:
        return 0.0
    ordered = sorted(prices, key=lambda p: pd.Timestamp(p.timestamp))
    first, last = float(ordered[0].close), float(ordered[-1].close)
    if first <= 0:
        return 0.0
    return _finite((last / first - 1.0) * 100.0)


def _capped_ratio(num: float, den: float) -> float:
    if den > 0:
        return float(np.clip(num / den, -RATIO_CAP, RATIO_CAP))
    return RATIO_CAP if num > 0 else 0.0


def analyze(
    trades: Sequence[Trade],
    equity_curve: Sequence[EquityPoint],
    benchmark_prices: Sequence[PricePoint],
    initial_capital: float,
    period_years: float,
    risk_free_rate: float = 0.02,
) -> MetricsRecord:
    """Summarize one run.

    Units: returns, drawdown and volatility in percent, ratios unitless,
    win_ratio as a fraction. A run without trades yields zero strategy metrics
    but still reports the benchmark and alpha.
    """
    bench = benchmark_return(benchmark_prices)
    bench_annual = annualized_return(1.0 + bench / 100.0, period_years)

    if not trades:
        return MetricsRecord(benchmark_return=bench, alpha=_finite(-bench_annual))

    equity = equity_series(equity_curve)
    initial = float(initial_capital)
    final = float(equity.iloc[-1]) if len(equity) else initial

    total = (final - initial) / initial * 100.0
    annual = annualized_return(final / initial, period_years)

    rets = periodic_returns(equity)
    ppy = periods_per_year(equity.index)
    vol = float(np.std(rets)) * np.sqrt(ppy) if len(rets) else 0.0

    excess = annual / 100.0 - risk_free_rate
    sharpe = excess / vol if vol > 0 else 0.0

    downside = np.minimum(rets, 0.0)
    if np.any(downside < 0):
        downside_dev = float(np.sqrt(np.mean(downside ** 2))) * np.sqrt(ppy)
        sortino = excess / downside_dev if downside_dev > 0 else 0.0
    else:
        sortino = 0.0

    mdd = max_drawdown(equity, initial=initial)
    calmar = _capped_ratio(annual, mdd)

    pnl = np.asarray([t.profit_loss for t in trades], dtype=float)
    gross_profit = float(pnl[pnl > 0].sum())
    gross_loss = float(-pnl[pnl < 0].sum())
    profit_factor = min(_capped_ratio(gross_profit, gross_loss), RATIO_CAP)

    return MetricsRecord(
        total_return=_finite(total),
        annualized_return=_finite(annual),
        benchmark_return=bench,
        alpha=_finite(annual - bench_annual),
        sharpe_ratio=_finite(sharpe),
        sortino_ratio=_finite(sortino),
        calmar_ratio=_finite(calmar),
        max_drawdown=mdd,
        annualized_volatility=_finite(vol * 100.0),
        win_ratio=float(np.mean(pnl > 0)),
        profit_factor=_finite(profit_factor),
        total_trades=len(trades),
        avg_trade_duration_hours=_finite(np.mean([t.duration_hours for t in trades])),
    )
