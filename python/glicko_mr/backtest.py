"""Backtest runner utilities: single runs, walk-forward windows and result sinks."""

from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

import numpy as np
import pandas as pd

from .config import BacktestConfig, RatingConfig
from .data_provider import DataProvider
from .errors import ConfigurationError
from .indicators import zscore_series
from .metrics import analyze
from .rating import RatingEngine
from .trader import TradeSimulator
from .types import EquityPoint, MetricsRecord, Trade, ZScorePoint

logger = logging.getLogger(__name__)

DAYS_PER_MONTH = 30


@dataclass(frozen=True)
class BacktestResult:
    config: BacktestConfig
    trades: List[Trade]
    equity_curve: List[EquityPoint]
    metrics: MetricsRecord
    data_gaps: int = 0
    zscore_points: List[ZScorePoint] = field(default_factory=list)
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])


def run_backtest(
    config: BacktestConfig,
    provider: DataProvider,
    rating_cfg: Optional[RatingConfig] = None,
    include_warmup: bool = True,
    sink: Optional["ResultSink"] = None,
) -> BacktestResult:
    """Run one (asset, window, parameter set) simulation.

    With `include_warmup`, ratings before `start_time` are used to fill the
    first z-score windows so the simulation can act from the first candle of
    the window. When the provider has no ratings for the asset and
    `rating_cfg` is given, ratings are derived from the price history.
    """
    period = int(config.moving_average_period)
    rating_start = None if include_warmup else config.start_time

    ratings = provider.get_rating_series(config.asset, rating_start, config.end_time)
    if not ratings and rating_cfg is not None:
        history = provider.get_price_series(config.asset, rating_start, config.end_time)
        ratings = RatingEngine(rating_cfg).rate_series(history, asset=config.asset)

    if len(ratings) <= period:
        logger.warning(
            "%s: %d ratings available, %d required for the z-score window", config.asset, len(ratings), period + 1
        )
        raise ConfigurationError(
            f"insufficient rating history for {config.asset}: {len(ratings)} points, need more than {period}",
            field="moving_average_period",
        )

    prices = provider.get_price_series(config.asset, config.start_time, config.end_time)
    zscores = zscore_series(ratings, period)

    logger.info(
        "backtest %s %s..%s (z=%.2f ma=%d tp=%.2f%% sl=%.2f%%): %d ratings, %d prices",
        config.asset,
        config.start_time,
        config.end_time,
        config.z_score_threshold,
        period,
        config.profit_percent,
        config.stop_loss_percent,
        len(ratings),
        len(prices),
    )

    sim = TradeSimulator(config)
    sim.run(zscores, prices)

    metrics = analyze(
        sim.trades,
        sim.equity_curve,
        prices,
        initial_capital=config.initial_capital,
        period_years=config.period_years,
        risk_free_rate=config.risk_free_rate,
    )

    logger.info(
        "backtest %s done: %d trades, return %.2f%%, sharpe %.3f, max dd %.2f%%, %d data gaps",
        config.asset,
        metrics.total_trades,
        metrics.total_return,
        metrics.sharpe_ratio,
        metrics.max_drawdown,
        sim.data_gaps,
    )
    if sim.data_gaps:
        logger.warning("%s: skipped %d steps with no matching price", config.asset, sim.data_gaps)
    if sink is not None:
        sink.write(config, sim.trades, metrics)

    lo, hi = pd.Timestamp(config.start_time), pd.Timestamp(config.end_time)
    in_window = [z for z in zscores if lo <= pd.Timestamp(z.timestamp) <= hi]
    return BacktestResult(
        config=config,
        trades=list(sim.trades),
        equity_curve=list(sim.equity_curve),
        metrics=metrics,
        data_gaps=sim.data_gaps,
        zscore_points=in_window,
    )


def run_windowed_backtest(
    config: BacktestConfig,
    provider: DataProvider,
    window_months: int = 12,
    step_fraction: float = 0.5,
    rating_cfg: Optional[RatingConfig] = None,
    sink: Optional["ResultSink"] = None,
) -> List[BacktestResult]:
    """Walk-forward runs over [start_time, end_time].

    Windows are `window_months` long (30-day months) and advance by
    `step_fraction` of a window. Only full windows are run; windows without
    price data are skipped.
    """
    if window_months <= 0:
        raise ConfigurationError("window_months must be > 0", field="window_months")
    if not (0 < step_fraction <= 1):
        raise ConfigurationError("step_fraction must be in (0, 1]", field="step_fraction")

    window = pd.Timedelta(days=DAYS_PER_MONTH * int(window_months))
    step = window * step_fraction

    results: List[BacktestResult] = []
    current = pd.Timestamp(config.start_time)
    end = pd.Timestamp(config.end_time)
    while current + window <= end:
        w_start, w_end = current.to_pydatetime(), (current + window).to_pydatetime()
        if provider.get_price_series(config.asset, w_start, w_end):
            w_cfg = replace(config, start_time=w_start, end_time=w_end)
            results.append(run_backtest(w_cfg, provider, rating_cfg=rating_cfg, sink=sink))
        else:
            logger.debug("%s: no prices in window %s..%s, skipped", config.asset, w_start, w_end)
        current += step

    if results:
        summary = summarize_windows(results)
        logger.info(
            "%s: %d windowed runs, %.0f%% positive, mean return %.2f%% (std %.2f)",
            config.asset,
            summary.window_count,
            summary.positive_window_ratio * 100.0,
            summary.mean.total_return,
            summary.return_std,
        )
    else:
        logger.info("%s: no windowed runs", config.asset)
    return results


@dataclass(frozen=True)
class WindowSummary:
    """Cross-window view of a walk-forward run.

    - mean / median: field-wise over the window metrics (total_trades rounded)
    - positive_window_ratio: share of windows with total_return > 0
    - return_std: population std of the window total returns (percent)
    - worst_drawdown: largest window max_drawdown (percent)
    - total_trades: summed over windows
    """

    window_count: int = 0
    mean: MetricsRecord = field(default_factory=MetricsRecord)
    median: MetricsRecord = field(default_factory=MetricsRecord)
    positive_window_ratio: float = 0.0
    return_std: float = 0.0
    worst_drawdown: float = 0.0
    total_trades: int = 0


def _record_from(row: pd.Series) -> MetricsRecord:
    d = row.to_dict()
    d["total_trades"] = int(round(d["total_trades"]))
    return MetricsRecord.from_dict(d)


def summarize_windows(results: Sequence[BacktestResult]) -> WindowSummary:
    """Aggregate the metrics of windowed runs. No windows gives an all-zero summary."""
    if not results:
        return WindowSummary()
    df = pd.DataFrame([r.metrics.to_dict() for r in results])
    returns = df["total_return"].to_numpy(dtype=float)
    return WindowSummary(
        window_count=len(df),
        mean=_record_from(df.mean()),
        median=_record_from(df.median()),
        positive_window_ratio=float(np.mean(returns > 0)),
        return_std=float(np.std(returns)),
        worst_drawdown=float(df["max_drawdown"].max()),
        total_trades=int(df["total_trades"].sum()),
    )


# ---------------------------------------------------------------------------
# Result sinks
# ---------------------------------------------------------------------------


class ResultSink(Protocol):
    """Receives every completed run; the core persists nothing itself."""

    def write(self, config: BacktestConfig, trades: Sequence[Trade], metrics: MetricsRecord) -> None:
        ...


class MemorySink:
    """Keeps (config, trades, metrics) tuples in a list."""

    def __init__(self):
        self.records: List[tuple[BacktestConfig, List[Trade], MetricsRecord]] = []

    def write(self, config: BacktestConfig, trades: Sequence[Trade], metrics: MetricsRecord) -> None:
        self.records.append((config, list(trades), metrics))


class CsvResultSink:
    """Writes `trades_<asset>_<run>.csv` and `metrics_<asset>_<run>.json` per run."""

    def __init__(self, output_dir: str | Path = "outputs"):
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.written: List[dict[str, Path]] = []

    def write(self, config: BacktestConfig, trades: Sequence[Trade], metrics: MetricsRecord) -> dict[str, Path]:
        run_id = uuid.uuid4().hex[:12]
        stem = f"{config.asset.replace('/', '_').replace('.', '_')}_{run_id}"
        tr_path = self.output_dir / f"trades_{stem}.csv"
        mt_path = self.output_dir / f"metrics_{stem}.json"

        columns = [f.name for f in fields(Trade)]
        pd.DataFrame([t.to_dict() for t in trades], columns=columns).to_csv(tr_path, index=False, encoding="utf-8")

        payload = {
            "run_id": run_id,
            "asset": config.asset,
            "start_time": pd.Timestamp(config.start_time).isoformat(),
            "end_time": pd.Timestamp(config.end_time).isoformat(),
            "parameters": {
                "z_score_threshold": config.z_score_threshold,
                "moving_average_period": config.moving_average_period,
                "profit_percent": config.profit_percent,
                "stop_loss_percent": config.stop_loss_percent,
            },
            "metrics": metrics.to_dict(),
        }
        mt_path.write_text(json.dumps(payload, indent=2), encoding="utf-8")

        paths = {"trades": tr_path, "metrics": mt_path}
        self.written.append(paths)
        return paths


def load_trades_csv(path: str | Path) -> List[Trade]:
    df = pd.read_csv(path)
    return [Trade.from_dict(row) for row in df.to_dict(orient="records")]


def load_metrics_json(path: str | Path) -> MetricsRecord:
    payload = json.loads(Path(path).read_text(encoding="utf-8"))
    return MetricsRecord.from_dict(payload.get("metrics", payload))
