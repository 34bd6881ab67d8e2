"""Grid-search parameter sweep on a bounded worker pool.

Every combination of the search space is an independent backtest against the
same asset and window. Runs share one SeriesCache (loaded once, read-only
afterwards) and are isolated from each other: an exception in one run is
recorded against its parameters and never reaches sibling runs.

Timeouts are not preemptive. A run that takes longer than
`run_timeout_seconds` is allowed to finish, then recorded as TIMEOUT and its
result discarded.
"""

from __future__ import annotations

import itertools
import logging
import time
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import pandas as pd

from .backtest import BacktestResult, ResultSink, run_backtest
from .config import BacktestConfig, RatingConfig, SweepConfig, param_field
from .data_manager import SeriesCache
from .data_provider import DataProvider
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, Optional[float]], None]


class RunStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class SweepOutcome:
    params: Dict[str, Any]
    status: RunStatus
    config: Optional[BacktestConfig] = None
    result: Optional[BacktestResult] = None
    error: Optional[str] = None
    elapsed_seconds: float = 0.0


@dataclass
class SweepReport:
    outcomes: List[SweepOutcome] = field(default_factory=list)
    target_metric: str = "sharpe_ratio"
    max_results: Optional[int] = None

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.outcomes if o.status is RunStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.outcomes if o.status is RunStatus.FAILED)

    @property
    def timed_out(self) -> int:
        return sum(1 for o in self.outcomes if o.status is RunStatus.TIMEOUT)

    @property
    def ranked(self) -> List[SweepOutcome]:
        """Successful runs, best-first by the target metric."""
        ok = [o for o in self.outcomes if o.status is RunStatus.SUCCESS and o.result is not None]
        ok.sort(key=lambda o: getattr(o.result.metrics, self.target_metric), reverse=True)
        return ok[: self.max_results] if self.max_results else ok

    @property
    def best(self) -> Optional[SweepOutcome]:
        ranked = self.ranked
        return ranked[0] if ranked else None

    def to_frame(self) -> pd.DataFrame:
        """One row per outcome: parameters, status, elapsed time and metrics."""
        rows = []
        for o in self.outcomes:
            d: Dict[str, Any] = dict(o.params)
            d.update({"status": o.status.value, "error": o.error, "elapsed_seconds": o.elapsed_seconds})
            if o.result is not None:
                d.update(o.result.metrics.to_dict())
                d["data_gaps"] = o.result.data_gaps
            rows.append(d)
        df = pd.DataFrame(rows)
        if self.target_metric in df.columns:
            df = df.sort_values(self.target_metric, ascending=False, na_position="last").reset_index(drop=True)
        return df

    def write_csv(self, output_dir: str | Path = "outputs_opt") -> Path:
        out_dir = Path(output_dir)
        out_dir.mkdir(parents=True, exist_ok=True)
        path = out_dir / "opt_results.csv"
        self.to_frame().to_csv(path, index=False, encoding="utf-8")
        return path


def parameter_grid(search_space: Mapping[str, Sequence[Any]]) -> List[Dict[str, Any]]:
    """Cartesian product of the value lists, in key order."""
    if not search_space:
        return [{}]
    keys = list(search_space)
    for k in keys:
        if len(search_space[k]) == 0:
            raise ConfigurationError(f"search space for {k!r} is empty", field=k)
    return [dict(zip(keys, combo)) for combo in itertools.product(*(search_space[k] for k in keys))]


def _check_axes(search_space: Mapping[str, Sequence[Any]]) -> None:
    unknown = [k for k in search_space if param_field(k) is None]
    if unknown:
        raise ConfigurationError(f"unknown sweep parameters: {unknown}", field=unknown[0])


def _config_for(base: BacktestConfig, params: Mapping[str, Any]) -> BacktestConfig:
    merged = {f.name: getattr(base, f.name) for f in fields(base)}
    merged.update(params)
    return BacktestConfig.from_params_dict(merged)


def _run_one(config: BacktestConfig, cache: SeriesCache, rating_cfg: Optional[RatingConfig]):
    """Worker entry point. Never raises; returns (status, result, error, elapsed)."""
    t0 = time.perf_counter()
    try:
        result = run_backtest(config, cache, rating_cfg=rating_cfg)
    except ConfigurationError as exc:
        return RunStatus.FAILED, None, f"ConfigurationError: {exc}", time.perf_counter() - t0
    except Exception as exc:  # isolate the run from its siblings
        return RunStatus.FAILED, None, f"{type(exc).__name__}: {exc}", time.perf_counter() - t0
    return RunStatus.SUCCESS, result, None, time.perf_counter() - t0


def _make_executor(cfg: SweepConfig) -> Executor:
    if cfg.executor == "thread":
        return ThreadPoolExecutor(max_workers=cfg.max_workers)
    return ProcessPoolExecutor(max_workers=cfg.max_workers)


def run_sweep(
    base_config: BacktestConfig,
    search_space: Mapping[str, Sequence[Any]],
    provider: DataProvider,
    sweep_cfg: SweepConfig = SweepConfig(),
    sink: Optional[ResultSink] = None,
    progress_callback: Optional[ProgressCallback] = None,
    rating_cfg: Optional[RatingConfig] = None,
) -> SweepReport:
    """Run every combination of `search_space` on top of `base_config`.

    A search-space key that maps to no BacktestConfig parameter raises
    ConfigurationError before any run starts.
    """
    _check_axes(search_space)
    grid = parameter_grid(search_space)
    total = len(grid)
    report = SweepReport(target_metric=sweep_cfg.target_metric, max_results=sweep_cfg.max_results)

    cache = SeriesCache(provider).preload([base_config.asset], end=base_config.end_time)

    logger.info(
        "sweep %s: %d runs on %d %s workers", base_config.asset, total, sweep_cfg.max_workers, sweep_cfg.executor
    )
    t0 = time.perf_counter()
    completed = 0
    log_every = max(1, total // 20)

    def _record(outcome: SweepOutcome) -> None:
        nonlocal completed
        report.outcomes.append(outcome)
        if outcome.status is RunStatus.SUCCESS and sink is not None and outcome.result is not None:
            sink.write(outcome.config, outcome.result.trades, outcome.result.metrics)
        elif outcome.status is RunStatus.FAILED:
            logger.warning("sweep run %s failed: %s", outcome.params, outcome.error)
        elif outcome.status is RunStatus.TIMEOUT:
            logger.warning(
                "sweep run %s exceeded %.1fs (took %.1fs), result discarded",
                outcome.params,
                sweep_cfg.run_timeout_seconds,
                outcome.elapsed_seconds,
            )

        completed += 1
        elapsed = time.perf_counter() - t0
        eta = elapsed / completed * (total - completed) if completed else None
        if completed % log_every == 0 or completed == total:
            logger.info("sweep progress %d/%d (eta %.1fs)", completed, total, eta or 0.0)
        if progress_callback is not None:
            progress_callback(completed, total, eta)

    pending: Dict[Future, tuple[Dict[str, Any], BacktestConfig]] = {}
    with _make_executor(sweep_cfg) as pool:
        for params in grid:
            try:
                cfg = _config_for(base_config, params)
            except Exception as exc:  # a bad combination fails alone
                _record(SweepOutcome(params=params, status=RunStatus.FAILED, error=f"{type(exc).__name__}: {exc}"))
                continue
            pending[pool.submit(_run_one, cfg, cache, rating_cfg)] = (params, cfg)

        for fut in as_completed(pending):
            params, cfg = pending[fut]
            try:
                status, result, error, elapsed = fut.result()
            except Exception as exc:  # worker process died or result failed to unpickle
                _record(SweepOutcome(params=params, status=RunStatus.FAILED, config=cfg, error=repr(exc)))
                continue

            limit = sweep_cfg.run_timeout_seconds
            if status is RunStatus.SUCCESS and limit is not None and elapsed > limit:
                status, result = RunStatus.TIMEOUT, None
            _record(
                SweepOutcome(
                    params=params,
                    status=status,
                    config=cfg,
                    result=result,
                    error=error,
                    elapsed_seconds=float(elapsed),
                )
            )

    logger.info(
        "sweep %s finished in %.1fs: %d succeeded, %d failed, %d timed out",
        base_config.asset,
        time.perf_counter() - t0,
        report.succeeded,
        report.failed,
        report.timed_out,
    )
    best = report.best
    if best is not None:
        logger.info(
            "best %s=%.4f with %s",
            sweep_cfg.target_metric,
            getattr(best.result.metrics, sweep_cfg.target_metric),
            best.params,
        )
    return report
