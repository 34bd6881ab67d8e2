"""Single-asset long-only trade simulator.

State machine FLAT <-> LONG driven by the rating z-score:
- FLAT -> LONG when z >= +threshold (buy at the close)
- LONG -> FLAT, first match wins:
    1) z <= -threshold            -> exit at the close (Z_SCORE_REVERSION)
    2) profit target reached      -> exit at the target price (PROFIT_TARGET)
    3) stop loss reached          -> exit at the stop price (STOP_LOSS)
- end of run with a position      -> FORCED_CLOSE at the last available price

Exit evaluation modes:
- "CLOSE": targets are compared against the candle close only. A level touched
  intrabar but not at the close is missed or delayed.
- "INTRABAR": targets are compared against high/low; when one candle touches
  both, `intrabar_tie_break` decides which fired first.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import pandas as pd

from .config import BacktestConfig
from .cost_model import FeeModel
from .errors import DataGapError
from .indicators import classify
from .types import (
    EquityPoint,
    ExitReason,
    Position,
    PositionState,
    PricePoint,
    Signal,
    Trade,
    ZScorePoint,
)

logger = logging.getLogger(__name__)


def _key(ts: datetime) -> pd.Timestamp:
    return pd.Timestamp(ts)


class TradeSimulator:
    """Replays aligned (z-score, candle) pairs for one asset and one config."""

    def __init__(self, cfg: BacktestConfig):
        self.cfg = cfg
        self.asset = cfg.asset
        self.fees = FeeModel(cfg)

        self.cash = float(cfg.initial_capital)
        self.state = PositionState.FLAT
        self.position: Optional[Position] = None

        self.trades: List[Trade] = []
        self.equity_curve: List[EquityPoint] = []
        self.data_gaps = 0

        self._prices: Dict[pd.Timestamp, PricePoint] = {}
        self._last_bar: Optional[PricePoint] = None

    # ---------- public API ----------

    def run(self, zscores: Sequence[ZScorePoint], prices: Sequence[PricePoint]) -> None:
        """Process every z-score inside [start_time, end_time], then force-close."""
        start, end = _key(self.cfg.start_time), _key(self.cfg.end_time)
        window = [p for p in prices if start <= _key(p.timestamp) <= end]
        self._prices = {_key(p.timestamp): p for p in window}
        if window:
            self._last_bar = max(window, key=lambda p: _key(p.timestamp))

        for z in zscores:
            ts = _key(z.timestamp)
            if ts < start:
                continue
            if ts > end:
                break
            try:
                bar = self._price_at(z.timestamp)
            except DataGapError as exc:
                self.data_gaps += 1
                logger.debug("skipping step: %s", exc)
                continue
            self.step(z, bar)

        self.finish()

    def step(self, z: ZScorePoint, bar: PricePoint) -> None:
        """One transition of the state machine on an aligned pair."""
        if self.state is PositionState.LONG:
            self._maybe_exit(z, bar)
        elif classify(z.z_score, self.cfg.z_score_threshold) is Signal.BUY:
            self._enter(z, bar)
        self._append_equity(bar.timestamp, bar.close)

    def finish(self) -> None:
        """Force-close an open position at the last available price."""
        if self.state is not PositionState.LONG or self.position is None:
            return
        price = self._last_bar.close if self._last_bar is not None else self.position.entry_price
        self._exit(self.cfg.end_time, float(price), ExitReason.FORCED_CLOSE)

        final = EquityPoint(timestamp=self.cfg.end_time, value=float(self.cash))
        if self.equity_curve and _key(self.equity_curve[-1].timestamp) == _key(self.cfg.end_time):
            self.equity_curve[-1] = final
        else:
            self.equity_curve.append(final)

    def equity_value(self, price: float) -> float:
        if self.position is None:
            return float(self.cash)
        return float(self.cash + self.position.quantity * float(price))

    # ---------- internal helpers ----------

    def _price_at(self, ts: datetime) -> PricePoint:
        bar = self._prices.get(_key(ts))
        if bar is None:
            raise DataGapError(self.asset, ts)
        return bar

    def _append_equity(self, ts: datetime, price: float) -> None:
        self.equity_curve.append(EquityPoint(timestamp=ts, value=self.equity_value(price)))

    def _enter(self, z: ZScorePoint, bar: PricePoint) -> None:
        cfg = self.cfg
        price = float(bar.close)
        fill = self.fees.size_entry(self.cash, price)
        if fill.quantity <= 0:
            return

        self.cash -= fill.notional + fill.fee
        self.position = Position(
            entry_time=bar.timestamp,
            entry_price=price,
            quantity=fill.quantity,
            take_profit_price=price * (1.0 + cfg.profit_percent / 100.0),
            stop_loss_price=price * (1.0 - cfg.stop_loss_percent / 100.0),
            entry_fee=fill.fee,
        )
        self.state = PositionState.LONG
        logger.debug(
            "%s BUY %.6f @ %.6f (z=%.3f) at %s", self.asset, fill.quantity, price, z.z_score, bar.timestamp
        )

    def _maybe_exit(self, z: ZScorePoint, bar: PricePoint) -> None:
        pos = self.position
        if pos is None:
            return

        if classify(z.z_score, self.cfg.z_score_threshold) is Signal.SELL:
            self._exit(bar.timestamp, float(bar.close), ExitReason.Z_SCORE_REVERSION)
            return

        if self.cfg.exit_evaluation == "INTRABAR":
            hit_target = bar.high >= pos.take_profit_price
            hit_stop = bar.low <= pos.stop_loss_price
            if hit_target and hit_stop:
                if self.cfg.intrabar_tie_break == "STOP_FIRST":
                    hit_target = False
                else:
                    hit_stop = False
        else:
            hit_target = bar.close >= pos.take_profit_price
            hit_stop = bar.close <= pos.stop_loss_price

        if hit_target:
            self._exit(bar.timestamp, pos.take_profit_price, ExitReason.PROFIT_TARGET)
        elif hit_stop:
            self._exit(bar.timestamp, pos.stop_loss_price, ExitReason.STOP_LOSS)

    def _exit(self, ts: datetime, price: float, reason: ExitReason) -> None:
        pos = self.position
        if pos is None:
            return
        fill = self.fees.exit_fill(pos.quantity, price)
        net = fill.notional - fill.fee
        self.cash += net

        cost = pos.cost_basis
        pnl = net - cost
        trade = Trade(
            asset=self.asset,
            entry_time=pos.entry_time,
            exit_time=ts,
            entry_price=pos.entry_price,
            exit_price=float(price),
            quantity=pos.quantity,
            exit_reason=reason,
            profit_loss=float(pnl),
            profit_loss_percent=float(pnl / cost * 100.0) if cost > 0 else 0.0,
            duration_hours=(_key(ts) - _key(pos.entry_time)).total_seconds() / 3600.0,
            fees_paid=float(pos.entry_fee + fill.fee),
        )
        self.trades.append(trade)
        self.position = None
        self.state = PositionState.FLAT
        logger.debug(
            "%s SELL %.6f @ %.6f (%s, pnl=%.2f%%) at %s",
            self.asset,
            trade.quantity,
            trade.exit_price,
            reason.value,
            trade.profit_loss_percent,
            ts,
        )
