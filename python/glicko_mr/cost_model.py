"""Proportional fee model and entry sizing."""

from __future__ import annotations

from dataclasses import dataclass

from .config import BacktestConfig


@dataclass(frozen=True)
class Fill:
    quantity: float
    price: float
    notional: float
    fee: float


class FeeModel:
    """Costs:
    - a flat proportional fee on every fill (entry and exit)
    - entries use a fixed fraction of available cash; the rest is a buffer
      that always covers the entry fee
    """

    def __init__(self, cfg: BacktestConfig):
        self.fee_rate = float(cfg.fee_rate)
        self.allocation_fraction = float(cfg.allocation_fraction)

    def fee(self, notional: float) -> float:
        return self.fee_rate * abs(float(notional))

    def size_entry(self, cash: float, price: float) -> Fill:
        """Fill for a new long entry, or a zero-quantity fill if nothing is affordable."""
        if cash <= 0 or price <= 0:
            return Fill(quantity=0.0, price=float(price), notional=0.0, fee=0.0)
        quantity = cash * self.allocation_fraction / price
        notional = quantity * price
        return Fill(quantity=quantity, price=float(price), notional=notional, fee=self.fee(notional))

    def exit_fill(self, quantity: float, price: float) -> Fill:
        notional = float(quantity) * float(price)
        return Fill(quantity=float(quantity), price=float(price), notional=notional, fee=self.fee(notional))
