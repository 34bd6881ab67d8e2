"""Error taxonomy for backtest runs."""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class GlickoBacktestError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(GlickoBacktestError, ValueError):
    """Invalid or missing parameters, or not enough history to start a run.

    Always raised before any simulation work begins.
    """

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class DataGapError(GlickoBacktestError):
    """A signal timestamp has no matching price point.

    The simulator recovers from this locally (the step is skipped and counted);
    it is never propagated out of a run.
    """

    def __init__(self, asset: str, timestamp: datetime):
        super().__init__(f"No price for {asset} at {timestamp.isoformat()}")
        self.asset = asset
        self.timestamp = timestamp
