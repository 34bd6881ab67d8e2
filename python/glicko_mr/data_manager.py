"""Data manager: loads each asset's series once and serves read-only slices.

A sweep builds one SeriesCache and hands it to every run. The cache holds
plain lists of frozen points, so it pickles cleanly into worker processes.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import numpy as np
import pandas as pd

from .data_provider import DataProvider
from .types import PricePoint, RatingPoint

logger = logging.getLogger(__name__)


def _slice(points: list, stamps: np.ndarray, start: Optional[datetime], end: datetime) -> list:
    lo = 0 if start is None else int(np.searchsorted(stamps, pd.Timestamp(start).value, side="left"))
    hi = int(np.searchsorted(stamps, pd.Timestamp(end).value, side="right"))
    return points[lo:hi]


def _stamps(points: list) -> np.ndarray:
    return np.asarray([pd.Timestamp(p.timestamp).value for p in points], dtype=np.int64)


class SeriesCache:
    """Explicit per-sweep cache keyed by (asset, kind).

    `preload` pulls full history from the wrapped provider; afterwards the
    cache answers DataProvider calls by slicing in memory. Assets that were
    not preloaded are fetched on first use.
    """

    def __init__(self, provider: DataProvider, end: Optional[datetime] = None):
        self.provider = provider
        self.end = end
        self._series: Dict[tuple[str, str], list] = {}
        self._stamps: Dict[tuple[str, str], np.ndarray] = {}

    def __getstate__(self):
        # the wrapped provider may hold unpicklable handles; workers only read the cache
        state = self.__dict__.copy()
        state["provider"] = None
        return state

    def preload(self, assets: Iterable[str], end: datetime) -> "SeriesCache":
        for asset in assets:
            self._load(asset, "price", end)
            self._load(asset, "rating", end)
        return self

    def _load(self, asset: str, kind: str, end: datetime) -> None:
        key = (asset, kind)
        if key in self._series:
            return
        if self.provider is None:
            raise KeyError(f"{kind} series for {asset} was not preloaded")
        if kind == "price":
            points = list(self.provider.get_price_series(asset, None, end))
        else:
            points = list(self.provider.get_rating_series(asset, None, end))
        points.sort(key=lambda p: pd.Timestamp(p.timestamp))
        self._series[key] = points
        self._stamps[key] = _stamps(points)
        logger.debug("cached %d %s points for %s", len(points), kind, asset)

    def _get(self, asset: str, kind: str, start: Optional[datetime], end: datetime) -> list:
        key = (asset, kind)
        if key not in self._series:
            self._load(asset, kind, self.end or end)
        return _slice(self._series[key], self._stamps[key], start, end)

    def get_price_series(self, asset: str, start: Optional[datetime], end: datetime) -> List[PricePoint]:
        return self._get(asset, "price", start, end)

    def get_rating_series(self, asset: str, start: Optional[datetime], end: datetime) -> List[RatingPoint]:
        return self._get(asset, "rating", start, end)
