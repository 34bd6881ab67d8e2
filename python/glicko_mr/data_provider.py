"""Data providers (in-memory / CSV) and a standardized OHLCV schema."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Protocol, Sequence

import pandas as pd

from .config import RatingConfig
from .rating import RatingEngine
from .types import PricePoint, RatingPoint

logger = logging.getLogger(__name__)

_DATETIME_ALIASES = ["Date", "Datetime", "datetime", "timestamp", "Timestamp", "Time", "time", "open_time"]


class DataProvider(Protocol):
    """Source of ascending price and rating series per asset.

    `start=None` means "from the beginning of the available history".
    """

    def get_price_series(self, asset: str, start: Optional[datetime], end: datetime) -> List[PricePoint]:
        ...

    def get_rating_series(self, asset: str, start: Optional[datetime], end: datetime) -> List[RatingPoint]:
        ...


def _in_range(ts, start: Optional[datetime], end: datetime) -> bool:
    t = pd.Timestamp(ts)
    if start is not None and t < pd.Timestamp(start):
        return False
    return t <= pd.Timestamp(end)


def _sorted(points):
    return sorted(points, key=lambda p: pd.Timestamp(p.timestamp))


class InMemoryProvider:
    """Serves pre-built point lists, keyed by asset."""

    def __init__(
        self,
        prices: Optional[Dict[str, Sequence[PricePoint]]] = None,
        ratings: Optional[Dict[str, Sequence[RatingPoint]]] = None,
    ):
        self.prices = {a: _sorted(v) for a, v in (prices or {}).items()}
        self.ratings = {a: _sorted(v) for a, v in (ratings or {}).items()}

    def get_price_series(self, asset: str, start: Optional[datetime], end: datetime) -> List[PricePoint]:
        return [p for p in self.prices.get(asset, []) if _in_range(p.timestamp, start, end)]

    def get_rating_series(self, asset: str, start: Optional[datetime], end: datetime) -> List[RatingPoint]:
        return [p for p in self.ratings.get(asset, []) if _in_range(p.timestamp, start, end)]


def _standardize_ohlcv_columns(df: pd.DataFrame) -> pd.DataFrame:
    rename_map = {}
    for col in df.columns:
        c = str(col).strip().lower()
        if c in {"open"}:
            rename_map[col] = "Open"
        elif c in {"high"}:
            rename_map[col] = "High"
        elif c in {"low"}:
            rename_map[col] = "Low"
        elif c in {"close"}:
            rename_map[col] = "Close"
        elif c in {"adj close", "adjclose"}:
            rename_map[col] = "AdjClose"
        elif c in {"volume"}:
            rename_map[col] = "Volume"
        elif c in {"taker_buy_volume", "taker_buy_base_volume", "taker buy base asset volume", "takerbuyvolume"}:
            rename_map[col] = "TakerBuyVolume"
    df = df.rename(columns=rename_map).copy()

    if "Close" not in df.columns and "AdjClose" in df.columns:
        df = df.rename(columns={"AdjClose": "Close"})
    if "Close" in df.columns and "AdjClose" in df.columns:
        df = df.drop(columns=["AdjClose"])

    required = ["Open", "High", "Low", "Close"]
    missing = [c for c in required if c not in df.columns]
    if missing:
        raise ValueError(f"Missing required OHLCV columns: {missing}")
    if "Volume" not in df.columns:
        df["Volume"] = 0.0

    cols = required + ["Volume"] + (["TakerBuyVolume"] if "TakerBuyVolume" in df.columns else [])
    df = df[cols].astype(float)
    df = df[~df.index.duplicated(keep="last")].sort_index()
    return df


def _read_indexed_csv(path: Path, datetime_col: str) -> pd.DataFrame:
    if not path.exists():
        raise FileNotFoundError(str(path))
    df = pd.read_csv(path)
    if datetime_col not in df.columns:
        for cand in _DATETIME_ALIASES:
            if cand in df.columns:
                datetime_col = cand
                break
    if datetime_col not in df.columns:
        raise ValueError(f"CSV must contain a datetime column. Tried '{datetime_col}' and common aliases.")
    df[datetime_col] = pd.to_datetime(df[datetime_col])
    return df.set_index(datetime_col).sort_index()


def frame_to_prices(df: pd.DataFrame, asset: str) -> List[PricePoint]:
    """Standardized OHLCV frame -> PricePoint list."""
    has_taker = "TakerBuyVolume" in df.columns
    out = []
    for ts, row in df.iterrows():
        taker = float(row["TakerBuyVolume"]) if has_taker and pd.notna(row["TakerBuyVolume"]) else None
        out.append(
            PricePoint(
                asset=asset,
                timestamp=pd.Timestamp(ts).to_pydatetime(),
                open=float(row["Open"]),
                high=float(row["High"]),
                low=float(row["Low"]),
                close=float(row["Close"]),
                volume=float(row["Volume"]),
                taker_buy_volume=taker,
            )
        )
    return out


class CsvProvider:
    """Load OHLCV (and optionally rating) CSV files, one file per asset.

    Files are looked up as `<price_dir>/<asset>.csv` and
    `<rating_dir>/<asset>.csv`. Without a rating directory, ratings are derived
    from the full price history with the RatingEngine.
    """

    def __init__(
        self,
        price_dir: str | Path,
        rating_dir: str | Path | None = None,
        datetime_col: str = "Date",
        rating_cfg: Optional[RatingConfig] = None,
    ):
        self.price_dir = Path(price_dir)
        self.rating_dir = Path(rating_dir) if rating_dir is not None else None
        self.datetime_col = datetime_col
        self.engine = RatingEngine(rating_cfg or RatingConfig())

    def load_prices(self, asset: str) -> List[PricePoint]:
        df = _read_indexed_csv(self.price_dir / f"{asset}.csv", self.datetime_col)
        return frame_to_prices(_standardize_ohlcv_columns(df), asset)

    def load_ratings(self, asset: str) -> List[RatingPoint]:
        if self.rating_dir is None:
            prices = self.load_prices(asset)
            logger.info("deriving ratings for %s from %d candles", asset, len(prices))
            return self.engine.rate_series(prices, asset=asset)

        df = _read_indexed_csv(self.rating_dir / f"{asset}.csv", self.datetime_col)
        cols = {str(c).strip().lower(): c for c in df.columns}
        for need in ("rating", "deviation", "volatility"):
            if need not in cols:
                raise ValueError(f"Missing required rating column: {need}")
        score_col = cols.get("performance_score")
        return [
            RatingPoint(
                asset=asset,
                timestamp=pd.Timestamp(ts).to_pydatetime(),
                rating=float(row[cols["rating"]]),
                deviation=float(row[cols["deviation"]]),
                volatility=float(row[cols["volatility"]]),
                performance_score=float(row[score_col]) if score_col is not None else 0.5,
            )
            for ts, row in df.iterrows()
        ]

    def get_price_series(self, asset: str, start: Optional[datetime], end: datetime) -> List[PricePoint]:
        return [p for p in self.load_prices(asset) if _in_range(p.timestamp, start, end)]

    def get_rating_series(self, asset: str, start: Optional[datetime], end: datetime) -> List[RatingPoint]:
        return [p for p in self.load_ratings(asset) if _in_range(p.timestamp, start, end)]
