"""
Unit tests for data providers and the sweep series cache.
"""

import pickle

import pandas as pd
import pytest

from glicko_mr.data_manager import SeriesCache
from glicko_mr.data_provider import CsvProvider, InMemoryProvider

from conftest import ASSET, day, make_prices, make_ratings


class CountingProvider(InMemoryProvider):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = 0

    def get_price_series(self, asset, start, end):
        self.calls += 1
        return super().get_price_series(asset, start, end)

    def get_rating_series(self, asset, start, end):
        self.calls += 1
        return super().get_rating_series(asset, start, end)


@pytest.fixture
def provider():
    return CountingProvider(
        prices={ASSET: make_prices([100.0 + i for i in range(30)])},
        ratings={ASSET: make_ratings([1500.0 + i for i in range(30)])},
    )


# =============================================================================
# InMemoryProvider
# =============================================================================


def test_in_memory_provider_slices_inclusive(provider):
    prices = provider.get_price_series(ASSET, day(5), day(9))
    assert [p.timestamp for p in prices] == [day(i) for i in range(5, 10)]
    assert len(provider.get_rating_series(ASSET, None, day(9))) == 10
    assert provider.get_price_series("ETHUSDT", None, day(9)) == []


def test_in_memory_provider_sorts_input():
    prices = make_prices([1.0, 2.0, 3.0])
    p = InMemoryProvider(prices={ASSET: list(reversed(prices))})
    assert [x.close for x in p.get_price_series(ASSET, None, day(5))] == [1.0, 2.0, 3.0]


# =============================================================================
# SeriesCache
# =============================================================================


def test_cache_loads_each_series_once(provider):
    cache = SeriesCache(provider).preload([ASSET], end=day(29))
    assert provider.calls == 2

    for k in range(5):
        cache.get_price_series(ASSET, day(k), day(k + 10))
        cache.get_rating_series(ASSET, None, day(k + 10))
    assert provider.calls == 2


def test_cache_slices_match_provider(provider):
    cache = SeriesCache(provider).preload([ASSET], end=day(29))
    assert cache.get_price_series(ASSET, day(3), day(12)) == provider.get_price_series(ASSET, day(3), day(12))
    assert cache.get_rating_series(ASSET, None, day(7)) == provider.get_rating_series(ASSET, None, day(7))


def test_cache_pickles_without_provider(provider):
    cache = SeriesCache(provider).preload([ASSET], end=day(29))
    clone = pickle.loads(pickle.dumps(cache))
    assert clone.provider is None
    assert len(clone.get_price_series(ASSET, None, day(29))) == 30
    with pytest.raises(KeyError):
        clone.get_price_series("ETHUSDT", None, day(29))


# =============================================================================
# CsvProvider
# =============================================================================


def write_ohlcv(path, n=30, with_taker=True):
    df = pd.DataFrame(
        {
            "timestamp": pd.date_range("2024-01-01", periods=n, freq="D"),
            "OPEN": [100.0 + i for i in range(n)],
            "High": [102.0 + i for i in range(n)],
            "low": [99.0 + i for i in range(n)],
            "Close": [101.0 + i for i in range(n)],
            "Volume": [10.0] * n,
        }
    )
    if with_taker:
        df["taker_buy_volume"] = [7.0] * n
    df.to_csv(path, index=False)


def test_csv_provider_reads_aliased_columns(tmp_path):
    write_ohlcv(tmp_path / f"{ASSET}.csv")
    provider = CsvProvider(tmp_path)
    prices = provider.get_price_series(ASSET, day(2), day(4))

    assert [p.timestamp for p in prices] == [day(2), day(3), day(4)]
    assert prices[0].open == 102.0
    assert prices[0].close == 103.0
    assert prices[0].taker_buy_volume == 7.0


def test_csv_provider_derives_ratings(tmp_path):
    write_ohlcv(tmp_path / f"{ASSET}.csv", n=28)
    ratings = CsvProvider(tmp_path).get_rating_series(ASSET, None, day(27))
    # four weekly periods of up candles with dominant taker buying
    assert len(ratings) == 4
    assert all(r.performance_score == 1.0 for r in ratings)
    assert ratings[-1].rating > ratings[0].rating > 1500.0


def test_csv_provider_reads_rating_file(tmp_path):
    price_dir, rating_dir = tmp_path / "prices", tmp_path / "ratings"
    price_dir.mkdir()
    rating_dir.mkdir()
    write_ohlcv(price_dir / f"{ASSET}.csv")
    pd.DataFrame(
        {
            "Date": pd.date_range("2024-01-01", periods=3, freq="D"),
            "rating": [1500.0, 1510.0, 1490.0],
            "deviation": [100.0, 95.0, 90.0],
            "volatility": [0.06, 0.06, 0.07],
        }
    ).to_csv(rating_dir / f"{ASSET}.csv", index=False)

    ratings = CsvProvider(price_dir, rating_dir).get_rating_series(ASSET, None, day(10))
    assert [r.rating for r in ratings] == [1500.0, 1510.0, 1490.0]
    assert ratings[2].volatility == 0.07


def test_csv_provider_missing_columns(tmp_path):
    pd.DataFrame({"Date": ["2024-01-01"], "Close": [1.0]}).to_csv(tmp_path / f"{ASSET}.csv", index=False)
    with pytest.raises(ValueError):
        CsvProvider(tmp_path).get_price_series(ASSET, None, day(1))


def test_csv_provider_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        CsvProvider(tmp_path).get_price_series(ASSET, None, day(1))
