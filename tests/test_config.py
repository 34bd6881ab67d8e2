"""
Unit tests for configuration validation.
"""

from datetime import datetime

import pandas as pd
import pytest

from glicko_mr.config import BacktestConfig, SweepConfig
from glicko_mr.errors import ConfigurationError, GlickoBacktestError

from conftest import ASSET, day, make_config


def test_defaults():
    cfg = make_config(10)
    assert cfg.z_score_threshold == 2.0
    assert cfg.moving_average_period == 20
    assert cfg.fee_rate == 0.001
    assert cfg.exit_evaluation == "CLOSE"
    assert cfg.intrabar_tie_break == "STOP_FIRST"


def test_string_timestamps_are_parsed():
    cfg = BacktestConfig(asset=ASSET, start_time="2024-01-01", end_time="2025-01-01")
    assert cfg.start_time == datetime(2024, 1, 1)
    assert cfg.period_years == pytest.approx(366 / 365.25)


@pytest.mark.parametrize(
    "overrides,field",
    [
        ({"z_score_threshold": 0.0}, "z_score_threshold"),
        ({"moving_average_period": 1}, "moving_average_period"),
        ({"moving_average_period": 2.5}, "moving_average_period"),
        ({"profit_percent": -1.0}, "profit_percent"),
        ({"stop_loss_percent": 0.0}, "stop_loss_percent"),
        ({"stop_loss_percent": 100.0}, "stop_loss_percent"),
        ({"initial_capital": 0.0}, "initial_capital"),
        ({"fee_rate": -0.001}, "fee_rate"),
        ({"allocation_fraction": 1.0, "fee_rate": 0.001}, "allocation_fraction"),
        ({"exit_evaluation": "OPEN"}, "exit_evaluation"),
        ({"intrabar_tie_break": "RANDOM"}, "intrabar_tie_break"),
        ({"start_time": day(20)}, "start_time"),
        ({"asset": " "}, "asset"),
    ],
)
def test_invalid_values_fail_fast(overrides, field):
    with pytest.raises(ConfigurationError) as exc:
        make_config(10, **overrides)
    assert exc.value.field == field


@pytest.mark.parametrize(
    "overrides,field",
    [
        ({"z_score_threshold": "2"}, "z_score_threshold"),
        ({"z_score_threshold": None}, "z_score_threshold"),
        ({"z_score_threshold": float("nan")}, "z_score_threshold"),
        ({"moving_average_period": None}, "moving_average_period"),
        ({"moving_average_period": "20"}, "moving_average_period"),
        ({"moving_average_period": True}, "moving_average_period"),
        ({"profit_percent": [5.0]}, "profit_percent"),
        ({"initial_capital": float("inf")}, "initial_capital"),
        ({"risk_free_rate": None}, "risk_free_rate"),
    ],
)
def test_wrongly_typed_values_are_configuration_errors(overrides, field):
    with pytest.raises(ConfigurationError) as exc:
        make_config(10, **overrides)
    assert exc.value.field == field


def test_numeric_fields_are_coerced():
    cfg = make_config(10, z_score_threshold=2, moving_average_period=20.0, initial_capital=5_000)
    assert isinstance(cfg.z_score_threshold, float)
    assert isinstance(cfg.initial_capital, float)
    assert cfg.moving_average_period == 20
    assert isinstance(cfg.moving_average_period, int)


@pytest.mark.parametrize("value", [None, pd.NaT, "NaT", "not a date"])
def test_missing_or_invalid_timestamps_are_rejected(value):
    with pytest.raises(ConfigurationError) as exc:
        BacktestConfig(asset=ASSET, start_time=value, end_time=day(10))
    assert exc.value.field == "start_time"
    with pytest.raises(ConfigurationError) as exc:
        BacktestConfig(asset=ASSET, start_time=day(0), end_time=value)
    assert exc.value.field == "end_time"


def test_mixed_timezone_awareness_is_rejected():
    with pytest.raises(ConfigurationError) as exc:
        BacktestConfig(asset=ASSET, start_time="2024-01-01T00:00Z", end_time="2024-02-01")
    assert exc.value.field == "start_time"

    cfg = BacktestConfig(asset=ASSET, start_time="2024-01-01T00:00Z", end_time="2024-02-01T00:00Z")
    assert cfg.period_years == pytest.approx(31 / 365.25)


def test_configuration_error_hierarchy():
    with pytest.raises(ValueError):
        make_config(10, z_score_threshold=-1.0)
    with pytest.raises(GlickoBacktestError):
        make_config(10, z_score_threshold=-1.0)


def test_from_params_dict_maps_camel_case():
    cfg = BacktestConfig.from_params_dict(
        {
            "symbol": ASSET,
            "startTime": "2024-01-01",
            "endTime": "2024-06-01",
            "zScoreThreshold": 1.5,
            "movingAverages": 30.0,
            "profitPercent": 4.0,
            "stopLossPercent": 2.0,
            "someUnknownKey": "ignored",
        }
    )
    assert cfg.asset == ASSET
    assert cfg.z_score_threshold == 1.5
    assert cfg.moving_average_period == 30
    assert isinstance(cfg.moving_average_period, int)
    assert cfg.profit_percent == 4.0
    assert cfg.stop_loss_percent == 2.0


def test_from_params_dict_requires_window():
    with pytest.raises(ConfigurationError):
        BacktestConfig.from_params_dict({"symbol": ASSET, "startTime": "2024-01-01"})


def test_sweep_config_validation():
    assert SweepConfig(max_workers=2, executor="thread").target_metric == "sharpe_ratio"
    with pytest.raises(ConfigurationError):
        SweepConfig(target_metric="happiness")
    with pytest.raises(ConfigurationError):
        SweepConfig(max_workers=0)
    with pytest.raises(ConfigurationError):
        SweepConfig(executor="cluster")
