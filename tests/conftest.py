"""Shared fixtures for dualarb tests."""

from __future__ import annotations

import logging

import pytest

from dualarb.config import build_config
from dualarb.costs import CostModel
from tests.helpers import FakeClock


@pytest.fixture
def config() -> dict:
    return build_config({
        "fees": {"binance": {"taker": 0.08}, "mexc": {"taker": 0.08}},
        "slippage": {"percent": 0.1},
        "arbitrage": {"min_spread_percent": 0.0, "min_profit_percent": 0.0, "reconnect_delay_seconds": 0},
        "notifications": {"min_spread_to_notify": 0.1},
        "trading": {"max_open_positions": 2, "position_size_usd": 100.0, "leverage": 5,
                    "test_balance_usd": 1000.0, "position_timeout_seconds": 600},
        "cooldown": {"cooldown_seconds": 0, "flash_threshold_seconds": 0},
    })


@pytest.fixture
def costs(config: dict) -> CostModel:
    return CostModel(config)


@pytest.fixture
def logger() -> logging.Logger:
    return logging.getLogger("dualarb.tests")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
