# tests/conftest.py
"""Shared fixtures: an in-memory exchange with one two-outcome market."""

import pytest

from application.trading_service import TradingService
from infrastructure.config import ExchangeConfig


@pytest.fixture
def config():
    return ExchangeConfig.IN_MEMORY()


@pytest.fixture
def service(config):
    return TradingService(config)


@pytest.fixture
def rain(service):
    """Market RAIN with outcomes "0" (Yes) and "1" (No)."""
    service.create_market("RAIN", "Will it rain tomorrow?", ["Yes", "No"])
    return "RAIN"
