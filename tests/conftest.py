"""Pytest configuration and fixtures."""

from __future__ import annotations

import os
from datetime import UTC, datetime

import pytest

from polymarket_coordination_tracker.config import clear_settings_cache
from polymarket_coordination_tracker.detector.coordinated_trading import reset_shared_detector

BASE_TIME = datetime(2024, 6, 1, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _isolate_process_state(monkeypatch: pytest.MonkeyPatch):
    """Keep env overrides, cached settings and the shared detector per-test."""
    for key in list(os.environ):
        if key.startswith("COORDINATION_") or key == "LOG_LEVEL":
            monkeypatch.delenv(key, raising=False)
    clear_settings_cache()
    reset_shared_detector()
    yield
    clear_settings_cache()
    reset_shared_detector()


@pytest.fixture
def base_time() -> datetime:
    """Fixed reference time for building trade histories."""
    return BASE_TIME


@pytest.fixture
def wallet_a() -> str:
    """Lower-case wallet address (mixed case once checksummed)."""
    return "0xabcdef0123456789abcdef0123456789abcdef01"


@pytest.fixture
def wallet_b() -> str:
    return "0xfedcba9876543210fedcba9876543210fedcba98"


@pytest.fixture
def wallet_c() -> str:
    return "0x1111111111111111111111111111111111111111"


@pytest.fixture
def sample_market_id() -> str:
    """Sample market ID for testing."""
    return "0x1234567890abcdef1234567890abcdef12345678"
