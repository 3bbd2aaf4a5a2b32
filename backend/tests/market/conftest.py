"""Fixtures for market data tests."""

from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from collector.market.models import Observation


@pytest.fixture
def make_observation():
    """Factory for Observations; defaults to Samsung Electronics during a KRX session."""

    def _make(
        code="005930",
        price="72000",
        at=None,
        name=None,
        change_rate=None,
        exchange_code="KRX",
    ):
        return Observation(
            instrument_code=code,
            instrument_name=name or code,
            price=Decimal(price),
            observed_at=at or datetime(2025, 3, 4, 10, 0, tzinfo=ZoneInfo("Asia/Seoul")),
            change_rate=None if change_rate is None else Decimal(change_rate),
            exchange_code=exchange_code,
        )

    return _make
