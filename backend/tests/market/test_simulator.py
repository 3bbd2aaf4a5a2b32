"""Tests for the Korean price model and simulated source."""

import asyncio
from datetime import datetime
from decimal import Decimal
from zoneinfo import ZoneInfo

import numpy as np
import pytest

from collector.market.buffer import RealTimeBuffer
from collector.market.instruments import KOREAN_SEED_PRICES
from collector.market.simulator import KoreanMarketSimulator, KoreanPriceModel

SEOUL = ZoneInfo("Asia/Seoul")
NOW = datetime(2025, 3, 4, 10, 0, tzinfo=SEOUL)


class TestKoreanPriceModel:
    """Unit tests for the correlated GBM model."""

    def test_step_returns_all_codes(self):
        """Test that step() prices every stock."""
        model = KoreanPriceModel(["005930", "000660"], rng=np.random.default_rng(1))
        assert set(model.step()) == {"005930", "000660"}

    def test_initial_prices_match_seeds(self):
        """Test that prices start at the seed table."""
        model = KoreanPriceModel(["005930"])
        assert model.price("005930") == KOREAN_SEED_PRICES["005930"]
        assert model.previous_close("005930") == KOREAN_SEED_PRICES["005930"]

    def test_prices_stay_positive_and_whole(self):
        """Test that prices are positive whole won."""
        model = KoreanPriceModel(["005930", "035720"], rng=np.random.default_rng(7))
        for _ in range(5_000):
            for price in model.step().values():
                assert price > 0
                assert price == int(price)

    def test_add_is_idempotent(self):
        """Test that adding a known code changes nothing."""
        model = KoreanPriceModel(["005930"])
        model.add("005930")
        model.add("000660")
        assert model.codes == ["005930", "000660"]

    def test_unknown_code_gets_a_seed(self):
        """Test that codes outside the seed table get a plausible start price."""
        model = KoreanPriceModel(["123456"], rng=np.random.default_rng(3))
        assert 10_000 <= model.price("123456") <= 200_000

    def test_correlation_matrix_is_valid(self):
        """Test that the full master list builds a Cholesky factor."""
        model = KoreanPriceModel(list(KOREAN_SEED_PRICES))
        assert model._cholesky.shape == (len(KOREAN_SEED_PRICES),) * 2


@pytest.mark.asyncio
class TestKoreanMarketSimulator:
    """Integration tests for the simulated source."""

    async def test_start_populates_buffer(self):
        """Test that start() writes a first tick immediately."""
        buffer = RealTimeBuffer()
        source = KoreanMarketSimulator(buffer, interval=0.05, clock=lambda: NOW)
        await source.start(["005930", "000660"])

        obs = buffer.get("005930")
        assert obs.instrument_name == "삼성전자"
        assert obs.exchange_code == "KRX"
        assert obs.observed_at == NOW
        assert obs.change_rate is not None
        assert len(buffer) == 2

        await source.stop()

    async def test_prices_update_over_time(self):
        """Test that the loop keeps writing to the buffer."""
        buffer = RealTimeBuffer()
        source = KoreanMarketSimulator(buffer, interval=0.02)
        await source.start(["005930"])
        version = buffer.version
        await asyncio.sleep(0.15)
        assert buffer.version > version
        await source.stop()

    async def test_change_rate_against_seed(self):
        """Test the published change rate formula."""
        buffer = RealTimeBuffer()
        source = KoreanMarketSimulator(buffer, clock=lambda: NOW)
        await source.start(["005930"])
        source.publish({"005930": 72720.0})
        assert buffer.get("005930").change_rate == Decimal("1.00")
        await source.stop()

    async def test_subscribe_and_codes(self):
        """Test adding codes and rejecting malformed ones."""
        source = KoreanMarketSimulator(RealTimeBuffer(), interval=0.05)
        await source.start(["005930"])
        assert await source.subscribe("000660") is True
        assert await source.subscribe("66") is False
        assert source.get_codes() == ["005930", "000660"]
        assert source.is_connected
        await source.stop()
        assert not source.is_connected

    async def test_restart_and_double_stop(self):
        """Test that restart keeps the codes and stop is idempotent."""
        source = KoreanMarketSimulator(RealTimeBuffer(), interval=0.05)
        await source.start(["005930", "000660"])
        assert await source.restart() is True
        assert source.get_codes() == ["005930", "000660"]
        await source.stop()
        await source.stop()
