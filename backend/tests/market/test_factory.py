"""Tests for the Korean source factory."""

from unittest.mock import MagicMock

from collector.market.buffer import RealTimeBuffer
from collector.market.config import Settings
from collector.market.factory import create_korean_source
from collector.market.kis_stream import KoreanStockStreamer
from collector.market.simulator import KoreanMarketSimulator


class TestFactory:
    """Tests for create_korean_source."""

    def test_creates_simulator_without_credentials(self):
        """Test that the simulator is used when no broker keys are configured."""
        source = create_korean_source(RealTimeBuffer(), Settings())
        assert isinstance(source, KoreanMarketSimulator)

    def test_creates_simulator_without_approval_cache(self):
        """Test that keys alone are not enough without an approval-key cache."""
        settings = Settings(kis_app_key="key", kis_app_secret="secret")
        source = create_korean_source(RealTimeBuffer(), settings)
        assert isinstance(source, KoreanMarketSimulator)

    def test_creates_streamer_with_credentials(self):
        """Test that the broker stream is used when keys and a cache are given."""
        settings = Settings(kis_app_key="key", kis_app_secret="secret", kis_ws_url="ws://broker.test:21000")
        source = create_korean_source(RealTimeBuffer(), settings, approval_keys=MagicMock())
        assert isinstance(source, KoreanStockStreamer)
        assert source.url == "ws://broker.test:21000/H0STCNT0"

    def test_source_receives_buffer(self):
        """Test that both sources write into the given buffer."""
        buffer = RealTimeBuffer()
        simulator = create_korean_source(buffer, Settings())
        streamer = create_korean_source(
            buffer, Settings(kis_app_key="k", kis_app_secret="s"), approval_keys=MagicMock()
        )
        assert simulator._buffer is buffer
        assert streamer._buffer is buffer
