"""Factory for the Korean equities source."""

from __future__ import annotations

import logging

from .buffer import RealTimeBuffer
from .config import Settings
from .credentials import CredentialCache
from .interface import StreamingSource

logger = logging.getLogger(__name__)


def create_korean_source(
    buffer: RealTimeBuffer,
    settings: Settings,
    approval_keys: CredentialCache | None = None,
) -> StreamingSource:
    """Pick the Korean source from the settings.

    - KIS app key and secret set (and an approval-key cache given) -> KoreanStockStreamer
    - Otherwise -> KoreanMarketSimulator (GBM simulation)

    Returns an unstarted source. Caller must await source.start(codes).
    """
    if settings.has_kis_credentials and approval_keys is not None:
        from .kis_stream import KoreanStockStreamer

        logger.info("Korean source: broker stream (%s)", settings.kis_ws_url)
        return KoreanStockStreamer(buffer, approval_keys, settings.kis_ws_url)

    from .simulator import KoreanMarketSimulator

    logger.info("Korean source: GBM simulator")
    return KoreanMarketSimulator(buffer)
