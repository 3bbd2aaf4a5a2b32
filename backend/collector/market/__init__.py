"""Market data collection subsystem.

Public API:
    Observation         - Immutable price reading produced by an ingestor
    AssetClass          - Korean equities, foreign equities, currency pairs
    RealTimeBuffer      - Thread-safe latest-value-per-instrument buffer
    CredentialCache     - Lazily refreshed upstream credential holder
    StreamingSource     - Abstract interface for streaming ingestors
    create_korean_source - Factory that selects the broker stream or the simulator
    CollectorService    - Wires ingestors, stores and scheduled jobs together
    Settings            - Environment-driven configuration
    create_collector_router - FastAPI router factory for the operations endpoints
"""

from .buffer import LatestValue, RealTimeBuffer
from .config import Settings
from .credentials import CredentialCache, CredentialError
from .factory import create_korean_source
from .interface import StreamingSource
from .models import AssetClass, DailyRecord, HistoryRecord, Observation
from .router import create_collector_router
from .service import CollectorService

__all__ = [
    "AssetClass",
    "CollectorService",
    "CredentialCache",
    "CredentialError",
    "DailyRecord",
    "HistoryRecord",
    "LatestValue",
    "Observation",
    "RealTimeBuffer",
    "Settings",
    "StreamingSource",
    "create_collector_router",
    "create_korean_source",
]
