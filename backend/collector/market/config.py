"""Environment-driven settings for the collector."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_KIS_REST_URL = "https://openapi.koreainvestment.com:9443"
DEFAULT_KIS_WS_URL = "ws://ops.koreainvestment.com:21000"
DEFAULT_TWELVEDATA_REST_URL = "https://api.twelvedata.com"
DEFAULT_TWELVEDATA_WS_URL = "wss://ws.twelvedata.com/v1/quotes/price"


def _get(environ: Mapping[str, str], name: str, default: str = "") -> str:
    return environ.get(name, default).strip()


def _float(environ: Mapping[str, str], name: str, default: float) -> float:
    raw = _get(environ, name)
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        logger.warning("%s=%r is not a number; using %s", name, raw, default)
        return default
    if value <= 0:
        logger.warning("%s must be positive; using %s", name, default)
        return default
    return value


def _bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = _get(environ, name).lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    kis_app_key: str = ""
    kis_app_secret: str = ""
    kis_rest_url: str = DEFAULT_KIS_REST_URL
    kis_ws_url: str = DEFAULT_KIS_WS_URL
    twelvedata_api_key: str = ""
    twelvedata_rest_url: str = DEFAULT_TWELVEDATA_REST_URL
    twelvedata_ws_url: str = DEFAULT_TWELVEDATA_WS_URL
    db_path: str = ""
    flush_interval: float = 20.0
    global_poll_interval: float = 20.0
    fx_interval: float = 240.0
    quote_delay: float = 0.5
    stream_supervise: bool = True

    @property
    def has_kis_credentials(self) -> bool:
        return bool(self.kis_app_key and self.kis_app_secret)

    @property
    def has_twelvedata_key(self) -> bool:
        return bool(self.twelvedata_api_key)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> Settings:
        """Read settings from the environment. Blank values fall back to defaults."""
        env = os.environ if environ is None else environ
        return cls(
            kis_app_key=_get(env, "KIS_APP_KEY"),
            kis_app_secret=_get(env, "KIS_APP_SECRET"),
            kis_rest_url=_get(env, "KIS_REST_URL") or DEFAULT_KIS_REST_URL,
            kis_ws_url=_get(env, "KIS_WS_URL") or DEFAULT_KIS_WS_URL,
            twelvedata_api_key=_get(env, "TWELVEDATA_API_KEY"),
            twelvedata_rest_url=_get(env, "TWELVEDATA_REST_URL") or DEFAULT_TWELVEDATA_REST_URL,
            twelvedata_ws_url=_get(env, "TWELVEDATA_WS_URL") or DEFAULT_TWELVEDATA_WS_URL,
            db_path=_get(env, "COLLECTOR_DB_PATH"),
            flush_interval=_float(env, "COLLECTOR_FLUSH_INTERVAL", 20.0),
            global_poll_interval=_float(env, "COLLECTOR_GLOBAL_POLL_INTERVAL", 20.0),
            fx_interval=_float(env, "COLLECTOR_FX_INTERVAL", 240.0),
            quote_delay=_float(env, "COLLECTOR_QUOTE_DELAY", 0.5),
            stream_supervise=_bool(env, "COLLECTOR_STREAM_SUPERVISE", True),
        )
