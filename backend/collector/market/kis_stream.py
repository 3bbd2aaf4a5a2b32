"""Korean equities over the broker's real-time trade stream (websocket)."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import InvalidOperation
from typing import Any

import websockets

from .buffer import RealTimeBuffer
from .credentials import CredentialCache, CredentialError
from .instruments import KOREAN_STOCKS
from .interface import StreamingSource
from .market_hours import KRX, SERVICE_TZ, Market
from .models import Observation, to_price, to_rate

logger = logging.getLogger(__name__)

TRADE_TR_ID = "H0STCNT0"  # real-time executed price, domestic equities
PING_TR_ID = "PINGPONG"
KRX_CODE_LENGTH = 6


class MessageParseError(ValueError):
    """A stream frame could not be turned into an Observation."""


def subscribe_message(approval_key: str, code: str) -> str:
    """JSON subscribe request for one stock code."""
    return json.dumps(
        {
            "header": {
                "approval_key": approval_key,
                "custtype": "P",
                "tr_type": "1",
                "content-type": "utf-8",
            },
            "body": {"input": {"tr_id": TRADE_TR_ID, "tr_key": code}},
        }
    )


def is_ping(message: str) -> bool:
    """True for the server's liveness ping (a JSON frame with tr_id PINGPONG)."""
    try:
        payload = json.loads(message)
    except ValueError:
        return False
    if not isinstance(payload, dict):
        return False
    header = payload.get("header")
    return isinstance(header, dict) and header.get("tr_id") == PING_TR_ID


def parse_trade_frame(
    message: str,
    names: Mapping[str, str],
    observed_at: datetime,
) -> Observation:
    """Parse ``flag|tr_id|count|payload`` where payload fields are ``^``-separated.

    Payload positions: 0 = stock code, 2 = current price, 5 = change rate vs
    previous close. Raises MessageParseError on any malformed frame.
    """
    parts = message.split("|")
    if len(parts) < 4:
        raise MessageParseError(f"expected 4 '|' fields, got {len(parts)}")
    tokens = parts[3].split("^")
    if len(tokens) < 6:
        raise MessageParseError(f"expected at least 6 '^' fields, got {len(tokens)}")

    code = tokens[0].strip()
    if not code:
        raise MessageParseError("empty stock code")
    try:
        price = to_price(tokens[2])
        change_rate = to_rate(tokens[5])
    except InvalidOperation as e:
        raise MessageParseError(f"non-numeric price/rate for {code}") from e

    name = names.get(code)
    if name is None:
        logger.warning("Stock %s not in the master list; using the code as its name", code)
        name = code
    return Observation(
        instrument_code=code,
        instrument_name=name,
        price=price,
        observed_at=observed_at,
        change_rate=change_rate,
        exchange_code="KRX",
    )


class KoreanStockStreamer(StreamingSource):
    """One websocket session, one subscribe message per stock code.

    Every parsed trade overwrites the stock's entry in the buffer. Pings are
    echoed back. A malformed frame is logged and dropped without touching the
    connection. A transport failure ends the session; restart() (or the
    service's stream supervisor job) opens a new one.
    """

    def __init__(
        self,
        buffer: RealTimeBuffer,
        approval_keys: CredentialCache,
        ws_url: str,
        names: Mapping[str, str] = KOREAN_STOCKS,
        market: Market = KRX,
        clock: Callable[[], datetime] | None = None,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self._buffer = buffer
        self._approval_keys = approval_keys
        self._ws_url = ws_url.rstrip("/")
        self._names = names
        self._market = market
        self._clock = clock or (lambda: datetime.now(SERVICE_TZ))
        self._connect = connect or websockets.connect
        self._codes: list[str] = []
        self._task: asyncio.Task | None = None
        self._ws: Any = None
        self.messages_received = 0
        self.parse_failures = 0

    @property
    def url(self) -> str:
        return f"{self._ws_url}/{TRADE_TR_ID}"

    async def start(self, codes: list[str]) -> None:
        for code in codes:
            self._add_code(code)
        await self._open_session()

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._ws = None
        logger.info("Korean stream stopped")

    async def restart(self) -> bool:
        await self.stop()
        return await self._open_session()

    async def subscribe(self, code: str) -> bool:
        code = code.strip()
        if not self._add_code(code):
            return False
        ws = self._ws
        if ws is None:
            return await self._open_session()
        logger.info("Session already open; subscribing %s on it", code)
        try:
            await self._send_subscribe(ws, code)
        except (CredentialError, websockets.exceptions.WebSocketException, OSError) as e:
            logger.error("Subscribing %s failed: %s", code, e)
        return True

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_codes(self) -> list[str]:
        return list(self._codes)

    async def ensure_running(self) -> None:
        """Open a session if the market is open and none is running."""
        if not self.is_running:
            await self._open_session()

    async def handle_message(self, ws: Any, message: str | bytes) -> None:
        """Process one inbound frame."""
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        self.messages_received += 1

        if message.startswith("{"):
            if is_ping(message):
                await ws.send(message)
                logger.debug("Answered stream ping")
            else:
                logger.info("Stream control message: %s", message[:200])
            return

        try:
            observation = parse_trade_frame(message, self._names, self._clock())
        except MessageParseError as e:
            self.parse_failures += 1
            logger.warning("Dropping stream frame (%s): %s", e, message[:200])
            return
        self._buffer.put(observation.instrument_code, observation)
        logger.debug(
            "Buffered %s: %s (%s%%)",
            observation.instrument_code,
            observation.price,
            observation.change_rate,
        )

    # --- Internal ---

    def _add_code(self, code: str) -> bool:
        if len(code) != KRX_CODE_LENGTH:
            logger.warning("Stock code must be %d characters: %r", KRX_CODE_LENGTH, code)
            return False
        if code not in self._codes:
            self._codes.append(code)
        return True

    async def _open_session(self) -> bool:
        if not self._market.is_open(self._clock()):
            logger.info("%s closed; not opening the stream", self._market.name)
            return False
        if self.is_running:
            return True
        self._task = asyncio.create_task(self._run_session(), name="korean-stream")
        return True

    async def _send_subscribe(self, ws: Any, code: str, approval_key: str | None = None) -> None:
        if approval_key is None:
            approval_key = await self._approval_keys.get_value()
        await ws.send(subscribe_message(approval_key, code))
        logger.info("Subscribed %s", code)

    async def _run_session(self) -> None:
        try:
            approval_key = await self._approval_keys.get_value()
        except CredentialError as e:
            logger.error("Cannot open the Korean stream without an approval key: %s", e)
            return

        try:
            async with self._connect(self.url) as ws:
                self._ws = ws
                logger.info("Korean stream connected: %s (%d codes)", self.url, len(self._codes))
                for code in list(self._codes):
                    await self._send_subscribe(ws, code, approval_key)
                async for message in ws:
                    await self.handle_message(ws, message)
            logger.info("Korean stream closed by the server")
        except (websockets.exceptions.WebSocketException, OSError) as e:
            logger.error("Korean stream failed: %s", e)
        finally:
            self._ws = None
