"""Currency pairs: REST polling, a streamed pair, and closing-rate backfill."""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Sequence
from datetime import date, datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx
import websockets

from .buffer import LatestValue
from .credentials import CredentialError
from .flush import DailyWriter
from .instruments import CURRENCY_PAIRS, POLLED_PAIRS, STREAMED_PAIR, currency_name
from .interface import StreamingSource
from .kis_quotes import KisQuoteClient, QuoteError
from .kis_stream import MessageParseError
from .market_hours import FX, SERVICE_TZ, Market, service_today
from .models import HistoryRecord, Observation, to_price
from .rollover import MIGRATION_LAG_DAYS, RETENTION_MONTHS, months_before
from .stores import DailyStore, HistoryStore

logger = logging.getLogger(__name__)

FX_EXCHANGE = "FX"


def parse_price_payload(payload: Any) -> Decimal:
    """``{"price": "1380.25"}`` -> Decimal. Raises QuoteError otherwise."""
    if not isinstance(payload, dict) or payload.get("price") in (None, ""):
        raise QuoteError(f"no price in response: {payload!r}")
    try:
        return to_price(payload["price"])
    except InvalidOperation as e:
        raise QuoteError(f"non-numeric price: {payload['price']!r}") from e


def parse_price_event(message: str, observed_at: datetime) -> Observation | None:
    """Turn a stream price event into an Observation.

    Returns None for non-price events (subscribe status, heartbeats).
    """
    try:
        payload = json.loads(message)
    except ValueError as e:
        raise MessageParseError("frame is not JSON") from e
    if not isinstance(payload, dict) or payload.get("event") != "price":
        return None

    symbol = payload.get("symbol")
    if not symbol:
        raise MessageParseError("price event without a symbol")
    try:
        price = to_price(payload.get("price"))
    except InvalidOperation as e:
        raise MessageParseError(f"non-numeric price for {symbol}") from e
    return Observation(
        instrument_code=symbol,
        instrument_name=currency_name(symbol),
        price=price,
        observed_at=observed_at,
        exchange_code=FX_EXCHANGE,
    )


class TwelveDataClient:
    """``GET /price?symbol=&apikey=`` on the currency data provider."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def latest_price(self, symbol: str) -> Decimal:
        response = await self._client.get(
            f"{self._base_url}/price",
            params={"symbol": symbol, "apikey": self._api_key},
        )
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError as e:
            raise QuoteError(f"{symbol}: response is not JSON") from e
        return parse_price_payload(payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class CurrencyPoller:
    """Polls each configured pair while FX is open and stores changed rates.

    The writer derives the change rate from the previous stored rate.
    """

    def __init__(
        self,
        client: TwelveDataClient,
        writer: DailyWriter,
        pairs: Sequence[str] = POLLED_PAIRS,
        market: Market = FX,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._client = client
        self._writer = writer
        self._pairs = list(pairs)
        self._market = market
        self._clock = clock or (lambda: datetime.now(SERVICE_TZ))

    async def poll_once(self, now: datetime | None = None) -> int:
        if not self._market.is_open(now or self._clock()):
            logger.info("FX closed; skipping currency poll")
            return 0

        written = 0
        for pair in self._pairs:
            try:
                price = await self._client.latest_price(pair)
            except (QuoteError, httpx.HTTPError) as e:
                logger.warning("Skipping %s: %s", pair, e)
                continue
            observation = Observation(
                instrument_code=pair,
                instrument_name=currency_name(pair),
                price=price,
                observed_at=self._clock(),
                exchange_code=FX_EXCHANGE,
            )
            try:
                if await asyncio.to_thread(self._writer.save_if_changed, observation):
                    written += 1
            except Exception:
                logger.exception("Failed to store %s", pair)
        return written

    async def run(self) -> None:
        await self.poll_once()


class CurrencyStreamer(StreamingSource):
    """Streams one or more pairs into a LatestValue holder.

    A FlushScheduler persists the holder on its own period. The provider
    expects a heartbeat action every few seconds while the socket is open.
    """

    def __init__(
        self,
        holder: LatestValue,
        ws_url: str,
        api_key: str,
        market: Market = FX,
        heartbeat_interval: float = 10.0,
        clock: Callable[[], datetime] | None = None,
        connect: Callable[..., Any] | None = None,
    ) -> None:
        self._holder = holder
        self._ws_url = ws_url
        self._api_key = api_key
        self._market = market
        self._heartbeat_interval = heartbeat_interval
        self._clock = clock or (lambda: datetime.now(SERVICE_TZ))
        self._connect = connect or websockets.connect
        self._symbols: list[str] = []
        self._task: asyncio.Task | None = None
        self._ws: Any = None

    @property
    def url(self) -> str:
        return f"{self._ws_url}?apikey={self._api_key}"

    async def start(self, codes: list[str]) -> None:
        for code in codes:
            self._add_symbol(code)
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
        logger.info("Currency stream stopped")

    async def restart(self) -> bool:
        await self.stop()
        return await self._open_session()

    async def subscribe(self, code: str) -> bool:
        if not self._add_symbol(code):
            return False
        if self._ws is None:
            return await self._open_session()
        try:
            await self._ws.send(self._subscribe_message([code]))
        except (websockets.exceptions.WebSocketException, OSError) as e:
            logger.error("Subscribing %s failed: %s", code, e)
        return True

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_codes(self) -> list[str]:
        return list(self._symbols)

    async def ensure_running(self) -> None:
        if not self.is_running:
            await self._open_session()

    def handle_message(self, message: str | bytes) -> None:
        if isinstance(message, bytes):
            message = message.decode("utf-8", errors="replace")
        try:
            observation = parse_price_event(message, self._clock())
        except MessageParseError as e:
            logger.warning("Dropping currency frame (%s): %s", e, message[:200])
            return
        if observation is None:
            logger.debug("Currency stream event: %s", message[:200])
            return
        self._holder.set(observation)
        logger.debug("Latest %s: %s", observation.instrument_code, observation.price)

    # --- Internal ---

    def _add_symbol(self, code: str) -> bool:
        code = code.strip().upper()
        if code not in CURRENCY_PAIRS:
            logger.warning("Unknown currency pair: %r", code)
            return False
        if code not in self._symbols:
            self._symbols.append(code)
        return True

    @staticmethod
    def _subscribe_message(symbols: list[str]) -> str:
        return json.dumps({"action": "subscribe", "params": {"symbols": ",".join(symbols)}})

    async def _open_session(self) -> bool:
        if not self._market.is_open(self._clock()):
            logger.info("FX closed; not opening the currency stream")
            return False
        if not self._symbols:
            return False
        if self.is_running:
            return True
        self._task = asyncio.create_task(self._run_session(), name="currency-stream")
        return True

    async def _heartbeat(self, ws: Any) -> None:
        while True:
            await asyncio.sleep(self._heartbeat_interval)
            await ws.send(json.dumps({"action": "heartbeat"}))

    async def _run_session(self) -> None:
        heartbeat: asyncio.Task | None = None
        try:
            async with self._connect(self.url) as ws:
                self._ws = ws
                await ws.send(self._subscribe_message(self._symbols))
                logger.info("Currency stream connected: %s", ", ".join(self._symbols))
                heartbeat = asyncio.create_task(self._heartbeat(ws), name="currency-heartbeat")
                async for message in ws:
                    self.handle_message(message)
            logger.info("Currency stream closed by the server")
        except (websockets.exceptions.WebSocketException, OSError) as e:
            logger.error("Currency stream failed: %s", e)
        finally:
            if heartbeat is not None:
                heartbeat.cancel()
                try:
                    await heartbeat
                except asyncio.CancelledError:
                    pass
                except (websockets.exceptions.WebSocketException, OSError) as e:
                    logger.warning("Currency heartbeat failed: %s", e)
            self._ws = None


class CurrencyHistoryBackfill:
    """Fills missing currency history rows from the broker's daily chart.

    Covers [today - retention, migration cutoff - 1 day], so it never races
    the Daily -> History migration. For each pair and open FX day without a
    history row, the day's daily rows are dropped and the chart close is
    stored instead.
    """

    def __init__(
        self,
        quotes: KisQuoteClient,
        daily: DailyStore,
        history: HistoryStore,
        pairs: Sequence[str] = tuple(CURRENCY_PAIRS),
        market: Market = FX,
        lag_days: int = MIGRATION_LAG_DAYS,
        retention_months: int = RETENTION_MONTHS,
    ) -> None:
        self._quotes = quotes
        self._daily = daily
        self._history = history
        self._pairs = list(pairs)
        self._market = market
        self._lag_days = lag_days
        self._retention_months = retention_months

    def date_range(self, now: datetime | None = None) -> list[date]:
        """Open FX days the backfill is responsible for, oldest first."""
        today = service_today(now)
        day = months_before(today, self._retention_months)
        last = today - timedelta(days=self._lag_days + 1)
        days = []
        while day <= last:
            if self._market.is_trading_day(day):
                days.append(day)
            day += timedelta(days=1)
        return days

    async def backfill(self, now: datetime | None = None) -> int:
        """Returns the number of history rows written."""
        days = self.date_range(now)
        filled = 0
        for pair in self._pairs:
            for day in days:
                if await asyncio.to_thread(self._history.exists, pair, day):
                    continue
                start, end = self._market.day_window(day)
                removed = await asyncio.to_thread(self._daily.delete_range, pair, start, end)
                if removed:
                    logger.info("[%s] %s: dropped %d daily rows", day, pair, removed)
                try:
                    close = await self._quotes.daily_chart_close(pair, day)
                except CredentialError as e:
                    logger.error("No access token; aborting currency backfill: %s", e)
                    return filled
                except (QuoteError, httpx.HTTPError) as e:
                    logger.warning("[%s] %s: no closing rate (%s)", day, pair, e)
                    continue
                record = HistoryRecord(
                    instrument_code=pair,
                    instrument_name=currency_name(pair),
                    closing_price=close,
                    date=day,
                    exchange_code=FX_EXCHANGE,
                )
                await asyncio.to_thread(self._history.save, record)
                filled += 1
                logger.info("[%s] %s: history row stored (close %s)", day, pair, close)
        logger.info("Currency backfill wrote %d history rows", filled)
        return filled

    async def run(self) -> None:
        await self.backfill()
