"""Broker REST quotes: foreign equity prices and daily chart closes."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

import httpx

from .credentials import CredentialCache, CredentialError
from .flush import DailyWriter
from .instruments import FOREIGN_STOCKS, Instrument
from .market_hours import SERVICE_TZ, market_for_exchange
from .models import Observation, to_price, to_rate

logger = logging.getLogger(__name__)

OVERSEAS_PRICE_PATH = "/uapi/overseas-price/v1/quotations/price"
OVERSEAS_PRICE_TR_ID = "HHDFS00000300"
DAILY_CHART_PATH = "/uapi/overseas-price/v1/quotations/inquire-daily-chartprice"
DAILY_CHART_TR_ID = "FHKST03030100"


class QuoteError(Exception):
    """The upstream answered, but not with a usable quote."""


@dataclass(frozen=True)
class Quote:
    price: Decimal
    change_rate: Decimal | None


def parse_overseas_price(payload: Any) -> Quote:
    """Read ``output.last`` / ``output.rate`` from a price response.

    ``rt_cd`` must be "0". ``last`` is required; an empty ``rate`` becomes None.
    """
    if not isinstance(payload, dict):
        raise QuoteError("response is not a JSON object")
    if payload.get("rt_cd") != "0":
        raise QuoteError(f"rt_cd={payload.get('rt_cd')!r}: {payload.get('msg1', '')}")
    output = payload.get("output")
    if not isinstance(output, dict):
        raise QuoteError("response has no output")

    last = output.get("last")
    if last is None or str(last).strip() == "":
        raise QuoteError("output.last missing")
    rate = output.get("rate")
    try:
        price = to_price(last)
        change_rate = None if rate is None or str(rate).strip() == "" else to_rate(rate)
    except InvalidOperation as e:
        raise QuoteError(f"non-numeric quote: last={last!r} rate={rate!r}") from e
    return Quote(price=price, change_rate=change_rate)


def parse_daily_chart_close(payload: Any) -> Decimal:
    """Closing value from ``output2[0].ovrs_nmix_prpr``."""
    if not isinstance(payload, dict):
        raise QuoteError("response is not a JSON object")
    rows = payload.get("output2")
    if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
        raise QuoteError("output2 missing or empty")
    close = rows[0].get("ovrs_nmix_prpr")
    try:
        return to_price(close)
    except InvalidOperation as e:
        raise QuoteError(f"non-numeric close: {close!r}") from e


class KisQuoteClient:
    """Authenticated GETs against the broker's quotation endpoints.

    Every call fetches the bearer token from the shared CredentialCache;
    CredentialError propagates so callers can abort the whole cycle.
    """

    def __init__(
        self,
        base_url: str,
        app_key: str,
        app_secret: str,
        tokens: CredentialCache,
        client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._app_key = app_key
        self._app_secret = app_secret
        self._tokens = tokens
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def overseas_price(self, exchange_code: str, symbol: str) -> Quote:
        payload = await self._get(
            OVERSEAS_PRICE_PATH,
            {"AUTH": "", "EXCD": exchange_code, "SYMB": symbol},
            OVERSEAS_PRICE_TR_ID,
        )
        return parse_overseas_price(payload)

    async def daily_chart_close(self, symbol: str, day: date) -> Decimal:
        stamp = day.strftime("%Y%m%d")
        payload = await self._get(
            DAILY_CHART_PATH,
            {
                "FID_COND_MRKT_DIV_CODE": "X",
                "FID_INPUT_ISCD": symbol,
                "FID_INPUT_DATE_1": stamp,
                "FID_INPUT_DATE_2": stamp,
                "FID_PERIOD_DIV_CODE": "D",
            },
            DAILY_CHART_TR_ID,
        )
        return parse_daily_chart_close(payload)

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, params: dict[str, str], tr_id: str) -> Any:
        token = await self._tokens.get_value()
        headers = {
            "content-type": "application/json; charset=utf-8",
            "authorization": f"Bearer {token}",
            "appkey": self._app_key,
            "appsecret": self._app_secret,
            "tr_id": tr_id,
            "custtype": "P",
        }
        response = await self._client.get(f"{self._base_url}{path}", params=params, headers=headers)
        if response.status_code == 401:
            # Token rejected upstream; issue a fresh one next time.
            self._tokens.invalidate()
        response.raise_for_status()
        try:
            return response.json()
        except ValueError as e:
            raise QuoteError(f"{path} returned non-JSON") from e


class GlobalStockPoller:
    """Polls one quote per open-market instrument and hands it to the Daily writer.

    Instruments whose market is closed are skipped without a network call.
    Calls are spaced by ``delay`` seconds. A missing token aborts the cycle; a
    bad quote or HTTP failure only skips that instrument.
    """

    def __init__(
        self,
        quotes: KisQuoteClient,
        writer: DailyWriter,
        instruments: Sequence[Instrument] = FOREIGN_STOCKS,
        delay: float = 0.5,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._quotes = quotes
        self._writer = writer
        self._instruments = list(instruments)
        self._delay = delay
        self._clock = clock or (lambda: datetime.now(SERVICE_TZ))
        self._sleep = sleep

    def open_instruments(self, now: datetime) -> list[Instrument]:
        return [
            instrument
            for instrument in self._instruments
            if market_for_exchange(instrument.exchange_code).is_open(now)
        ]

    async def poll_once(self, now: datetime | None = None) -> int:
        """Run one poll cycle. Returns the number of rows written."""
        targets = self.open_instruments(now or self._clock())
        if not targets:
            logger.info("No foreign market open; skipping poll")
            return 0

        written = 0
        for index, instrument in enumerate(targets):
            if index:
                await self._sleep(self._delay)
            try:
                quote = await self._quotes.overseas_price(instrument.exchange_code, instrument.code)
            except CredentialError as e:
                logger.error("No access token; aborting foreign poll: %s", e)
                break
            except (QuoteError, httpx.HTTPError) as e:
                logger.warning("Skipping %s (%s): %s", instrument.code, instrument.exchange_code, e)
                continue

            observation = Observation(
                instrument_code=instrument.code,
                instrument_name=instrument.name,
                price=quote.price,
                observed_at=self._clock(),
                change_rate=quote.change_rate,
                exchange_code=instrument.exchange_code,
            )
            try:
                if await asyncio.to_thread(self._writer.save_if_changed, observation):
                    written += 1
            except Exception:
                logger.exception("Failed to store %s", instrument.code)
        logger.debug("Foreign poll: %d/%d stored", written, len(targets))
        return written

    async def run(self) -> None:
        await self.poll_once()
