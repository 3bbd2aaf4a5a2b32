"""Simulated Korean trade stream for development without broker credentials."""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Callable, Mapping
from datetime import datetime
from decimal import Decimal

import numpy as np

from .buffer import RealTimeBuffer
from .instruments import KOREAN_SEED_PRICES, KOREAN_STOCKS
from .interface import StreamingSource
from .market_hours import SERVICE_TZ
from .models import Observation, to_price, to_rate

logger = logging.getLogger(__name__)


class KoreanPriceModel:
    """Correlated geometric Brownian motion over a set of KRX stocks.

    S(t+dt) = S(t) * exp((mu - sigma^2/2) * dt + sigma * sqrt(dt) * Z)

    Z is drawn from a one-factor correlation structure: every pair of stocks
    shares ``correlation``. Prices are rounded to whole won; the change rate
    is measured against the seed price, which stands in for the previous close.
    """

    # KRX regular session: 6.5h a day, ~248 trading days a year
    TRADING_SECONDS_PER_YEAR = 248 * 6.5 * 3600
    DEFAULT_DT = 1.0 / TRADING_SECONDS_PER_YEAR

    def __init__(
        self,
        codes: list[str],
        seed_prices: Mapping[str, float] = KOREAN_SEED_PRICES,
        mu: float = 0.05,
        sigma: float = 0.30,
        correlation: float = 0.4,
        dt: float = DEFAULT_DT,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._seed_prices = seed_prices
        self._mu = mu
        self._sigma = sigma
        self._correlation = correlation
        self._dt = dt
        self._rng = rng or np.random.default_rng()
        self._codes: list[str] = []
        self._prices: dict[str, float] = {}
        self._previous_close: dict[str, float] = {}
        self._cholesky: np.ndarray | None = None
        for code in codes:
            self._add(code)
        self._rebuild()

    @property
    def codes(self) -> list[str]:
        return list(self._codes)

    def add(self, code: str) -> None:
        if code in self._prices:
            return
        self._add(code)
        self._rebuild()

    def price(self, code: str) -> float | None:
        return self._prices.get(code)

    def previous_close(self, code: str) -> float | None:
        return self._previous_close.get(code)

    def step(self) -> dict[str, float]:
        """Advance every stock one tick. Returns {code: price in won}."""
        n = len(self._codes)
        if n == 0:
            return {}
        z = self._rng.standard_normal(n)
        if self._cholesky is not None:
            z = self._cholesky @ z

        drift = (self._mu - 0.5 * self._sigma**2) * self._dt
        scale = self._sigma * math.sqrt(self._dt)
        result: dict[str, float] = {}
        for i, code in enumerate(self._codes):
            self._prices[code] *= math.exp(drift + scale * z[i])
            result[code] = float(round(self._prices[code]))
        return result

    def _add(self, code: str) -> None:
        seed = float(self._seed_prices.get(code, self._rng.uniform(10_000, 200_000)))
        self._codes.append(code)
        self._prices[code] = seed
        self._previous_close[code] = seed

    def _rebuild(self) -> None:
        n = len(self._codes)
        if n <= 1:
            self._cholesky = None
            return
        corr = np.full((n, n), self._correlation)
        np.fill_diagonal(corr, 1.0)
        self._cholesky = np.linalg.cholesky(corr)


class KoreanMarketSimulator(StreamingSource):
    """StreamingSource that writes simulated trades into the Korean buffer.

    A background task steps the price model every ``interval`` seconds.
    """

    def __init__(
        self,
        buffer: RealTimeBuffer,
        names: Mapping[str, str] = KOREAN_STOCKS,
        interval: float = 1.0,
        clock: Callable[[], datetime] | None = None,
        rng: np.random.Generator | None = None,
    ) -> None:
        self._buffer = buffer
        self._names = names
        self._interval = interval
        self._clock = clock or (lambda: datetime.now(SERVICE_TZ))
        self._rng = rng
        self._model: KoreanPriceModel | None = None
        self._task: asyncio.Task | None = None

    async def start(self, codes: list[str]) -> None:
        self._model = KoreanPriceModel([c for c in codes if len(c) == 6], rng=self._rng)
        self.publish(self._model.step())
        self._task = asyncio.create_task(self._run_loop(), name="korean-simulator")
        logger.info("Korean simulator started with %d stocks", len(self._model.codes))

    async def stop(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None
        logger.info("Korean simulator stopped")

    async def restart(self) -> bool:
        codes = self.get_codes()
        await self.stop()
        await self.start(codes)
        return True

    async def subscribe(self, code: str) -> bool:
        code = code.strip()
        if len(code) != 6:
            logger.warning("Stock code must be 6 characters: %r", code)
            return False
        if self._model is None:
            self._model = KoreanPriceModel([code], rng=self._rng)
        else:
            self._model.add(code)
        logger.info("Simulator: added %s", code)
        return True

    @property
    def is_connected(self) -> bool:
        return self._task is not None and not self._task.done()

    def get_codes(self) -> list[str]:
        return self._model.codes if self._model else []

    def publish(self, prices: dict[str, float]) -> None:
        """Write one tick of prices into the buffer."""
        if self._model is None:
            return
        observed_at = self._clock()
        for code, price in prices.items():
            previous = Decimal(str(self._model.previous_close(code)))
            current = to_price(price)
            self._buffer.put(
                code,
                Observation(
                    instrument_code=code,
                    instrument_name=self._names.get(code, code),
                    price=current,
                    observed_at=observed_at,
                    change_rate=to_rate((current - previous) * 100 / previous),
                    exchange_code="KRX",
                ),
            )

    async def _run_loop(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                if self._model:
                    self.publish(self._model.step())
            except Exception:
                logger.exception("Simulator step failed")
