"""Lazily refreshed cache for short-lived upstream credentials."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import httpx

from .models import Credential

logger = logging.getLogger(__name__)

# Body text the broker returns (HTTP 403) when token issuance is throttled.
RATE_LIMIT_MESSAGE = "접근토큰 발급 잠시 후 다시 시도하세요"
RATE_LIMIT_COOLDOWN = 60.0


class CredentialError(Exception):
    """Issuing a credential failed. Callers must not proceed without one."""


class RateLimitedError(CredentialError):
    """The issuance endpoint asked us to back off."""


@dataclass(frozen=True)
class CredentialPolicy:
    """Where and how one kind of credential is issued, and how long it lives."""

    name: str
    path: str
    secret_field: str  # body field carrying the app secret
    response_field: str  # response field carrying the issued value
    lifetime: float  # seconds
    renewal_margin: float = 0.0  # renew this long before the stated expiry

    @property
    def renew_after(self) -> float:
        return self.lifetime - self.renewal_margin


# Streaming approval key: valid 24h, renewed after 20h.
APPROVAL_KEY = CredentialPolicy(
    name="approval_key",
    path="/oauth2/Approval",
    secret_field="secretkey",
    response_field="approval_key",
    lifetime=24 * 3600,
    renewal_margin=4 * 3600,
)

# REST bearer token: renewed every 5h.
ACCESS_TOKEN = CredentialPolicy(
    name="access_token",
    path="/oauth2/tokenP",
    secret_field="appsecret",
    response_field="access_token",
    lifetime=5 * 3600,
)


class CredentialCache:
    """Holds one credential and re-issues it once it is older than the policy allows.

    get_credential() is safe for many concurrent callers: the fast path reads the
    cached value without locking; a stale value sends callers to an asyncio.Lock
    where the staleness is checked again, so only the first caller through the
    lock talks to the issuance endpoint.
    """

    def __init__(
        self,
        policy: CredentialPolicy,
        *,
        base_url: str,
        app_key: str,
        app_secret: str,
        client: httpx.AsyncClient | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cooldown: float = RATE_LIMIT_COOLDOWN,
    ) -> None:
        self._policy = policy
        self._base_url = base_url.rstrip("/")
        self._app_key = app_key
        self._app_secret = app_secret
        self._client = client
        self._owns_client = client is None
        self._clock = clock
        self._sleep = sleep
        self._cooldown = cooldown
        self._credential: Credential | None = None
        self._lock = asyncio.Lock()
        self.issue_count = 0

    @property
    def policy(self) -> CredentialPolicy:
        return self._policy

    async def get_credential(self) -> Credential:
        """Return a fresh-enough credential, issuing a new one if needed.

        Raises CredentialError if issuance fails.
        """
        credential = self._credential
        if not self._is_stale(credential):
            return credential  # type: ignore[return-value]

        async with self._lock:
            credential = self._credential
            if self._is_stale(credential):
                credential = await self._issue()
                self._credential = credential
        return credential  # type: ignore[return-value]

    async def get_value(self) -> str:
        """Convenience: just the credential string."""
        return (await self.get_credential()).value

    def invalidate(self) -> None:
        """Drop the cached credential; the next call re-issues."""
        self._credential = None

    def peek(self) -> Credential | None:
        return self._credential

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    # --- Internal ---

    def _is_stale(self, credential: Credential | None) -> bool:
        if credential is None:
            return True
        return self._clock() - credential.issued_at >= self._policy.renew_after

    async def _issue(self, retry: bool = True) -> Credential:
        try:
            value = await self._request()
        except RateLimitedError:
            if not retry:
                raise
            logger.warning(
                "%s issuance throttled; retrying once in %.0fs",
                self._policy.name,
                self._cooldown,
            )
            await self._sleep(self._cooldown)
            return await self._issue(retry=False)
        self.issue_count += 1
        logger.info("%s issued", self._policy.name)
        return Credential(value=value, issued_at=self._clock())

    async def _request(self) -> str:
        url = f"{self._base_url}{self._policy.path}"
        body = {
            "grant_type": "client_credentials",
            "appkey": self._app_key,
            self._policy.secret_field: self._app_secret,
        }
        logger.info("Requesting %s from %s", self._policy.name, url)
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=10.0)

        try:
            response = await self._client.post(url, json=body)
        except httpx.HTTPError as e:
            raise CredentialError(f"{self._policy.name} request failed: {e}") from e

        if _is_rate_limited(response):
            raise RateLimitedError(f"{self._policy.name} issuance rate-limited")
        if response.status_code != 200:
            raise CredentialError(
                f"{self._policy.name} issuance failed: HTTP {response.status_code}"
            )
        try:
            payload = response.json()
        except ValueError as e:
            raise CredentialError(f"{self._policy.name} response is not JSON") from e

        value = payload.get(self._policy.response_field) if isinstance(payload, dict) else None
        if not value:
            logger.error("%s missing from issuance response", self._policy.response_field)
            raise CredentialError(f"{self._policy.name} missing from response")
        return str(value)


def _is_rate_limited(response: httpx.Response) -> bool:
    if response.status_code == 429:
        return True
    return response.status_code == 403 and RATE_LIMIT_MESSAGE in response.text
