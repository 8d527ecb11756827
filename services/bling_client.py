from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union
from urllib.parse import urlencode

import requests

from auth.bling_auth import get_valid_token
from config import (
    BLING_API_BASE,
    BLING_MIN_REQUEST_INTERVAL_SECONDS,
    BLING_REQUEST_TIMEOUT_SECONDS,
    BLING_RETRY_DELAYS_SECONDS,
)
from services.bling_errors import BlingHttpError, BlingRetryExhaustedError
from services.bling_models import BlingAccount

LOGGER = logging.getLogger(__name__)

ParamValue = Union[str, int, float]
SleepFunc = Callable[[float], Awaitable[None]]


def _is_retryable_status(status_code: int) -> bool:
    return status_code == 429 or status_code >= 500


class RateGate:
    """
    Process-wide admission gate for outbound Bling requests.

    Every physical request (retries included) calls acquire() right before it starts.
    Callers are released in arrival order and no two starts are closer than
    min_interval seconds, whatever account or endpoint they belong to. Only the
    start is gated: responses of admitted requests may overlap.
    """

    def __init__(
        self,
        min_interval: float = BLING_MIN_REQUEST_INTERVAL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.min_interval = max(0.0, float(min_interval))
        self._clock = clock
        self._sleep = sleep
        # asyncio.Lock wakes waiters FIFO, which gives the queue ordering.
        self._lock = asyncio.Lock()
        self._last_start: Optional[float] = None

    async def acquire(self) -> None:
        async with self._lock:
            if self._last_start is not None:
                wait = self.min_interval - (self._clock() - self._last_start)
                if wait > 0:
                    await self._sleep(wait)
            self._last_start = self._clock()


_shared_rate_gate: Optional[RateGate] = None


def shared_rate_gate() -> RateGate:
    """The gate every default client uses; lives for the process lifetime."""
    global _shared_rate_gate
    if _shared_rate_gate is None:
        _shared_rate_gate = RateGate()
    return _shared_rate_gate


class BlingClient:
    """
    Authenticated GET client for one Bling account.

    - Token from the token supplier on every call (credential errors propagate, no retry)
    - Every attempt passes through the shared RateGate
    - 429 / 5xx / transport errors retried with the fixed backoff schedule
    - Any other non-2xx fails immediately with status and body
    """

    def __init__(
        self,
        account: BlingAccount,
        *,
        rate_gate: Optional[RateGate] = None,
        token_supplier: Callable[[BlingAccount], str] = get_valid_token,
        http_get: Callable[..., Any] = requests.get,
        base_url: str = BLING_API_BASE,
        retry_delays: Sequence[float] = BLING_RETRY_DELAYS_SECONDS,
        timeout: float = BLING_REQUEST_TIMEOUT_SECONDS,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.account = BlingAccount(account)
        self._rate_gate = rate_gate or shared_rate_gate()
        self._token_supplier = token_supplier
        self._http_get = http_get
        self._base_url = base_url.rstrip("/")
        self._retry_delays = tuple(retry_delays)
        self._timeout = timeout
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        return len(self._retry_delays) + 1

    def build_url(self, endpoint: str, params: Optional[Dict[str, ParamValue]] = None) -> str:
        url = f"{self._base_url}/{endpoint.lstrip('/')}"
        if params:
            url = f"{url}?{urlencode({key: str(value) for key, value in params.items()})}"
        return url

    async def get(self, endpoint: str, params: Optional[Dict[str, ParamValue]] = None) -> Any:
        token = await asyncio.to_thread(self._token_supplier, self.account)
        url = self.build_url(endpoint, params)
        headers = {"Authorization": f"Bearer {token}"}

        LOGGER.info("[BlingClient] GET %s (account=%s)", url, int(self.account))

        last_status: Optional[int] = None
        last_detail = ""
        for attempt in range(self.max_attempts):
            if attempt > 0:
                delay = self._retry_delays[attempt - 1]
                LOGGER.warning(
                    "[BlingClient] Retrying %s in %ss (attempt %s/%s, last_status=%s)",
                    endpoint,
                    delay,
                    attempt + 1,
                    self.max_attempts,
                    last_status,
                )
                await self._sleep(delay)

            await self._rate_gate.acquire()
            try:
                resp = await asyncio.to_thread(
                    self._http_get, url, headers=headers, timeout=self._timeout
                )
            except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as exc:
                last_detail = str(exc)
                LOGGER.warning(
                    "[BlingClient] Transport error on %s (attempt %s/%s): %s",
                    endpoint,
                    attempt + 1,
                    self.max_attempts,
                    exc,
                )
                continue

            if 200 <= resp.status_code < 300:
                return resp.json()

            if _is_retryable_status(resp.status_code):
                last_status = resp.status_code
                last_detail = ""
                continue

            body = resp.text
            LOGGER.error(
                "[BlingClient] %s failed %s (account=%s): %s",
                endpoint,
                resp.status_code,
                int(self.account),
                body[:800],
            )
            raise BlingHttpError(resp.status_code, body)

        LOGGER.error(
            "[BlingClient] %s exhausted %s attempts (last_status=%s)",
            endpoint,
            self.max_attempts,
            last_status,
        )
        raise BlingRetryExhaustedError(last_status, self.max_attempts, last_detail)
