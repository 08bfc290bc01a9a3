"""Server health check with a short-lived cache.

Used by the CLI to tell "server down" apart from "no matching logs" before
issuing queries.
"""

import asyncio
import logging
import os
import time
from typing import Optional

import httpx

from poslog_service.remote import get_server_url

logger = logging.getLogger(__name__)


class ServerHealthChecker:
    """Checks GET /health with a short-lived cache."""

    def __init__(self, cache_duration: float = 2.0) -> None:
        self._cache: Optional[bool] = None
        self._cache_time: float = 0.0
        self._cache_duration = cache_duration

    def _get_timeout_ms(self) -> int:
        """Timeout from POSLOG_HEALTH_TIMEOUT_MS (default 500ms)."""
        try:
            return int(os.getenv("POSLOG_HEALTH_TIMEOUT_MS", "500"))
        except ValueError:
            return 500

    def _cached(self) -> Optional[bool]:
        now = time.time()
        if self._cache is not None and (now - self._cache_time) < self._cache_duration:
            logger.debug(
                "Using cached server health result (age=%sms)",
                int((now - self._cache_time) * 1000),
            )
            return self._cache
        return None

    def _store(self, result: bool) -> bool:
        self._cache = result
        self._cache_time = time.time()
        return result

    async def _check_server_async(self, timeout_ms: int) -> bool:
        """Return True if the server answers /health with HTTP 200."""
        url = f"{get_server_url()}/health"
        timeout_seconds = timeout_ms / 1000.0
        start_time = time.time()

        try:
            logger.debug("Checking server health: GET %s (timeout=%sms)", url, timeout_ms)
            async with httpx.AsyncClient() as client:
                response = await asyncio.wait_for(
                    client.get(url, timeout=timeout_seconds), timeout=timeout_seconds
                )
        except asyncio.TimeoutError:
            logger.debug("Server health check: TIMEOUT (exceeded %sms)", timeout_ms)
            return False
        except (httpx.RequestError, OSError) as e:
            elapsed_ms = int((time.time() - start_time) * 1000)
            logger.debug(
                "Server health check: UNREACHABLE (error=%s, elapsed=%sms)",
                type(e).__name__,
                elapsed_ms,
            )
            return False

        elapsed_ms = int((time.time() - start_time) * 1000)
        if response.status_code == 200:
            logger.debug("Server health check: OK (response time: %sms)", elapsed_ms)
            return True
        logger.debug(
            "Server health check: FAILED (status=%s, time=%sms)",
            response.status_code,
            elapsed_ms,
        )
        return False

    def check_server_alive(self, timeout_ms: Optional[int] = None) -> bool:
        """Synchronous check; must not be called from inside a running event loop."""
        if timeout_ms is None:
            timeout_ms = self._get_timeout_ms()

        cached = self._cached()
        if cached is not None:
            return cached

        try:
            result = asyncio.run(self._check_server_async(timeout_ms))
        except RuntimeError as e:
            logger.debug("Server health check exception: %s", e)
            result = False
        return self._store(result)


# Global instance for CLI use
_health_checker = ServerHealthChecker()


def check_server_alive(timeout_ms: Optional[int] = None) -> bool:
    return _health_checker.check_server_alive(timeout_ms)
