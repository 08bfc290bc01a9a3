"""HTTP client for a running poslog server.

Used by the CLI query commands and the MCP tool server. Authenticates with the
X-API-Key header, which the server accepts in place of a session cookie when
POSLOG_API_KEY is configured on both sides.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import httpx

from poslog_service.auth import API_KEY_HEADER
from poslog_service.models import LogRecord, ScenarioSummary

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://localhost:6666"


class RemoteError(RuntimeError):
    """Raised when the server is unreachable or answers with a non-2xx status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def get_server_url() -> str:
    return os.getenv("POSLOG_SERVER_URL", DEFAULT_SERVER_URL).rstrip("/")


class LogServerClient:
    """Thin synchronous wrapper over the list, scenario and health endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """Initialize the client.

        Args:
            base_url: Server root URL. Defaults to POSLOG_SERVER_URL or localhost:6666.
            api_key: Value for the X-API-Key header. Defaults to POSLOG_API_KEY.
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = (base_url or get_server_url()).rstrip("/")
        self.api_key = api_key if api_key is not None else os.getenv("POSLOG_API_KEY")
        self.timeout = timeout
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers[API_KEY_HEADER] = self.api_key
        return headers

    def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        clean = {k: v for k, v in (params or {}).items() if v is not None}
        logger.debug("GET %s params=%s", url, clean)
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(url, params=clean, headers=self._headers())
        except httpx.RequestError as e:
            raise RemoteError(f"Could not reach poslog server at {self.base_url}: {e}") from e

        if response.status_code >= 400:
            message = response.text
            try:
                detail = response.json().get("detail")
                if isinstance(detail, dict) and detail.get("message"):
                    message = detail["message"]
            except ValueError:
                pass
            raise RemoteError(
                f"poslog server returned {response.status_code}: {message}",
                status_code=response.status_code,
            )
        return response.json()

    def list_logs(self, **params: Any) -> Dict[str, Any]:
        """Fetch one page of logs.

        Keyword arguments are sent as query parameters (level, label, source,
        start, end, q, scenarioId, limit, offset, cursor).

        Returns:
            Dict with "items" (list of LogRecord), "hasMore" and "nextCursor"
        """
        data = self._get("/api/logs", params)
        return {
            "items": [LogRecord(**item) for item in data.get("items", [])],
            "hasMore": bool(data.get("hasMore", False)),
            "nextCursor": data.get("nextCursor"),
        }

    def list_scenarios(self, limit: Optional[int] = None) -> List[ScenarioSummary]:
        data = self._get("/api/logs/scenarios", {"limit": limit})
        return [ScenarioSummary(**item) for item in data.get("scenarios", [])]

    def status(self) -> Dict[str, Any]:
        return self._get("/health")
