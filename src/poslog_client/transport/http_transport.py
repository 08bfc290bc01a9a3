from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib import error, request

LogEventDict = Dict[str, Any]


_logger = logging.getLogger("poslog_client.transport")


class DeliveryError(RuntimeError):
  """
  Raised by `post_event` when the server rejects or cannot receive an event.

  `status_code` is the HTTP status of a rejection, or None when the server
  could not be reached.
  """

  def __init__(self, message: str, status_code: Optional[int] = None) -> None:
    super().__init__(message)
    self.status_code = status_code

  @property
  def retryable(self) -> bool:
    return self.status_code is None or self.status_code >= 500


def post_event(endpoint: str, event: LogEventDict, timeout: float = 5.0) -> Dict[str, Any]:
  """
  POST a single event to the ingestion endpoint and return the decoded response.

  Raises:
    DeliveryError: On network failure or a non-2xx response.
  """
  data = json.dumps(event).encode("utf-8")
  req = request.Request(
    endpoint,
    data=data,
    headers={"Content-Type": "application/json", "Accept": "application/json"},
    method="POST",
  )
  try:
    with request.urlopen(req, timeout=timeout) as resp:  # nosec B310
      body = resp.read().decode("utf-8")
  except error.HTTPError as exc:
    detail = exc.read().decode("utf-8", errors="replace")
    raise DeliveryError(f"Log send failed ({exc.code}): {detail}", exc.code) from exc
  except (error.URLError, TimeoutError, OSError) as exc:
    raise DeliveryError(f"Log send failed: {exc}") from exc

  return json.loads(body) if body else {}


@dataclass
class HttpTransport:
  """
  Posts queued events to the ingestion endpoint, one request per event.

  This uses the Python standard library only. Network failures and 5xx
  responses are retried with a small linear backoff; 4xx rejections are
  not. Failures are logged at WARNING level and never raise back to the
  caller.
  """

  endpoint: str
  max_retries: int = 3
  base_backoff_seconds: float = 0.1
  timeout: float = 1.0

  def send(self, batch: List[LogEventDict]) -> None:
    for event in batch:
      self._send_one(event)

  def _send_one(self, event: LogEventDict) -> None:
    for attempt in range(1, self.max_retries + 1):
      try:
        post_event(self.endpoint, event, timeout=self.timeout)
        return
      except DeliveryError as exc:
        _logger.warning(
          "poslog_client HTTP transport failed to deliver event (attempt %s/%s): %s",
          attempt,
          self.max_retries,
          exc,
        )
        if attempt == self.max_retries or not exc.retryable:
          # Give up; the event is dropped.
          return
        time.sleep(self.base_backoff_seconds * attempt)
