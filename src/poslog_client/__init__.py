"""
poslog_client

Lightweight client that ships log events to a poslog server, either one at a
time with `send_log` or from the standard logging module via `setup_logging`.
"""

from typing import Any, Dict, Optional

from .config import ClientConfig
from .logging_setup import setup_logging
from .transport import DeliveryError, post_event

__all__ = ["ClientConfig", "DeliveryError", "send_log", "setup_logging"]


def send_log(
  level: str,
  label: str,
  message: str,
  context: Any = None,
  source: Optional[str] = None,
  timestamp: Optional[str] = None,
  scenario_id: Optional[str] = None,
  endpoint: Optional[str] = None,
) -> Dict[str, Any]:
  """
  Send one log event synchronously and return the server response (`{"id": ...}`).

  Raises:
    DeliveryError: If the server is unreachable or rejects the event.
  """
  url = endpoint or ClientConfig.from_env().endpoint
  event: Dict[str, Any] = {"level": level, "label": label, "message": message}
  if context is not None:
    event["context"] = context
  if source:
    event["source"] = source
  if timestamp:
    event["timestamp"] = timestamp
  if scenario_id:
    event["scenarioId"] = scenario_id
  return post_event(url, event)
