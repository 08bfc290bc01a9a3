from __future__ import annotations

import logging
import traceback
from datetime import datetime, timezone
from logging import Handler, LogRecord
from typing import Any, Dict, Optional

from .config import ClientConfig
from .queue import LogQueue
from .transport import HttpTransport

# Levels the viewer highlights; everything else is shipped under its own name.
_LEVEL_NAMES = {"WARNING": "WARN", "CRITICAL": "ERROR"}


def _iso_timestamp(created: float) -> str:
  dt = datetime.fromtimestamp(created, tz=timezone.utc)
  return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class _PoslogHandler(Handler):
  """
  Logging handler that converts records to ingestion events and enqueues them.
  """

  def __init__(self, config: ClientConfig, queue: LogQueue) -> None:
    super().__init__()
    self._config = config
    self._queue = queue

  def emit(self, record: LogRecord) -> None:
    # The client's own warnings would otherwise feed back into the queue.
    if record.name.startswith("poslog_client"):
      return
    try:
      if not self._config.enabled:
        return

      context: Dict[str, Any] = {
        "logger": record.name,
        "file_path": record.pathname,
        "line_no": record.lineno,
      }
      if record.exc_info:
        _type, _value, _tb = record.exc_info
        if _type is not None:
          context["exception_type"] = _type.__name__
          context["stacktrace"] = "".join(traceback.format_exception(_type, _value, _tb))

      payload: Dict[str, Any] = {
        "level": _LEVEL_NAMES.get(record.levelname, record.levelname),
        "label": self._config.label,
        "message": record.getMessage(),
        "context": context,
        "timestamp": _iso_timestamp(record.created),
        "source": self._config.source,
      }
      scenario_id = getattr(record, "scenario_id", None) or self._config.scenario_id
      if scenario_id:
        payload["scenarioId"] = scenario_id

      self._queue.enqueue(payload)
    except Exception:
      # Never break application logging.
      self.handleError(record)


def setup_logging(
  logger: Optional[logging.Logger] = None,
  *,
  label: Optional[str] = None,
  endpoint: Optional[str] = None,
  source: Optional[str] = None,
  scenario_id: Optional[str] = None,
) -> None:
  """
  Attach the poslog handler to the standard logging module.

  Existing handlers are kept; the new handler ships records to the ingestion
  endpoint via a background queue. Pass `extra={"scenario_id": ...}` on a log
  call to group it under a scenario.
  """
  config = ClientConfig.from_params_or_env(
    label=label,
    endpoint=endpoint,
    source=source,
    scenario_id=scenario_id,
  )
  if not config.enabled:
    return

  target_logger = logger or logging.getLogger()

  # Avoid attaching duplicate client handlers to the same logger.
  for existing in target_logger.handlers:
    if isinstance(existing, _PoslogHandler):
      return

  transport = HttpTransport(endpoint=config.endpoint)
  log_queue = LogQueue(sender=transport.send)
  log_queue.start()

  handler = _PoslogHandler(config=config, queue=log_queue)
  target_logger.addHandler(handler)
