from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlparse

DEFAULT_ENDPOINT = "http://localhost:6666/api/logs"


@dataclass(frozen=True)
class ClientConfig:
  """
  Configuration for the log shipping client.

  Values are sourced from explicit arguments, then environment variables,
  then defaults.
  """

  label: str
  endpoint: str = DEFAULT_ENDPOINT
  source: Optional[str] = None
  scenario_id: Optional[str] = None
  enabled: bool = True

  @classmethod
  def from_env(cls) -> "ClientConfig":
    """
    Load configuration from environment variables.

    Optional:
      - POSLOG_LABEL (default: "my-app")
      - POSLOG_ENDPOINT (default: http://localhost:6666/api/logs)
      - POSLOG_SOURCE (default: the host name)
      - POSLOG_SCENARIO_ID
      - POSLOG_ENABLED
    """
    return cls.from_params_or_env()

  @classmethod
  def from_params_or_env(
    cls,
    label: Optional[str] = None,
    endpoint: Optional[str] = None,
    source: Optional[str] = None,
    scenario_id: Optional[str] = None,
  ) -> "ClientConfig":
    resolved_label = label or os.getenv("POSLOG_LABEL") or "my-app"

    url = endpoint or os.getenv("POSLOG_ENDPOINT", DEFAULT_ENDPOINT)
    _validate_endpoint(url)

    return cls(
      label=resolved_label,
      endpoint=url,
      source=source or os.getenv("POSLOG_SOURCE") or socket.gethostname(),
      scenario_id=scenario_id or os.getenv("POSLOG_SCENARIO_ID") or None,
      enabled=_get_enabled_flag(),
    )


def _validate_endpoint(url: str) -> None:
  parsed = urlparse(url)
  if parsed.scheme not in ("http", "https") or not parsed.netloc:
    raise ValueError(
      f"Invalid POSLOG_ENDPOINT '{url}'. "
      "Expected an http(s) URL like http://localhost:6666/api/logs."
    )


def _get_enabled_flag() -> bool:
  """
  Determine whether shipping is enabled.

  Uses POSLOG_ENABLED; defaults to True. Unknown values disable shipping.
  """
  raw = os.getenv("POSLOG_ENABLED")
  if raw is None:
    return True

  value = raw.strip().lower()
  if value in ("1", "true", "yes", "on"):
    return True
  if value in ("0", "false", "no", "off"):
    return False

  return False
