from __future__ import annotations

from dataclasses import asdict, dataclass

from . import __version__
from .config import ServiceConfig


@dataclass
class ServiceStatus:
  status: str
  service: str
  version: str
  retentionDays: int


def get_status(config: ServiceConfig) -> dict:
  """
  Return a simple health payload for the log service.
  """
  payload = ServiceStatus(
    status="ok",
    service="poslog",
    version=__version__,
    retentionDays=config.retention.days,
  )
  return asdict(payload)
