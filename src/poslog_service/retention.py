from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from .storage import LogStorage

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 30
DEFAULT_SWEEP_INTERVAL_HOURS = 24


@dataclass(frozen=True)
class RetentionConfig:
  days: int
  interval_seconds: float = DEFAULT_SWEEP_INTERVAL_HOURS * 60 * 60


def load_retention_config() -> RetentionConfig:
  days = DEFAULT_RETENTION_DAYS
  raw = os.getenv("POSLOG_RETENTION_DAYS")
  if raw is not None:
    try:
      days = int(raw)
    except ValueError:
      # Fallback to default on invalid input
      days = DEFAULT_RETENTION_DAYS

  # Clamp to 1 day .. 10 years
  if days < 1:
    days = 1
  if days > 3650:
    days = 3650

  hours: float = DEFAULT_SWEEP_INTERVAL_HOURS
  raw_interval = os.getenv("POSLOG_RETENTION_INTERVAL_HOURS")
  if raw_interval is not None:
    try:
      hours = float(raw_interval)
    except ValueError:
      hours = DEFAULT_SWEEP_INTERVAL_HOURS
    if hours <= 0:
      hours = DEFAULT_SWEEP_INTERVAL_HOURS

  return RetentionConfig(days=days, interval_seconds=hours * 60 * 60)


class RetentionSweeper:
  """
  Periodically purges records older than the configured retention.

  One asyncio task sleeps for a fixed interval, then runs the purge in a worker
  thread. A failing purge is logged and the next tick is scheduled as usual.
  """

  def __init__(self, storage: LogStorage, config: RetentionConfig) -> None:
    self._storage = storage
    self._config = config
    self._task: Optional[asyncio.Task] = None

  @property
  def running(self) -> bool:
    return self._task is not None and not self._task.done()

  def sweep_once(self) -> Optional[int]:
    """Run one purge synchronously. Returns the deleted count, or None on failure."""
    try:
      deleted = self._storage.purge_older_than(self._config.days)
    except Exception:
      logger.exception("Retention purge failed (retention_days=%s)", self._config.days)
      return None
    logger.info(
      "Retention purge removed %s record(s) older than %s day(s)",
      deleted,
      self._config.days,
    )
    return deleted

  async def run(self) -> None:
    while True:
      try:
        await asyncio.sleep(self._config.interval_seconds)
      except asyncio.CancelledError:
        logger.info("Retention sweeper cancelled")
        return
      await asyncio.to_thread(self.sweep_once)

  def start(self) -> None:
    if self.running:
      return
    logger.info(
      "Retention sweeper started (retention_days=%s, interval=%.0fs)",
      self._config.days,
      self._config.interval_seconds,
    )
    self._task = asyncio.create_task(self.run(), name="poslog-retention-sweeper")

  async def stop(self) -> None:
    if self._task is None:
      return
    self._task.cancel()
    try:
      await self._task
    except asyncio.CancelledError:
      pass
    self._task = None
