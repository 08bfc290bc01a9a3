from __future__ import annotations

import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator, List, Sequence

import psycopg2

from .errors import StorageError
from .models import LogCreate, LogPage, LogRecord, ScenarioSummary, serialize_context, utc_now_iso
from .query import LogFilter, Pagination, build_predicate

_SELECT_COLUMNS = """
  id,
  level,
  label,
  message,
  context,
  timestamp,
  source,
  scenario_id,
  created_at
"""


class LogStorage:
  """
  Storage abstraction for log events.

  `list_logs` is shared by every backend: it asks `fetch_logs` for one row more
  than the page size so `has_more` is known without a separate count query.
  """

  def insert(self, entry: LogCreate) -> int:  # pragma: no cover - interface
    raise NotImplementedError

  def fetch_logs(self, log_filter: LogFilter, limit: int, offset: int) -> List[LogRecord]:  # pragma: no cover - interface
    """Return at most `limit` matching records ordered by timestamp DESC."""
    raise NotImplementedError

  def delete_by_id(self, log_id: int) -> bool:  # pragma: no cover - interface
    raise NotImplementedError

  def delete_all(self) -> int:  # pragma: no cover - interface
    raise NotImplementedError

  def list_scenarios(self, limit: int) -> List[ScenarioSummary]:  # pragma: no cover - interface
    raise NotImplementedError

  def purge_older_than(self, days: int) -> int:  # pragma: no cover - interface
    """Hard-delete records whose created_at precedes now - days."""
    raise NotImplementedError

  def list_logs(self, log_filter: LogFilter, pagination: Pagination) -> LogPage:
    rows = self.fetch_logs(log_filter, limit=pagination.limit + 1, offset=pagination.offset)
    has_more = len(rows) > pagination.limit
    return LogPage(items=rows[: pagination.limit], has_more=has_more)

  @staticmethod
  def retention_cutoff(days: int) -> float:
    """Unix timestamp before which records are eligible for purge."""
    seconds = max(days, 0) * 24 * 60 * 60
    return time.time() - seconds


class PostgresLogStorage(LogStorage):
  """
  Postgres-backed event store.

  Each operation opens its own connection and commits on success, so every
  mutation is durable as soon as the call returns.
  """

  def __init__(self, dsn: str) -> None:
    self._dsn = dsn

  @contextmanager
  def _cursor(self, operation: str) -> Iterator[Any]:
    try:
      conn = psycopg2.connect(self._dsn)
    except psycopg2.Error as exc:
      raise StorageError(f"{operation} failed: could not connect") from exc
    try:
      with conn, conn.cursor() as cur:
        yield cur
    except (psycopg2.Error, ValueError) as exc:
      # psycopg2 raises ValueError for parameters it cannot quote (e.g. NUL).
      raise StorageError(f"{operation} failed") from exc
    finally:
      conn.close()

  def insert(self, entry: LogCreate) -> int:
    timestamp = entry.timestamp or utc_now_iso()
    with self._cursor("insert") as cur:
      cur.execute(
        """
        INSERT INTO logs (level, label, message, context, timestamp, source, scenario_id)
        VALUES (%s, %s, %s, %s, %s, %s, %s)
        RETURNING id
        """,
        (
          entry.level,
          entry.label,
          entry.message,
          serialize_context(entry.context),
          timestamp,
          entry.source,
          entry.scenario_id,
        ),
      )
      (log_id,) = cur.fetchone()
    return int(log_id)

  def fetch_logs(self, log_filter: LogFilter, limit: int, offset: int) -> List[LogRecord]:
    predicate = build_predicate(log_filter)
    with self._cursor("list") as cur:
      cur.execute(
        f"""
        SELECT {_SELECT_COLUMNS}
        FROM logs
        {predicate.where_sql}
        ORDER BY timestamp DESC
        LIMIT %s OFFSET %s
        """,
        (*predicate.params, limit, offset),
      )
      rows = cur.fetchall()
    return [_row_to_record(row) for row in rows]

  def delete_by_id(self, log_id: int) -> bool:
    with self._cursor("delete") as cur:
      cur.execute("DELETE FROM logs WHERE id = %s", (log_id,))
      deleted = cur.rowcount or 0
    return deleted > 0

  def delete_all(self) -> int:
    with self._cursor("delete all") as cur:
      cur.execute("DELETE FROM logs")
      deleted = cur.rowcount or 0
    return deleted

  def list_scenarios(self, limit: int) -> List[ScenarioSummary]:
    with self._cursor("list scenarios") as cur:
      cur.execute(
        """
        SELECT
          scenario_id,
          COUNT(*) AS log_count,
          MIN(timestamp) AS first_log_at,
          MAX(timestamp) AS last_log_at,
          ARRAY_AGG(DISTINCT level) AS levels
        FROM logs
        WHERE scenario_id IS NOT NULL
        GROUP BY scenario_id
        ORDER BY last_log_at DESC
        LIMIT %s
        """,
        (limit,),
      )
      rows = cur.fetchall()

    summaries: List[ScenarioSummary] = []
    for scenario_id, log_count, first_log_at, last_log_at, levels in rows:
      summaries.append(
        ScenarioSummary(
          scenario_id=scenario_id,
          log_count=int(log_count),
          first_log_at=first_log_at,
          last_log_at=last_log_at,
          levels=list(levels or []),
        )
      )
    return summaries

  def purge_older_than(self, days: int) -> int:
    cutoff_ts = self.retention_cutoff(days)
    with self._cursor("purge") as cur:
      cur.execute(
        "DELETE FROM logs WHERE created_at < to_timestamp(%s)",
        (cutoff_ts,),
      )
      deleted = cur.rowcount or 0
    return deleted


def _row_to_record(row: Sequence[Any]) -> LogRecord:
  log_id, level, label, message, context, timestamp, source, scenario_id, created_at = row
  if isinstance(created_at, datetime):
    created_at = created_at.isoformat()
  return LogRecord(
    id=int(log_id),
    level=level,
    label=label,
    message=message,
    context=context,
    timestamp=timestamp,
    source=source,
    scenario_id=scenario_id,
    created_at=created_at,
  )
