from typing import Any, List, Tuple

import psycopg2  # type: ignore[import]

from poslog_service.migrations import (  # type: ignore[import]
  MIGRATION_LOCK_ID,
  MIGRATIONS,
  migrate,
  pending_migrations,
)


class DummyCursor:
  def __init__(self, applied: List[int]) -> None:
    self.applied = applied
    self.queries: List[Tuple[str, Tuple[Any, ...]]] = []

  def execute(self, query: str, params: Tuple[Any, ...] = ()) -> None:
    self.queries.append((query, params))

  def fetchall(self):
    return [(v,) for v in self.applied]

  def __enter__(self) -> "DummyCursor":
    return self

  def __exit__(self, exc_type, exc, tb) -> None:
    pass


class DummyConnection:
  def __init__(self, cursor: DummyCursor) -> None:
    self.cursor_obj = cursor

  def cursor(self) -> DummyCursor:
    return self.cursor_obj

  def __enter__(self) -> "DummyConnection":
    return self

  def __exit__(self, exc_type, exc, tb) -> None:
    pass

  def close(self) -> None:
    pass


def test_migrations_are_strictly_ordered():
  versions = [m.version for m in MIGRATIONS]
  assert versions == sorted(versions)
  assert len(set(versions)) == len(versions)


def test_pending_migrations_skips_applied():
  assert [m.version for m in pending_migrations([])] == [1, 2]
  assert [m.version for m in pending_migrations([1])] == [2]
  assert pending_migrations([1, 2]) == []


def test_migrate_applies_missing_versions_under_lock(monkeypatch):
  cursor = DummyCursor(applied=[1])
  monkeypatch.setattr(psycopg2, "connect", lambda dsn: DummyConnection(cursor))

  applied = migrate("postgresql://example")

  assert applied == [2]
  assert cursor.queries[0] == ("SELECT pg_advisory_xact_lock(%s)", (MIGRATION_LOCK_ID,))
  sql_text = [q for q, _ in cursor.queries]
  assert any("ADD COLUMN IF NOT EXISTS scenario_id" in q for q in sql_text)
  assert not any("CREATE TABLE IF NOT EXISTS logs" in q for q in sql_text)
  assert cursor.queries[-1][1] == (2, "add_scenario_id")


def test_migrate_is_a_no_op_when_up_to_date(monkeypatch):
  cursor = DummyCursor(applied=[1, 2])
  monkeypatch.setattr(psycopg2, "connect", lambda dsn: DummyConnection(cursor))

  assert migrate("postgresql://example") == []
  assert not any("INSERT INTO schema_migrations" in q for q, _ in cursor.queries)
