"""
Versioned schema migrations for the event store.

Migrations are applied once, in order, and recorded in `schema_migrations`.
Run them through `poslog migrate` or implicitly by `poslog serve` before the
HTTP server starts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Sequence

import psycopg2

from .errors import StorageError

logger = logging.getLogger(__name__)

# Arbitrary constant shared by every process running migrations against the same database.
MIGRATION_LOCK_ID = 7_406_521


@dataclass(frozen=True)
class Migration:
  version: int
  name: str
  sql: str


MIGRATIONS: Sequence[Migration] = (
  Migration(
    version=1,
    name="create_logs",
    sql="""
    CREATE TABLE IF NOT EXISTS logs (
      id BIGSERIAL PRIMARY KEY,
      level TEXT NOT NULL,
      label TEXT NOT NULL,
      message TEXT NOT NULL,
      context TEXT,
      timestamp TEXT NOT NULL,
      source TEXT,
      created_at TIMESTAMPTZ NOT NULL DEFAULT now()
    );

    CREATE INDEX IF NOT EXISTS idx_logs_level ON logs (level);
    CREATE INDEX IF NOT EXISTS idx_logs_label ON logs (label);
    CREATE INDEX IF NOT EXISTS idx_logs_source ON logs (source);
    CREATE INDEX IF NOT EXISTS idx_logs_timestamp ON logs (timestamp DESC);
    CREATE INDEX IF NOT EXISTS idx_logs_created_at ON logs (created_at);
    """,
  ),
  Migration(
    version=2,
    name="add_scenario_id",
    sql="""
    ALTER TABLE logs ADD COLUMN IF NOT EXISTS scenario_id TEXT;

    CREATE INDEX IF NOT EXISTS idx_logs_scenario_id ON logs (scenario_id);
    """,
  ),
)

_BOOKKEEPING_DDL = """
CREATE TABLE IF NOT EXISTS schema_migrations (
  version INTEGER PRIMARY KEY,
  name TEXT NOT NULL,
  applied_at TIMESTAMPTZ NOT NULL DEFAULT now()
)
"""


def pending_migrations(applied: Sequence[int], migrations: Sequence[Migration] = MIGRATIONS) -> List[Migration]:
  done = set(applied)
  return sorted((m for m in migrations if m.version not in done), key=lambda m: m.version)


def migrate(dsn: str, migrations: Sequence[Migration] = MIGRATIONS) -> List[int]:
  """
  Apply every migration not yet recorded, in version order, in one transaction.

  Returns the versions applied by this call (empty when already up to date).
  """
  try:
    conn = psycopg2.connect(dsn)
  except psycopg2.Error as exc:
    raise StorageError("migrate failed: could not connect") from exc

  applied_now: List[int] = []
  try:
    with conn, conn.cursor() as cur:
      cur.execute("SELECT pg_advisory_xact_lock(%s)", (MIGRATION_LOCK_ID,))
      cur.execute(_BOOKKEEPING_DDL)
      cur.execute("SELECT version FROM schema_migrations")
      applied = [row[0] for row in cur.fetchall()]

      for migration in pending_migrations(applied, migrations):
        logger.info("Applying migration %s (%s)", migration.version, migration.name)
        cur.execute(migration.sql)
        cur.execute(
          "INSERT INTO schema_migrations (version, name) VALUES (%s, %s)",
          (migration.version, migration.name),
        )
        applied_now.append(migration.version)
  except psycopg2.Error as exc:
    raise StorageError("migrate failed") from exc
  finally:
    conn.close()

  if not applied_now:
    logger.info("Schema is up to date")
  return applied_now
