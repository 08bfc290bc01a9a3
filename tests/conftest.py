import re
import time
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from poslog_service.api import create_app  # type: ignore[import]
from poslog_service.auth import SessionGuard  # type: ignore[import]
from poslog_service.config import AuthConfig, ServiceConfig  # type: ignore[import]
from poslog_service.drive import DriveStore  # type: ignore[import]
from poslog_service.models import (  # type: ignore[import]
  LogCreate,
  LogRecord,
  ScenarioSummary,
  serialize_context,
  utc_now_iso,
)
from poslog_service.query import LogFilter, build_predicate  # type: ignore[import]
from poslog_service.retention import RetentionConfig  # type: ignore[import]
from poslog_service.storage import LogStorage  # type: ignore[import]

PASSWORD = "hunter2"
API_KEY = "machine-key"


def ilike_regex(pattern: str) -> "re.Pattern[str]":
  """Compile a Postgres ILIKE pattern (backslash escapes) into an equivalent regex."""
  parts = []
  i = 0
  while i < len(pattern):
    ch = pattern[i]
    if ch == "\\" and i + 1 < len(pattern):
      parts.append(re.escape(pattern[i + 1]))
      i += 2
      continue
    if ch == "%":
      parts.append(".*")
    elif ch == "_":
      parts.append(".")
    else:
      parts.append(re.escape(ch))
    i += 1
  return re.compile("".join(parts), re.IGNORECASE | re.DOTALL)


class MemoryLogStorage(LogStorage):
  """In-memory store double with the same filter semantics as the SQL predicate."""

  def __init__(self) -> None:
    self.records: List[LogRecord] = []
    self.created: Dict[int, float] = {}
    self._next_id = 1

  def insert(self, entry: LogCreate, created_at: Optional[float] = None) -> int:
    log_id = self._next_id
    self._next_id += 1
    self.records.append(
      LogRecord(
        id=log_id,
        level=entry.level,
        label=entry.label,
        message=entry.message,
        context=serialize_context(entry.context),
        timestamp=entry.timestamp or utc_now_iso(),
        source=entry.source,
        scenario_id=entry.scenario_id,
      )
    )
    self.created[log_id] = time.time() if created_at is None else created_at
    return log_id

  def _matches(self, r: LogRecord, f: LogFilter) -> bool:
    if f.levels and r.level not in f.levels:
      return False
    if f.labels and r.label not in f.labels:
      return False
    if f.sources and r.source not in f.sources:
      return False
    if f.start is not None and r.timestamp < f.start:
      return False
    if f.end is not None and r.timestamp > f.end:
      return False
    if f.q:
      # Match with the exact ILIKE pattern the SQL predicate binds.
      pattern = ilike_regex(build_predicate(LogFilter(q=f.q)).params[0])
      if not pattern.fullmatch(r.message) and not pattern.fullmatch(r.context or ""):
        return False
    if f.scenario_id is not None and r.scenario_id != f.scenario_id:
      return False
    if f.since_id is not None and r.id <= f.since_id:
      return False
    return True

  def fetch_logs(self, log_filter: LogFilter, limit: int, offset: int) -> List[LogRecord]:
    rows = [r for r in self.records if self._matches(r, log_filter)]
    rows.sort(key=lambda r: r.timestamp, reverse=True)
    return rows[offset: offset + limit]

  def delete_by_id(self, log_id: int) -> bool:
    before = len(self.records)
    self.records = [r for r in self.records if r.id != log_id]
    return len(self.records) < before

  def delete_all(self) -> int:
    count = len(self.records)
    self.records = []
    return count

  def list_scenarios(self, limit: int) -> List[ScenarioSummary]:
    grouped: Dict[str, List[LogRecord]] = {}
    for r in self.records:
      if r.scenario_id:
        grouped.setdefault(r.scenario_id, []).append(r)
    summaries = [
      ScenarioSummary(
        scenario_id=sid,
        log_count=len(rows),
        first_log_at=min(r.timestamp for r in rows),
        last_log_at=max(r.timestamp for r in rows),
        levels=sorted({r.level for r in rows}),
      )
      for sid, rows in grouped.items()
    ]
    summaries.sort(key=lambda s: s.last_log_at, reverse=True)
    return summaries[:limit]

  def purge_older_than(self, days: int) -> int:
    cutoff = self.retention_cutoff(days)
    keep = [r for r in self.records if self.created[r.id] >= cutoff]
    deleted = len(self.records) - len(keep)
    self.records = keep
    return deleted


@pytest.fixture
def memory_storage() -> MemoryLogStorage:
  return MemoryLogStorage()


@pytest.fixture
def auth_config() -> AuthConfig:
  return AuthConfig(password=PASSWORD, jwt_secret="test-secret", ttl_seconds=3600, api_key=API_KEY)


@pytest.fixture
def service_config(auth_config: AuthConfig, tmp_path: Path) -> ServiceConfig:
  return ServiceConfig(
    auth=auth_config,
    retention=RetentionConfig(days=30),
    database_url="postgresql://unused",
    max_body_bytes=10_000,
    drive_dir=tmp_path / "drive",
    drive_max_bytes=1024,
  )


@pytest.fixture
def guard(auth_config: AuthConfig) -> SessionGuard:
  return SessionGuard(auth_config)


@pytest.fixture
def app(service_config: ServiceConfig, memory_storage: MemoryLogStorage, guard: SessionGuard):
  return create_app(
    service_config,
    storage=memory_storage,
    guard=guard,
    drive=DriveStore(service_config.drive_dir, service_config.drive_max_bytes),
    enable_sweeper=False,
  )


@pytest.fixture
def client(app) -> TestClient:
  return TestClient(app)


@pytest.fixture
def authed_client(client: TestClient) -> TestClient:
  resp = client.post("/api/auth/login", json={"password": PASSWORD})
  assert resp.status_code == 200
  return client
