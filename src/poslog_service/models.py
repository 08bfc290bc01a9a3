from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

SCENARIO_ID_PATTERN = r"^[A-Za-z0-9_-]+$"
SCENARIO_ID_MAX_LENGTH = 100

_SCENARIO_ID_RE = re.compile(SCENARIO_ID_PATTERN)


def normalize_timestamp(value: str) -> str:
  """
  Normalize an ISO-8601 string to UTC with millisecond precision and a `Z` suffix.

  Every stored and compared timestamp goes through this function so that plain
  string comparison orders them chronologically. Naive values are read as UTC.

  Raises:
    ValueError: If the value is not ISO-8601 or falls outside the UTC calendar.
  """
  raw = value.strip()
  if raw.endswith(("Z", "z")):
    raw = raw[:-1] + "+00:00"
  dt = datetime.fromisoformat(raw)
  if dt.tzinfo is None:
    dt = dt.replace(tzinfo=timezone.utc)
  try:
    return format_utc(dt)
  except OverflowError:
    raise ValueError(f"{value!r} is out of range once converted to UTC")


def format_utc(dt: datetime) -> str:
  return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def utc_now_iso() -> str:
  return format_utc(datetime.now(timezone.utc))


def is_valid_scenario_id(value: str) -> bool:
  return len(value) <= SCENARIO_ID_MAX_LENGTH and bool(_SCENARIO_ID_RE.match(value))


def serialize_context(context: Any) -> Optional[str]:
  """Strings are stored as-is, anything else as compact JSON."""
  if context is None:
    return None
  if isinstance(context, str):
    return context
  return json.dumps(context, separators=(",", ":"), ensure_ascii=False)


class LogCreate(BaseModel):
  """
  Ingestion body posted by external applications.
  """

  model_config = ConfigDict(populate_by_name=True, extra="ignore")

  level: str = Field(..., min_length=1)
  label: str = Field(..., min_length=1)
  message: str = Field(..., min_length=1)
  context: Any = None
  # Missing, empty or null means "now" (filled by the store).
  timestamp: Optional[str] = None
  source: Optional[str] = None
  scenario_id: Optional[str] = Field(
    None,
    alias="scenarioId",
    max_length=SCENARIO_ID_MAX_LENGTH,
    pattern=SCENARIO_ID_PATTERN,
  )

  @field_validator("timestamp", mode="before")
  @classmethod
  def _normalize_timestamp(cls, value: Any) -> Any:
    if value is None or value == "":
      return None
    if not isinstance(value, str):
      raise ValueError("timestamp must be an ISO-8601 string")
    try:
      return normalize_timestamp(value)
    except ValueError:
      raise ValueError(f"timestamp is not ISO-8601: {value!r}")

  @field_validator("source", "scenario_id", mode="before")
  @classmethod
  def _empty_as_absent(cls, value: Any) -> Any:
    return None if value == "" else value

  @field_validator("level", "label", "message", "source", "context")
  @classmethod
  def _reject_nul(cls, value: Any) -> Any:
    # Postgres text columns cannot hold NUL.
    if isinstance(value, str) and "\x00" in value:
      raise ValueError("text fields cannot contain NUL characters")
    return value


class LogRecord(BaseModel):
  """
  A stored log event as returned by the store and the list endpoint.
  """

  id: int
  level: str
  label: str
  message: str
  context: Optional[str] = None
  timestamp: str
  source: Optional[str] = None
  scenario_id: Optional[str] = None
  created_at: Optional[str] = None


class LogPage(BaseModel):
  items: List[LogRecord]
  has_more: bool

  @property
  def next_cursor(self) -> Optional[str]:
    """Largest id on the page; pass back as `cursor` to fetch only newer rows."""
    if not self.items:
      return None
    return str(max(item.id for item in self.items))


class ScenarioSummary(BaseModel):
  model_config = ConfigDict(populate_by_name=True)

  scenario_id: str = Field(..., alias="scenarioId")
  log_count: int = Field(..., alias="logCount")
  first_log_at: str = Field(..., alias="firstLogAt")
  last_log_at: str = Field(..., alias="lastLogAt")
  levels: List[str] = Field(default_factory=list)


class LoginRequest(BaseModel):
  password: str
