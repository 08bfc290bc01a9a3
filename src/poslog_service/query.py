"""Translate raw list/scenario query parameters into parameterized SQL predicates.

The translator never executes anything. `parse_list_params` validates the
untyped request parameters into a `LogFilter` and a `Pagination`, and
`build_predicate` turns the filter into a WHERE clause whose values are all
bound parameters.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from .errors import ValidationError
from .models import is_valid_scenario_id, normalize_timestamp

DEFAULT_LIMIT = 200
MAX_LIMIT = 500
DEFAULT_SCENARIO_LIMIT = 20
MAX_SCENARIO_LIMIT = 100
# offset and cursor are bound to BIGINT parameters.
MAX_BIGINT = 2 ** 63 - 1

# Multi-value parameters accept "a,b" as well as repeated keys.
_SET_PARAMS = {"level", "label", "source"}
_SCALAR_PARAMS = {"start", "end", "q", "scenarioId", "limit", "offset", "cursor", "since_id"}
LIST_PARAMS = frozenset(_SET_PARAMS) | frozenset(_SCALAR_PARAMS)
SCENARIO_PARAMS = frozenset({"limit"})


@dataclass(frozen=True)
class LogFilter:
    """Every supported filter field; empty/None means no restriction."""

    levels: Tuple[str, ...] = ()
    labels: Tuple[str, ...] = ()
    sources: Tuple[str, ...] = ()
    start: Optional[str] = None
    end: Optional[str] = None
    q: Optional[str] = None
    scenario_id: Optional[str] = None
    since_id: Optional[int] = None


@dataclass(frozen=True)
class Pagination:
    limit: int = DEFAULT_LIMIT
    offset: int = 0


@dataclass(frozen=True)
class Predicate:
    clauses: Tuple[str, ...] = ()
    params: Tuple[Any, ...] = ()

    @property
    def where_sql(self) -> str:
        if not self.clauses:
            return ""
        return "WHERE " + " AND ".join(self.clauses)


Clause = Tuple[str, Tuple[Any, ...]]
ClauseBuilder = Callable[[LogFilter], Optional[Clause]]


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally (backslash is the default escape)."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _levels_clause(f: LogFilter) -> Optional[Clause]:
    if not f.levels:
        return None
    return "level = ANY(%s)", (list(f.levels),)


def _labels_clause(f: LogFilter) -> Optional[Clause]:
    if not f.labels:
        return None
    return "label = ANY(%s)", (list(f.labels),)


def _sources_clause(f: LogFilter) -> Optional[Clause]:
    if not f.sources:
        return None
    return "source = ANY(%s)", (list(f.sources),)


def _start_clause(f: LogFilter) -> Optional[Clause]:
    if f.start is None:
        return None
    return "timestamp >= %s", (f.start,)


def _end_clause(f: LogFilter) -> Optional[Clause]:
    if f.end is None:
        return None
    return "timestamp <= %s", (f.end,)


def _text_clause(f: LogFilter) -> Optional[Clause]:
    if not f.q:
        return None
    pattern = f"%{escape_like(f.q)}%"
    return "(message ILIKE %s OR context ILIKE %s)", (pattern, pattern)


def _scenario_clause(f: LogFilter) -> Optional[Clause]:
    if f.scenario_id is None:
        return None
    return "scenario_id = %s", (f.scenario_id,)


def _since_id_clause(f: LogFilter) -> Optional[Clause]:
    if f.since_id is None:
        return None
    return "id > %s", (f.since_id,)


# Fixed, ordered enumeration of supported filters.
CLAUSE_BUILDERS: Tuple[Tuple[str, ClauseBuilder], ...] = (
    ("levels", _levels_clause),
    ("labels", _labels_clause),
    ("sources", _sources_clause),
    ("start", _start_clause),
    ("end", _end_clause),
    ("q", _text_clause),
    ("scenario_id", _scenario_clause),
    ("since_id", _since_id_clause),
)


def build_predicate(log_filter: LogFilter) -> Predicate:
    """AND together the clause of every filter field that is set."""
    clauses: List[str] = []
    params: List[Any] = []
    for _name, builder in CLAUSE_BUILDERS:
        clause = builder(log_filter)
        if clause is None:
            continue
        sql, values = clause
        clauses.append(sql)
        params.extend(values)
    return Predicate(clauses=tuple(clauses), params=tuple(params))


def _group_params(
    pairs: Iterable[Tuple[str, str]], allowed: frozenset
) -> Dict[str, List[str]]:
    grouped: Dict[str, List[str]] = {}
    for key, value in pairs:
        if key not in allowed:
            raise ValidationError(f"Unknown query parameter: {key}")
        if "\x00" in value:
            raise ValidationError(f"{key} cannot contain NUL characters")
        grouped.setdefault(key, []).append(value)
    return grouped


def _last(grouped: Dict[str, List[str]], key: str) -> Optional[str]:
    values = grouped.get(key)
    if not values:
        return None
    value = values[-1].strip()
    return value or None


def _split_set(values: List[str]) -> Tuple[str, ...]:
    seen: List[str] = []
    for value in values:
        for part in value.split(","):
            part = part.strip()
            if part and part not in seen:
                seen.append(part)
    return tuple(seen)


def _parse_int(
    name: str,
    raw: Optional[str],
    default: Optional[int],
    minimum: int,
    maximum: Optional[int] = None,
) -> Optional[int]:
    if raw is None:
        return default
    try:
        value = int(raw, 10)
    except ValueError:
        raise ValidationError(f"{name} must be an integer, got {raw!r}")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f"{minimum}-{maximum}" if maximum is not None else f">= {minimum}"
        raise ValidationError(f"{name} must be in range {bounds}, got {value}")
    return value


def _parse_timestamp(name: str, raw: Optional[str]) -> Optional[str]:
    if raw is None:
        return None
    try:
        return normalize_timestamp(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an ISO-8601 timestamp, got {raw!r}")


def parse_list_params(pairs: Iterable[Tuple[str, str]]) -> Tuple[LogFilter, Pagination]:
    """
    Validate raw list parameters.

    Args:
        pairs: (key, value) pairs as received, repeated keys allowed

    Returns:
        Tuple of (filter, pagination)

    Raises:
        ValidationError: On unknown keys or malformed values
    """
    grouped = _group_params(pairs, LIST_PARAMS)

    scenario_id = _last(grouped, "scenarioId")
    if scenario_id is not None and not is_valid_scenario_id(scenario_id):
        raise ValidationError(
            "scenarioId must match [A-Za-z0-9_-] and be at most 100 characters"
        )

    # cursor and since_id are aliases; cursor wins.
    cursor_key = "cursor" if _last(grouped, "cursor") is not None else "since_id"
    since_id = _parse_int(cursor_key, _last(grouped, cursor_key), None, 0, MAX_BIGINT)

    log_filter = LogFilter(
        levels=_split_set(grouped.get("level", [])),
        labels=_split_set(grouped.get("label", [])),
        sources=_split_set(grouped.get("source", [])),
        start=_parse_timestamp("start", _last(grouped, "start")),
        end=_parse_timestamp("end", _last(grouped, "end")),
        q=(grouped.get("q") or [""])[-1] or None,
        scenario_id=scenario_id,
        since_id=since_id,
    )
    pagination = Pagination(
        limit=_parse_int("limit", _last(grouped, "limit"), DEFAULT_LIMIT, 1, MAX_LIMIT),
        offset=_parse_int("offset", _last(grouped, "offset"), 0, 0, MAX_BIGINT),
    )
    return log_filter, pagination


def parse_scenario_params(pairs: Iterable[Tuple[str, str]]) -> int:
    """Validate scenario listing parameters and return the limit."""
    grouped = _group_params(pairs, SCENARIO_PARAMS)
    return _parse_int(
        "limit", _last(grouped, "limit"), DEFAULT_SCENARIO_LIMIT, 1, MAX_SCENARIO_LIMIT
    )
