"""Tool-call server exposing stored logs to AI assistants.

Runs a FastMCP server (stdio by default) with two tools, `get_logs` and
`list_scenarios`, both backed by the HTTP API through `LogServerClient`.
Results are rendered as plain text for the assistant to read.
"""

import json
import logging
from typing import List, Optional

from fastmcp import FastMCP
from fastmcp.exceptions import ToolError

from poslog_service.models import LogRecord, ScenarioSummary, is_valid_scenario_id
from poslog_service.remote import LogServerClient, RemoteError

logger = logging.getLogger(__name__)

DEFAULT_LOG_LIMIT = 100
MAX_LOG_LIMIT = 500
DEFAULT_SCENARIO_LIMIT = 20
MAX_SCENARIO_LIMIT = 100


def clamp_limit(value: Optional[int], fallback: int, maximum: int) -> int:
    if value is None:
        return fallback
    return min(max(int(value), 1), maximum)


def _pretty_context(context: Optional[str]) -> Optional[str]:
    if not context:
        return None
    try:
        return json.dumps(json.loads(context), indent=2, ensure_ascii=False)
    except ValueError:
        return context


def format_logs(scenario_id: str, records: List[LogRecord], has_more: bool, limit: int) -> str:
    """Render a scenario's logs, one entry per line with pretty-printed context."""
    if not records:
        return f'No logs found for scenario "{scenario_id}".'

    lines = []
    for record in records:
        header = f"[{record.timestamp}] [{record.level}]"
        if record.label:
            header += f" [{record.label}]"
        header += f" {record.message}"

        meta = []
        if record.source:
            meta.append(f"source={record.source}")
        if record.scenario_id:
            meta.append(f"scenario={record.scenario_id}")
        if meta:
            header += f" ({', '.join(meta)})"

        context = _pretty_context(record.context)
        lines.append(f"{header}\n  context: {context}" if context else header)

    if has_more:
        lines.append(f"More logs available (limit={limit}, hasMore=true).")

    return f"Scenario: {scenario_id}\n" + "\n".join(lines)


def format_scenario_list(scenarios: List[ScenarioSummary], limit: int) -> str:
    if not scenarios:
        return "No scenarios found."

    lines = []
    for index, s in enumerate(scenarios, start=1):
        levels = ", ".join(s.levels) if s.levels else "n/a"
        lines.append(
            f"{index}. {s.scenario_id} - {s.log_count} logs - "
            f"{s.first_log_at} -> {s.last_log_at} - levels: {levels}"
        )
    return f"Showing up to {limit} recent scenarios:\n" + "\n".join(lines)


def fetch_scenario_logs(
    client: LogServerClient,
    scenario_id: str,
    limit: Optional[int] = None,
    level: Optional[str] = None,
) -> str:
    if not is_valid_scenario_id(scenario_id):
        raise ToolError("scenario_id must match [A-Za-z0-9_-] and be at most 100 characters")

    limit_value = clamp_limit(limit, DEFAULT_LOG_LIMIT, MAX_LOG_LIMIT)
    try:
        page = client.list_logs(
            scenarioId=scenario_id,
            limit=limit_value,
            level=level.upper() if level else None,
        )
    except RemoteError as e:
        logger.error("get_logs failed: %s", e)
        raise ToolError(f"Failed to fetch logs: {e}") from e
    return format_logs(scenario_id, page["items"], page["hasMore"], limit_value)


def fetch_scenarios(client: LogServerClient, limit: Optional[int] = None) -> str:
    limit_value = clamp_limit(limit, DEFAULT_SCENARIO_LIMIT, MAX_SCENARIO_LIMIT)
    try:
        scenarios = client.list_scenarios(limit_value)
    except RemoteError as e:
        logger.error("list_scenarios failed: %s", e)
        raise ToolError(f"Failed to list scenarios: {e}") from e
    return format_scenario_list(scenarios, limit_value)


def build_server(client: Optional[LogServerClient] = None) -> FastMCP:
    """Create the tool server around one API client."""
    client = client or LogServerClient()
    mcp = FastMCP("poslog")

    @mcp.tool
    def get_logs(scenario_id: str, limit: Optional[int] = None, level: Optional[str] = None) -> str:
        """Fetch logs for one scenario, newest first.

        Args:
            scenario_id: Scenario ID to query ([A-Za-z0-9_-], at most 100 characters).
            limit: Maximum number of logs to return (default 100, max 500).
            level: Optional level filter (DEBUG, INFO, WARN, ERROR).
        """
        return fetch_scenario_logs(client, scenario_id, limit, level)

    @mcp.tool
    def list_scenarios(limit: Optional[int] = None) -> str:
        """List recent scenarios with counts, time range and levels.

        Args:
            limit: Maximum scenarios to return (default 20, max 100).
        """
        return fetch_scenarios(client, limit)

    return mcp


def run(transport: str = "stdio") -> None:
    client = LogServerClient()
    if not client.api_key:
        logger.warning("POSLOG_API_KEY is not set; protected routes will answer 401")
    logger.info("poslog tool server starting (base=%s)", client.base_url)
    build_server(client).run(transport=transport)
