"""Grep command implementation for searching stored logs on a running server."""

import argparse
import re
import sys
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from poslog_service.models import LogRecord, format_utc
from poslog_service.output_formatter import ColorMode, LogFormatter, OutputFormat
from poslog_service.query import MAX_LIMIT
from poslog_service.remote import LogServerClient, RemoteError


def _parse_time_duration(duration_str: str) -> Optional[timedelta]:
    """Parse duration string like '30m', '1h', '2d', '7d'.

    Returns:
        timedelta object or None if invalid
    """
    match = re.match(r"^(\d+)([mhd])$", duration_str.strip().lower())
    if not match:
        return None

    value, unit = int(match.group(1)), match.group(2)
    if unit == "m":
        return timedelta(minutes=value)
    elif unit == "h":
        return timedelta(hours=value)
    else:
        return timedelta(days=value)


def _build_params(parsed_args: argparse.Namespace, since: Optional[timedelta]) -> dict:
    params = {
        "limit": parsed_args.limit,
        "level": parsed_args.level,
        "label": parsed_args.label,
        "source": parsed_args.source,
        "scenarioId": parsed_args.scenario,
        "end": parsed_args.end,
    }
    # Regex and inverted matches are applied locally; plain patterns go to the server.
    if parsed_args.pattern and not (parsed_args.extended_regex or parsed_args.invert_match):
        params["q"] = parsed_args.pattern
    if since is not None:
        params["start"] = format_utc(datetime.now(timezone.utc) - since)
    elif parsed_args.start:
        params["start"] = parsed_args.start
    return params


def _local_filter(records: List[LogRecord], parsed_args: argparse.Namespace) -> List[LogRecord]:
    pattern = parsed_args.pattern
    if not pattern or not (parsed_args.extended_regex or parsed_args.invert_match):
        return records

    flags = re.IGNORECASE
    if parsed_args.extended_regex:
        regex = re.compile(pattern, flags)
    else:
        regex = re.compile(re.escape(pattern), flags)

    def matches(record: LogRecord) -> bool:
        return bool(regex.search(record.message) or (record.context and regex.search(record.context)))

    if parsed_args.invert_match:
        return [r for r in records if not matches(r)]
    return [r for r in records if matches(r)]


def grep_command(args: Optional[List[str]] = None, client: Optional[LogServerClient] = None) -> int:
    """Execute grep command.

    Args:
        args: Command-line arguments (for testing)
        client: Server client (for testing); built from the environment when omitted

    Returns:
        Exit code: 0 (matches found), 1 (no matches), 2 (error)
    """
    parser = argparse.ArgumentParser(
        prog="poslog grep",
        description="Search stored logs (case-insensitive text match on message and context)",
    )
    parser.add_argument("pattern", nargs="?", default=None, help="Text to search for")
    parser.add_argument("-E", "--extended-regex", action="store_true", help="Treat pattern as a regex")
    parser.add_argument("-v", "--invert-match", action="store_true", help="Output non-matching logs")
    parser.add_argument("-c", "--count", action="store_true", help="Output count of matches")
    parser.add_argument("-l", "--level", default=None, help="Comma-separated levels (e.g. ERROR,WARN)")
    parser.add_argument("--label", default=None, help="Comma-separated labels")
    parser.add_argument("--source", default=None, help="Comma-separated sources")
    parser.add_argument("-s", "--scenario", default=None, help="Scenario id")
    parser.add_argument("--since", default=None, help="Time range: 30m/1h/2d/7d")
    parser.add_argument("--start", default=None, help="Inclusive ISO-8601 lower bound")
    parser.add_argument("--end", default=None, help="Inclusive ISO-8601 upper bound")
    parser.add_argument("-n", "--limit", type=int, default=100, help=f"Max logs to fetch (1-{MAX_LIMIT})")
    parser.add_argument("--json", action="store_true", help="Output in JSON format")
    parser.add_argument("--color", choices=["auto", "always", "never"], default="auto")

    try:
        parsed_args = parser.parse_args(args)
    except SystemExit:
        return 2

    since_td = None
    if parsed_args.since:
        since_td = _parse_time_duration(parsed_args.since)
        if not since_td:
            print(f"Error: Invalid time duration '{parsed_args.since}'", file=sys.stderr)
            return 2

    if parsed_args.extended_regex and parsed_args.pattern:
        try:
            re.compile(parsed_args.pattern)
        except re.error as e:
            print(f"Error: Invalid regex '{parsed_args.pattern}': {e}", file=sys.stderr)
            return 2

    limit = max(1, min(parsed_args.limit, MAX_LIMIT))
    parsed_args.limit = limit

    client = client or LogServerClient()
    try:
        page = client.list_logs(**_build_params(parsed_args, since_td))
    except RemoteError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2

    records = _local_filter(page["items"], parsed_args)

    if parsed_args.count:
        print(len(records))
        return 0 if records else 1

    if not records:
        return 1

    formatter = LogFormatter(
        output_format=OutputFormat.JSON if parsed_args.json else OutputFormat.PLAIN,
        color_mode=ColorMode(parsed_args.color),
    )
    print(formatter.format_records(records))
    if page["hasMore"] and not parsed_args.json:
        print(f"[more logs available; raise --limit (max {MAX_LIMIT}) or narrow the filters]", file=sys.stderr)
    return 0
