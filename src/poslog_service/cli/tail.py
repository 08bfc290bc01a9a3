"""Tail command implementation for following new logs on a running server."""

import argparse
import sys
import time
from typing import Dict, List, Optional

from poslog_service.models import LogRecord
from poslog_service.output_formatter import ColorMode, LogFormatter, OutputFormat
from poslog_service.remote import LogServerClient, RemoteError
from poslog_service.server_health import check_server_alive


class TailFollower:
    """Follows the list endpoint by polling with an id cursor."""

    def __init__(
        self,
        client: LogServerClient,
        poll_interval_ms: int = 1000,
        filters: Optional[Dict[str, str]] = None,
        color_mode: ColorMode = ColorMode.AUTO,
        page_size: int = 200,
        initial_lines: int = 10,
    ):
        """Initialize tail follower.

        Args:
            client: Server client
            poll_interval_ms: Polling interval in milliseconds
            filters: Extra list parameters (level, label, source, scenarioId)
            color_mode: Color mode for output
            page_size: Page size used while catching up
            initial_lines: Number of recent logs printed before following
        """
        self.client = client
        self.poll_interval = poll_interval_ms / 1000.0
        self.filters = {k: v for k, v in (filters or {}).items() if v}
        self.page_size = page_size
        self.initial_lines = initial_lines
        self.formatter = LogFormatter(output_format=OutputFormat.PLAIN, color_mode=color_mode)
        self.cursor: Optional[int] = None

    def _emit(self, records: List[LogRecord]) -> None:
        # Pages are newest first; print oldest first like tail(1).
        for record in sorted(records, key=lambda r: (r.timestamp, r.id)):
            print(self.formatter.format_record(record))
        if records:
            newest = max(r.id for r in records)
            self.cursor = newest if self.cursor is None else max(self.cursor, newest)

    def prime(self) -> List[LogRecord]:
        """Print the most recent logs and set the cursor past them."""
        page = self.client.list_logs(limit=max(1, self.initial_lines), **self.filters)
        records = page["items"]
        self._emit(records)
        if self.cursor is None:
            self.cursor = 0
        return records

    def poll_once(self) -> List[LogRecord]:
        """Fetch every log with an id above the cursor and print it."""
        collected: List[LogRecord] = []
        offset = 0
        while True:
            page = self.client.list_logs(
                cursor=self.cursor or 0,
                limit=self.page_size,
                offset=offset,
                **self.filters,
            )
            collected.extend(page["items"])
            if not page["hasMore"]:
                break
            offset += self.page_size
        self._emit(collected)
        return collected

    def tail(self, max_polls: Optional[int] = None) -> int:
        """Start following.

        Returns:
            Exit code (0 for normal exit, 1 for error)
        """
        try:
            self.prime()
            print("\n[Following poslog server...]", file=sys.stderr)
            print("[Press Ctrl+C to exit]", file=sys.stderr)

            polls = 0
            while max_polls is None or polls < max_polls:
                time.sleep(self.poll_interval)
                self.poll_once()
                polls += 1
        except KeyboardInterrupt:
            print("\n[Tail interrupted]", file=sys.stderr)
            return 0
        except RemoteError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        return 0


def tail_command(args: Optional[List[str]] = None, client: Optional[LogServerClient] = None) -> int:
    """Execute tail command.

    Returns:
        Exit code: 0 (normal exit), 1 (error)
    """
    parser = argparse.ArgumentParser(prog="poslog tail", description="Follow new logs in real time")
    parser.add_argument("-l", "--level", default=None, help="Comma-separated levels (e.g. ERROR,WARN)")
    parser.add_argument("--label", default=None, help="Comma-separated labels")
    parser.add_argument("--source", default=None, help="Comma-separated sources")
    parser.add_argument("-s", "--scenario", default=None, help="Scenario id")
    parser.add_argument(
        "--poll-interval",
        type=int,
        default=1000,
        help="Polling interval in milliseconds (default 1000)",
    )
    parser.add_argument("--color", choices=["auto", "always", "never"], default="auto")

    try:
        parsed_args = parser.parse_args(args)
    except SystemExit:
        return 1

    if client is None:
        if not check_server_alive():
            print("Error: poslog server is not reachable", file=sys.stderr)
            return 1
        client = LogServerClient()

    follower = TailFollower(
        client,
        poll_interval_ms=parsed_args.poll_interval,
        filters={
            "level": parsed_args.level,
            "label": parsed_args.label,
            "source": parsed_args.source,
            "scenarioId": parsed_args.scenario,
        },
        color_mode=ColorMode(parsed_args.color),
    )
    return follower.tail()
