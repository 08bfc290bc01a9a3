"""Tests for grep command implementation."""

import json
from datetime import timedelta

from poslog_service.cli.grep import _parse_time_duration, grep_command
from poslog_service.models import LogRecord
from poslog_service.remote import RemoteError


def _record(log_id: int, message: str, context=None) -> LogRecord:
    return LogRecord(
        id=log_id,
        level="ERROR",
        label="pos",
        message=message,
        context=context,
        timestamp="2024-05-01T10:00:00.000Z",
    )


class FakeClient:
    def __init__(self, items=None, has_more=False, error=None):
        self.items = items or []
        self.has_more = has_more
        self.error = error
        self.params = None

    def list_logs(self, **params):
        self.params = params
        if self.error:
            raise self.error
        return {"items": self.items, "hasMore": self.has_more, "nextCursor": None}


class TestParseTimeDuration:
    def test_valid_units(self):
        assert _parse_time_duration("30m") == timedelta(minutes=30)
        assert _parse_time_duration("2h") == timedelta(hours=2)
        assert _parse_time_duration("7d") == timedelta(days=7)

    def test_invalid(self):
        assert _parse_time_duration("7w") is None
        assert _parse_time_duration("soon") is None


class TestGrepCommand:
    def test_plain_pattern_is_sent_as_q(self, capsys):
        client = FakeClient(items=[_record(1, "card declined")])
        code = grep_command(["declined", "--level", "ERROR", "-s", "shift-1", "--color", "never"], client=client)

        assert code == 0
        assert client.params["q"] == "declined"
        assert client.params["level"] == "ERROR"
        assert client.params["scenarioId"] == "shift-1"
        assert client.params["limit"] == 100
        assert "card declined" in capsys.readouterr().out

    def test_no_matches_returns_1(self):
        assert grep_command(["nothing"], client=FakeClient()) == 1

    def test_count(self, capsys):
        client = FakeClient(items=[_record(1, "a"), _record(2, "b")])
        assert grep_command(["-c"], client=client) == 0
        assert capsys.readouterr().out.strip() == "2"

    def test_since_sets_start(self):
        client = FakeClient(items=[_record(1, "a")])
        grep_command(["--since", "1h"], client=client)
        assert client.params["start"].endswith("Z")

    def test_invalid_since_returns_2(self):
        assert grep_command(["--since", "forever"], client=FakeClient()) == 2

    def test_regex_is_applied_locally(self, capsys):
        client = FakeClient(
            items=[_record(1, "timeout after 30s"), _record(2, "ok"), _record(3, "x", context='{"err":"timeout 5s"}')]
        )
        code = grep_command(["-E", r"timeout (after )?\d+s", "--json"], client=client)

        assert code == 0
        assert "q" not in client.params
        ids = [r["id"] for r in json.loads(capsys.readouterr().out)]
        assert ids == [1, 3]

    def test_invert_match(self, capsys):
        client = FakeClient(items=[_record(1, "heartbeat"), _record(2, "card declined")])
        assert grep_command(["-v", "heartbeat", "--json"], client=client) == 0
        ids = [r["id"] for r in json.loads(capsys.readouterr().out)]
        assert ids == [2]

    def test_invalid_regex_returns_2(self):
        assert grep_command(["-E", "(unclosed"], client=FakeClient()) == 2

    def test_server_error_returns_2(self, capsys):
        client = FakeClient(error=RemoteError("poslog server returned 401: Unauthorized", 401))
        assert grep_command(["x"], client=client) == 2
        assert "401" in capsys.readouterr().err

    def test_limit_is_clamped(self):
        client = FakeClient(items=[_record(1, "a")])
        grep_command(["--limit", "9000"], client=client)
        assert client.params["limit"] == 500
