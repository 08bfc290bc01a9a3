from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn

from .config import load_database_url, load_env_file, load_service_config
from .errors import ConfigError, StorageError
from .remote import LogServerClient, RemoteError

USAGE = """Usage: poslog {serve|migrate|purge|status|grep|tail|scenarios|mcp}
  serve     - Run the HTTP server (applies pending migrations first)
  migrate   - Apply pending database migrations
  purge     - Delete logs older than the retention window now
  status    - Check a running server
  grep      - Search stored logs
  tail      - Follow new logs
  scenarios - List recent scenarios
  mcp       - Run the tool-call server for AI assistants"""

COMMANDS = {"serve", "migrate", "purge", "status", "grep", "tail", "scenarios", "mcp"}


def main(argv: list[str] | None = None) -> NoReturn:
  argv = list(sys.argv[1:] if argv is None else argv)

  if not argv or argv[0] not in COMMANDS:
    print(USAGE, file=sys.stderr)
    sys.exit(1)

  load_env_file()
  command, rest = argv[0], argv[1:]

  if command == "serve":
    _run_serve(rest)
  elif command == "migrate":
    _run_migrate()
  elif command == "purge":
    _run_purge()
  elif command == "status":
    _run_status()
  elif command == "grep":
    from .cli.grep import grep_command

    sys.exit(grep_command(rest))
  elif command == "tail":
    from .cli.tail import tail_command

    sys.exit(tail_command(rest))
  elif command == "scenarios":
    _run_scenarios(rest)
  elif command == "mcp":
    _run_mcp(rest)


def _configure_logging(level: str) -> None:
  logging.basicConfig(
    level=getattr(logging, level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
  )


def _run_serve(args: list[str]) -> None:
  parser = argparse.ArgumentParser(prog="poslog serve", description="Run the poslog HTTP server")
  parser.add_argument("--host", default=None, help="Bind address (default POSLOG_HOST or 0.0.0.0)")
  parser.add_argument("--port", type=int, default=None, help="Port (default POSLOG_PORT or 6666)")
  parser.add_argument("--no-migrate", action="store_true", help="Skip applying migrations on startup")
  parsed = parser.parse_args(args)

  try:
    config = load_service_config()
  except ConfigError as e:
    print(f"Error: {e}", file=sys.stderr)
    sys.exit(2)

  _configure_logging(config.log_level)

  import uvicorn

  from .api import create_app
  from .migrations import migrate

  if not parsed.no_migrate:
    try:
      migrate(config.database_url)
    except StorageError as e:
      print(f"Error: {e}", file=sys.stderr)
      sys.exit(2)

  app = create_app(config)
  uvicorn.run(
    app,
    host=parsed.host or config.host,
    port=parsed.port or config.port,
    log_level=config.log_level.lower(),
  )
  sys.exit(0)


def _run_migrate() -> None:
  from .migrations import migrate

  _configure_logging("INFO")
  try:
    applied = migrate(load_database_url())
  except StorageError as e:
    print(f"Error: {e}", file=sys.stderr)
    sys.exit(2)

  if applied:
    print(f"Applied migration(s): {', '.join(str(v) for v in applied)}")
  else:
    print("Database schema is up to date")
  sys.exit(0)


def _run_purge() -> None:
  from .retention import RetentionSweeper, load_retention_config
  from .storage import PostgresLogStorage

  _configure_logging("INFO")
  config = load_retention_config()
  sweeper = RetentionSweeper(PostgresLogStorage(load_database_url()), config)
  deleted = sweeper.sweep_once()
  if deleted is None:
    print("Error: retention sweep failed (see log output)", file=sys.stderr)
    sys.exit(2)

  print(f"Deleted {deleted} log(s) older than {config.days} day(s)")
  sys.exit(0)


def _run_status() -> None:
  client = LogServerClient()
  try:
    data = client.status()
  except RemoteError as e:
    print(f"poslog server status: UNREACHABLE at {client.base_url}", file=sys.stderr)
    print(f"  {e}", file=sys.stderr)
    sys.exit(2)

  print("poslog server status: HEALTHY")
  print(f"Service: {data.get('service')} v{data.get('version')}")
  print(f"Retention: {data.get('retentionDays')} day(s)")
  sys.exit(0)


def _run_scenarios(args: list[str]) -> None:
  from .output_formatter import OutputFormat, format_scenarios

  parser = argparse.ArgumentParser(prog="poslog scenarios", description="List recent scenarios")
  parser.add_argument("-n", "--limit", type=int, default=20, help="Max scenarios (1-100)")
  parser.add_argument("--json", action="store_true", help="Output in JSON format")
  parsed = parser.parse_args(args)

  try:
    scenarios = LogServerClient().list_scenarios(max(1, min(parsed.limit, 100)))
  except RemoteError as e:
    print(f"Error: {e}", file=sys.stderr)
    sys.exit(2)

  if not scenarios and not parsed.json:
    print("No scenarios found.")
    sys.exit(1)
  print(format_scenarios(scenarios, OutputFormat.JSON if parsed.json else OutputFormat.PLAIN))
  sys.exit(0)


def _run_mcp(args: list[str]) -> None:
  parser = argparse.ArgumentParser(prog="poslog mcp", description="Run the tool-call server")
  parser.add_argument("--transport", choices=["stdio", "http"], default="stdio")
  parsed = parser.parse_args(args)

  # stdout carries the stdio protocol; log to stderr only.
  logging.basicConfig(level=logging.INFO, stream=sys.stderr)

  from .mcp_server import run

  run(transport=parsed.transport)
  sys.exit(0)


if __name__ == "__main__":  # pragma: no cover
  main()
