"""Shared output formatting for query commands.

Provides plain-text and JSON formatters for log records and scenario
summaries. Handles color output based on terminal detection.
"""

import json
import sys
from enum import Enum
from typing import List, Union

from poslog_service.models import LogRecord, ScenarioSummary


class OutputFormat(Enum):
    """Output format options."""
    PLAIN = "plain"
    JSON = "json"


class ColorMode(Enum):
    """Color output mode options."""
    AUTO = "auto"
    ALWAYS = "always"
    NEVER = "never"


class LogFormatter:
    """Formatter for log records supporting multiple output formats."""

    # ANSI color codes
    COLOR_RED = "\033[91m"
    COLOR_YELLOW = "\033[93m"
    COLOR_DIM = "\033[2m"
    COLOR_RESET = "\033[0m"

    def __init__(
        self,
        output_format: Union[OutputFormat, str] = OutputFormat.PLAIN,
        color_mode: Union[ColorMode, str] = ColorMode.AUTO,
    ):
        """Initialize formatter.

        Args:
            output_format: Output format (plain or json)
            color_mode: Color mode (auto, always, never)
        """
        if isinstance(output_format, str):
            self.output_format = OutputFormat(output_format.lower())
        else:
            self.output_format = output_format

        if isinstance(color_mode, str):
            self.color_mode = ColorMode(color_mode.lower())
        else:
            self.color_mode = color_mode

        self._use_colors = self._should_use_colors()

    def _should_use_colors(self) -> bool:
        if self.color_mode == ColorMode.ALWAYS:
            return True
        elif self.color_mode == ColorMode.NEVER:
            return False
        else:  # AUTO
            return hasattr(sys.stdout, "isatty") and sys.stdout.isatty()

    def _get_level_color(self, level: str) -> str:
        """ANSI color for a level, or "" when colors are off or the level is unremarkable."""
        if not self._use_colors:
            return ""

        level_upper = level.upper()
        if level_upper in ("ERROR", "CRITICAL", "FATAL"):
            return self.COLOR_RED
        elif level_upper in ("WARN", "WARNING"):
            return self.COLOR_YELLOW
        elif level_upper in ("DEBUG", "TRACE"):
            return self.COLOR_DIM
        else:
            return ""

    def _get_reset_color(self) -> str:
        return self.COLOR_RESET if self._use_colors else ""

    def format_record(self, record: LogRecord) -> str:
        if self.output_format == OutputFormat.JSON:
            return json.dumps(self._record_to_dict(record))
        else:
            return self._format_plain_text(record)

    def _format_plain_text(self, record: LogRecord) -> str:
        """Format record as plain text.

        Format: [TIMESTAMP] [LABEL] [LEVEL] MESSAGE (source=..., scenario=...)
        """
        color = self._get_level_color(record.level)
        reset = self._get_reset_color()
        level_str = f"{color}{record.level}{reset}"

        line = f"[{record.timestamp}] [{record.label}] [{level_str}] {record.message}"

        extras = []
        if record.source:
            extras.append(f"source={record.source}")
        if record.scenario_id:
            extras.append(f"scenario={record.scenario_id}")
        if extras:
            line += f" ({', '.join(extras)})"
        return line

    def format_records(self, records: List[LogRecord]) -> str:
        """One record per line (plain) or a JSON array (json)."""
        if self.output_format == OutputFormat.JSON:
            return json.dumps([self._record_to_dict(r) for r in records])
        else:
            return "\n".join(self.format_record(r) for r in records)

    def _record_to_dict(self, record: LogRecord) -> dict:
        return {
            "id": record.id,
            "timestamp": record.timestamp,
            "level": record.level,
            "label": record.label,
            "message": record.message,
            "context": record.context,
            "source": record.source,
            "scenarioId": record.scenario_id,
        }


def format_scenarios(
    scenarios: List[ScenarioSummary],
    output_format: Union[OutputFormat, str] = OutputFormat.PLAIN,
) -> str:
    """Render scenario summaries, most recent first, as text lines or a JSON array."""
    if isinstance(output_format, str):
        output_format = OutputFormat(output_format.lower())

    if output_format == OutputFormat.JSON:
        return json.dumps([s.model_dump(by_alias=True) for s in scenarios])

    lines = []
    for s in scenarios:
        levels = ", ".join(s.levels)
        lines.append(
            f"{s.scenario_id}  {s.log_count} logs  {s.first_log_at} -> {s.last_log_at}  [{levels}]"
        )
    return "\n".join(lines)
