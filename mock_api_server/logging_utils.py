"""Structured logging helpers for the mock server."""

from __future__ import annotations

import logging
import sys
from enum import Enum
from io import StringIO
from typing import Any

import structlog
from rich.console import Console
from rich.text import Text

LOGGER_NAME = "mock_api_server"
LOG_FORMAT_ENV_VAR = "CONSOLE_OUTPUT_FORMAT"
HIDDEN_KEYS = ("color_message", "stack", "exception")


class LogFormat(str, Enum):
    """Renderers available to configure_logging."""

    CONSOLE = "console"
    PLAIN = "plain"
    JSON = "json"


# Generic console output names accepted for CONSOLE_OUTPUT_FORMAT
_FORMAT_ALIASES = {"auto": LogFormat.CONSOLE, "rich": LogFormat.CONSOLE}


def resolve_log_format(value: str) -> LogFormat:
    """Map a CLI/env value to a LogFormat; ``auto`` and ``rich`` mean console."""

    normalized = value.strip().lower()
    if normalized in _FORMAT_ALIASES:
        return _FORMAT_ALIASES[normalized]
    try:
        return LogFormat(normalized)
    except ValueError:
        choices = ", ".join([*(item.value for item in LogFormat), *_FORMAT_ALIASES])
        raise ValueError(f"Unknown log format {value!r}; expected one of: {choices}") from None


class RichConsoleRenderer:
    """structlog renderer printing one colored line per event via Rich."""

    def __init__(self, width: int = 200) -> None:
        self.width = width
        self.level_styles = {
            "debug": "dim cyan",
            "info": "cyan",
            "warning": "yellow",
            "error": "bold red",
            "critical": "bold white on red",
        }

    def __call__(self, logger: Any, name: str, event_dict: dict[str, Any]) -> str:
        timestamp = event_dict.pop("timestamp", "")
        level = event_dict.pop("level", "info")
        event = event_dict.pop("event", "")
        exception = event_dict.pop("exception", None)

        text = Text()
        text.append(timestamp, style="dim white")
        text.append(" ")
        text.append(f"[{level:<8}]", style=self.level_styles.get(level, "white"))
        text.append(" ")
        text.append(event, style="bold white")

        # Align key-value pairs after the event name
        padding = max(0, 32 - len(event))
        if padding > 0 and event_dict:
            text.append(" " * padding)

        items = [(key, value) for key, value in sorted(event_dict.items()) if key not in HIDDEN_KEYS]
        for index, (key, value) in enumerate(items):
            text.append(f"{key}=", style="dim white")
            text.append(str(value), style="bright_cyan")
            if index < len(items) - 1:
                text.append(" ")
        if exception:
            text.append("\n")
            text.append(str(exception), style="red")

        buffer = StringIO()
        console = Console(file=buffer, force_terminal=True, width=self.width, legacy_windows=False)
        console.print(text, end="")
        return buffer.getvalue()


def configure_logging(log_level: str, log_format: LogFormat = LogFormat.CONSOLE) -> structlog.stdlib.BoundLogger:
    """Configure structlog for console, plain or JSON output."""

    normalized_level = getattr(logging, log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=normalized_level,
        stream=sys.stdout,
        format="%(message)s",
        force=True,
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", key="timestamp"),
        structlog.processors.format_exc_info,
    ]

    if log_format == LogFormat.CONSOLE:
        processors.append(RichConsoleRenderer())
    elif log_format == LogFormat.PLAIN:
        # No colors, for CI and redirected output
        processors.append(structlog.dev.ConsoleRenderer(colors=False))
    else:  # json
        processors.append(structlog.processors.JSONRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(normalized_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    return structlog.get_logger(LOGGER_NAME)
