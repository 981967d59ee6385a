"""
Console output helpers for the assetpub CLI.

Diagnostics go to stderr through a themed rich console so that stdout only
carries command output (such as the ``ls`` listing).

Environment handling:
- Respects NO_COLOR and FORCE_COLOR environment variables
- Falls back to plain text when stderr is not a terminal
"""

from __future__ import annotations

import os
from typing import Literal

from rich.console import Console
from rich.markup import escape
from rich.theme import Theme

LogLevel = Literal["verbose", "info", "error"]

LOG_LEVELS: dict[str, int] = {
    "verbose": 1,
    "info": 2,
    "error": 3,
}

ASSETPUB_THEME = Theme(
    {
        "verbose": "#D8DEE9",
        "info": "#88C0D0",
        "success": "#A3BE8C",
        "error": "#BF616A bold",
    }
)

console = Console(
    theme=ASSETPUB_THEME,
    stderr=True,
    force_terminal=os.environ.get("FORCE_COLOR") is not None,
    no_color=os.environ.get("NO_COLOR") is not None,
    highlight=False,
)

# Plain console for command output
out = Console(highlight=False, soft_wrap=True)

_log_threshold: LogLevel = "info"


def set_log_threshold(threshold: LogLevel) -> None:
    global _log_threshold
    _log_threshold = threshold


def get_log_threshold() -> LogLevel:
    return _log_threshold


def log(level: LogLevel, message: str) -> None:
    """Print ``message`` to stderr if ``level`` passes the current threshold."""
    if LOG_LEVELS[level] >= LOG_LEVELS[_log_threshold]:
        console.print(f"[{level}]{level:<7}[/{level}]: {escape(message)}")


def error(message: str) -> None:
    console.print(f"[error]✗ {escape(message)}[/error]")


def success(message: str) -> None:
    console.print(f"[success]✓ {escape(message)}[/success]")
