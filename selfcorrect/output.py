"""
Rich Output Utilities
=====================

Terminal output for the selfcorrect CLI using the Rich library: one themed
console, message helpers, tables and logging integration.
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.rule import Rule
from rich.status import Status
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme


# =============================================================================
# Color Scheme & Theme
# =============================================================================

@dataclass(frozen=True)
class LearningColors:
    """Palette using hex for truecolor terminal support."""
    ink: str = "#E6E6E6"       # primary text
    dim: str = "#9AA4B2"       # muted text
    accent: str = "#A78BFA"    # headers and numbers
    info: str = "#22D3EE"      # informational cyan
    steel: str = "#94A3B8"     # keys
    ok: str = "#22C55E"        # success green
    warn: str = "#FBBF24"      # warning yellow
    err: str = "#EF4444"       # error red


def learning_theme(colors: LearningColors = LearningColors()) -> Theme:
    """
    Rich Theme for the selfcorrect CLI.

    Style names are semantic:
      console.print("...", style="sc.ok")
    """
    return Theme(
        {
            "sc.accent": f"bold {colors.accent}",
            "sc.border": f"{colors.info}",
            "sc.muted": f"{colors.dim}",
            "sc.text": f"{colors.ink}",

            # Status
            "sc.ok": f"bold {colors.ok}",
            "sc.warn": f"bold {colors.warn}",
            "sc.err": f"bold {colors.err}",
            "sc.info": f"{colors.info}",

            # Data display
            "sc.key": f"{colors.steel}",
            "sc.value": f"{colors.ink}",
            "sc.number": f"bold {colors.accent}",
            "sc.path": f"{colors.info}",

            "sc.table.header": f"bold {colors.info}",

            # Severity
            "sc.severity.high": f"bold {colors.err}",
            "sc.severity.medium": f"{colors.warn}",
            "sc.severity.low": f"{colors.dim}",
        }
    )


# =============================================================================
# Unicode / ASCII Fallbacks
# =============================================================================

def _can_use_unicode() -> bool:
    """Check if the terminal can encode the icons we use."""
    if os.name != "nt":
        return True
    try:
        encoding = sys.stdout.encoding or "utf-8"
        "✓✗•".encode(encoding)
        return True
    except (UnicodeEncodeError, LookupError, AttributeError):
        return False


_UNICODE_ICONS = {
    "check": "✓",
    "cross": "✗",
    "warning": "⚠️",
    "info": "ℹ",
    "bullet": "•",
    "arrow_right": "→",
    "clock": "\U0001F551",
}

_ASCII_ICONS = {
    "check": "[OK]",
    "cross": "[X]",
    "warning": "[!]",
    "info": "[i]",
    "bullet": "-",
    "arrow_right": "->",
    "clock": "[T]",
}

_ICONS = _UNICODE_ICONS if _can_use_unicode() else _ASCII_ICONS


def icon(name: str) -> str:
    """Get an icon by name, using ASCII fallback if needed."""
    return _ICONS.get(name, "")


# =============================================================================
# Global Console Instance
# =============================================================================

console = Console(theme=learning_theme())


# =============================================================================
# Basic Message Functions
# =============================================================================

def print_success(message: str) -> None:
    """Print a success message with checkmark."""
    console.print(f"[sc.ok]{icon('check')} {message}[/]")


def print_error(message: str) -> None:
    """Print an error message with X."""
    console.print(f"[sc.err]{icon('cross')} {message}[/]")


def print_warning(message: str) -> None:
    console.print(f"[sc.warn]{icon('warning')} {message}[/]")


def print_info(message: str) -> None:
    console.print(f"[sc.info]{icon('info')} {message}[/]")


def print_muted(message: str) -> None:
    console.print(f"[sc.muted]{message}[/]")


# =============================================================================
# Headers & Data Display
# =============================================================================

def print_header(title: str, style: str = "sc.accent") -> None:
    """Print a prominent section header with rule lines."""
    console.print()
    console.print(Rule(f"[{style}]{title}[/]", style=style))
    console.print()


def print_subheader(title: str, style: str = "sc.info") -> None:
    """Print a smaller subsection header."""
    console.print(f"\n[{style}]{icon('arrow_right')} {title}[/]")


def print_key_value(key: str, value: Any, *, indent: int = 0) -> None:
    """Print a key-value pair."""
    prefix = "  " * indent
    console.print(f"{prefix}[sc.key]{key}:[/] [sc.value]{value}[/]")


def print_key_value_table(data: Dict[str, Any], *, title: Optional[str] = None) -> None:
    """Print multiple key-value pairs in a borderless table, optionally boxed."""
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Key", style="sc.key")
    table.add_column("Value", style="sc.value")

    for key, value in data.items():
        table.add_row(key, str(value))

    if title:
        console.print(Panel(table, title=f"[bold]{title}[/]", border_style="sc.border"))
    else:
        console.print(table)


def print_json_data(data: Any, *, title: Optional[str] = None) -> None:
    """Print JSON data with syntax highlighting."""
    syntax = Syntax(json.dumps(data, indent=2, default=str), "json", theme="monokai")
    if title:
        console.print(Panel(syntax, title=f"[bold]{title}[/]", border_style="sc.border"))
    else:
        console.print(syntax)


def create_table(
    *,
    title: Optional[str] = None,
    columns: Optional[List[str]] = None,
    show_header: bool = True,
) -> Table:
    """Create a styled Rich Table."""
    table = Table(
        title=title,
        show_header=show_header,
        header_style="sc.table.header",
        border_style="sc.border",
        title_style="sc.accent",
    )
    for col in columns or []:
        table.add_column(col)
    return table


def severity_style(severity: str) -> str:
    return f"sc.severity.{severity}" if severity in ("low", "medium", "high") else "sc.text"


# =============================================================================
# Spinners
# =============================================================================

@contextmanager
def spinner(message: str, *, style: str = "sc.accent") -> Iterator[Status]:
    """
    Context manager for showing a spinner during long operations.

    Usage:
        with spinner("Loading learning data..."):
            await system.initialize()
    """
    with console.status(f"[{style}]{message}[/]", spinner="dots") as status:
        yield status


# =============================================================================
# Logging Integration
# =============================================================================

def setup_rich_logging(level: int = logging.INFO) -> None:
    """
    Configure Python logging to use Rich for log output.

    Usage:
        setup_rich_logging()
        logging.info("This will be pretty!")
    """
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(
            console=console,
            show_path=False,
            markup=False,
            rich_tracebacks=True,
        )],
    )
