"""
Shared utilities for CLI commands.

Provides configuration lookup and consistent console output for all
commands.
"""

import logging
import sys
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from releasekit.config.parser import CONFIG_FILE_NAME, ReleaseConfig, parse_config
from releasekit.core.exceptions import ConfigError

logger = logging.getLogger(__name__)


# ============================================================================
# Configuration Management
# ============================================================================


def resolve_config_path(
    config: Optional[Path] = None, project_root: Optional[Path] = None
) -> Path:
    """
    Locate the configuration file.

    Args:
        config: Explicit --config path
        project_root: Explicit --project-root (default: current directory)

    Returns:
        Path to the configuration file

    Raises:
        ConfigError: If no configuration file exists
    """
    if config:
        path = Path(config)
    else:
        path = resolve_project_root(project_root) / CONFIG_FILE_NAME

    if not path.exists():
        raise ConfigError(
            f"Configuration file not found: {path}. "
            f"Create {CONFIG_FILE_NAME} or pass --config."
        )
    return path


def load_release_config(args) -> ReleaseConfig:
    """Load the configuration named by the global CLI options."""
    path = resolve_config_path(args.config, args.project_root)
    project_root = args.project_root.resolve() if args.project_root else None
    return parse_config(path, project_root=project_root)


# ============================================================================
# User Interface / Output Formatting
# ============================================================================


def print_box(text: str, width: int = 70, char: str = "="):
    """Print text in a box for emphasis."""
    print(char * width)
    print(text)
    print(char * width)


def format_table(headers: Sequence[str], rows: Iterable[Sequence[str]]) -> str:
    """Format rows as a left-aligned plain text table."""
    rows = [[str(cell) for cell in row] for row in rows]
    widths = [len(h) for h in headers]
    for row in rows:
        widths = [max(w, len(cell)) for w, cell in zip(widths, row)]

    lines: List[str] = []
    lines.append("  ".join(h.ljust(w) for h, w in zip(headers, widths)).rstrip())
    lines.append("  ".join("-" * w for w in widths))
    for row in rows:
        lines.append("  ".join(c.ljust(w) for c, w in zip(row, widths)).rstrip())
    return "\n".join(lines)


def print_error(message: str, details: Optional[str] = None):
    """
    Print error message to stderr in consistent format.

    Args:
        message: Main error message
        details: Optional additional details
    """
    print(f"ERROR: {message}", file=sys.stderr)
    if details:
        print(f"  {details}", file=sys.stderr)


# ============================================================================
# Path Utilities
# ============================================================================


def resolve_project_root(path: Optional[Path] = None) -> Path:
    """
    Resolve project root directory.

    Args:
        path: Optional path (defaults to current directory)

    Returns:
        Resolved absolute path
    """
    if path is None:
        path = Path.cwd()
    return Path(path).resolve()
