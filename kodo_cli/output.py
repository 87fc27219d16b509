"""Styled terminal lines for kodo.

Every user-facing line of an upload report goes through these helpers:

    from kodo_cli.output import success, error, info, warn, detail, link

    success("photos/a.jpg -> uploads/photos/a.jpg")
    link("https://cdn.example.com/uploads/photos/a.jpg")
    error("photos/b.jpg -> uploads/photos/b.jpg failed: permission denied")
    info("Found 65 file(s) in photos, uploading with 22 worker(s)")
    warn("Uploaded directory photos: 64 succeeded, 1 failed, 3.20s elapsed")
    detail("  ... and 55 more file(s)")

Pass dry_run=True to mark a planned action:

    info("Would upload 2 file(s) using 2 worker(s)", dry_run=True)
    # → [DRY RUN] Would upload 2 file(s) using 2 worker(s)

Upload workers report from several threads at once. Each helper writes its
line with a single click.echo call, so concurrent lines never interleave
mid-line.
"""

from __future__ import annotations

import sys
from typing import NamedTuple, TextIO

import click


class _LineKind(NamedTuple):
    symbol: str
    color: str
    to_stderr: bool


_KINDS: dict[str, _LineKind] = {
    "success": _LineKind("✓", "green", False),
    "info": _LineKind("→", "blue", False),
    "detail": _LineKind(" ", "bright_black", False),
    "link": _LineKind("\U0001f517", "cyan", False),
    "warn": _LineKind("⚠", "yellow", True),
    "error": _LineKind("✗", "red", True),
}


def _emit(kind: str, message: str, file: TextIO | None, dry_run: bool = False) -> None:
    """Write one styled line of the given kind.

    Lines of stderr kinds go to stderr unless an explicit stream is given;
    the rest go to stdout (click.echo's default).
    """
    line_kind = _KINDS[kind]
    if dry_run:
        message = f"[DRY RUN] {message}"
    if file is None and line_kind.to_stderr:
        file = sys.stderr
    prefix = click.style(line_kind.symbol, fg=line_kind.color)
    click.echo(f"{prefix} {click.style(message, fg=line_kind.color)}", file=file)


def success(message: str, *, file: TextIO | None = None, dry_run: bool = False) -> None:
    """Report a completed upload or command (✓, green)."""
    _emit("success", message, file, dry_run)


def info(message: str, *, file: TextIO | None = None, dry_run: bool = False) -> None:
    """Report progress or a planned action (→, blue)."""
    _emit("info", message, file, dry_run)


def detail(message: str, *, file: TextIO | None = None, dry_run: bool = False) -> None:
    """Print a dimmed secondary line, such as elapsed time or a setting source."""
    _emit("detail", message, file, dry_run)


def warn(message: str, *, file: TextIO | None = None, dry_run: bool = False) -> None:
    """Report a batch that finished with failures (⚠, yellow, stderr)."""
    _emit("warn", message, file, dry_run)


def error(message: str, *, file: TextIO | None = None, dry_run: bool = False) -> None:
    """Report a failed file or a fatal error (✗, red, stderr).

    Example:
        >>> error("b.jpg -> uploads/b.jpg failed: permission denied")
        ✗ b.jpg -> uploads/b.jpg failed: permission denied
    """
    _emit("error", message, file, dry_run)


def link(url: str, *, file: TextIO | None = None) -> None:
    """Print the download URL of an uploaded object (🔗, cyan)."""
    _emit("link", url, file)
