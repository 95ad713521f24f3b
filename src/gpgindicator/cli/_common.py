"""Shared utilities for all CLI command modules.

Provides the Rich console, engine construction, and status
formatting helpers.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from rich.console import Console

from .. import INDICATOR_HOME
from ..cache import PassphraseCache
from ..config import load_config, resolve_home, setup_logging
from ..engine import KeyStatusEngine
from ..messages import Notice
from ..models import KeyRecord, StatusEvent

console = Console()
err_console = Console(stderr=True)


def build_engine(home: str, notify=None) -> KeyStatusEngine:
    """Load config from ``home`` and wire up a status engine.

    Args:
        home: Indicator home directory.
        notify: Notice sink; defaults to printing on the console.

    Returns:
        KeyStatusEngine ready for update_folders().
    """
    home_path = resolve_home(Path(home))
    config = load_config(home_path)
    setup_logging(home_path, config.log_level)
    return KeyStatusEngine(
        config,
        cache=PassphraseCache(home_path),
        notify=notify or print_notice,
    )


def print_notice(notice: Notice) -> None:
    console.print(f"[cyan]{notice.value}[/]")


def print_notice_stderr(notice: Notice) -> None:
    err_console.print(f"[cyan]{notice.value}[/]")


def key_label(key: KeyRecord) -> str:
    """Fingerprint plus user ID when known."""
    if key.user_id:
        return f"{key.fingerprint} [dim]({key.user_id})[/]"
    return key.fingerprint


def lock_icon(event: Optional[StatusEvent]) -> str:
    """Rich markup for a status event."""
    if event is None:
        return "[dim]NO KEY[/]"
    if event.is_locked:
        return "[bold red]LOCKED[/]"
    return "[bold green]UNLOCKED[/]"


def default_folders(folders: tuple[str, ...]) -> list[str]:
    """Absolute folder paths, defaulting to the working directory."""
    return [str(Path(f).expanduser().resolve()) for f in (folders or (".",))]


__all__ = [
    "INDICATOR_HOME",
    "build_engine",
    "console",
    "default_folders",
    "err_console",
    "key_label",
    "lock_icon",
    "print_notice",
    "print_notice_stderr",
]
