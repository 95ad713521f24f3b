"""Unlock and watch commands."""

from __future__ import annotations

import sys
import time
from typing import Optional

import click

from ._common import (
    INDICATOR_HOME,
    build_engine,
    console,
    default_folders,
    key_label,
    lock_icon,
)


def register_unlock_commands(main: click.Group) -> None:
    """Register the unlock and watch commands."""

    @main.command()
    @click.argument("folder", required=False, type=click.Path(exists=True, file_okay=False))
    @click.option("--home", default=INDICATOR_HOME, type=click.Path())
    @click.option(
        "--remember", is_flag=True,
        help="Cache the passphrase for automatic unlocking.",
    )
    def unlock(folder: Optional[str], home: str, remember: bool):
        """Unlock the signing key of FOLDER (default: current directory)."""
        from ..assuan import AssuanError
        from ..adapters.gpg import GpgError
        from ..engine import NoActiveFolder, NoKeyForCurrentFolder

        engine = build_engine(home)
        if remember:
            engine.set_passphrase_cache_enabled(True)
        path = default_folders((folder,) if folder else ())[0]
        engine.update_folders([path])
        engine.change_active_folder(path)

        key = engine.get_current_key()
        if key is None:
            console.print(f"[bold red]No signing key for {path}.[/]")
            sys.exit(1)
        if engine.state.last_event is not None and not engine.state.last_event.is_locked:
            console.print(f"\n  [green]Already unlocked:[/] {key_label(key)}\n")
            return

        passphrase = click.prompt(f"Passphrase for {key.short_id}", hide_input=True)
        try:
            engine.unlock_current_key(passphrase, remember=remember)
        except (NoActiveFolder, NoKeyForCurrentFolder) as exc:
            console.print(f"[bold red]{exc}[/]")
            sys.exit(1)
        except (AssuanError, GpgError) as exc:
            console.print(f"[bold red]Unlock failed:[/] {exc}")
            sys.exit(1)

        engine.sync_status()
        console.print(f"\n  {lock_icon(engine.state.last_event)} {key_label(key)}")
        if remember:
            console.print("  [dim]Passphrase cached.[/]")
        console.print()

    @main.command()
    @click.argument("folders", nargs=-1, type=click.Path(exists=True, file_okay=False))
    @click.option("--home", default=INDICATOR_HOME, type=click.Path())
    @click.option("--interval", default=None, type=click.FloatRange(min=0, min_open=True),
                  help="Seconds between checks (default: from config).")
    def watch(folders: tuple[str, ...], home: str, interval: Optional[float]):
        """Watch the lock state until interrupted.

        All FOLDERS are resolved; the first one is tracked.
        """
        engine = build_engine(home)
        if interval is not None:
            engine.update_sync_interval(interval)

        def show(event):
            label = key_label(event.key) if event is not None else ""
            console.print(f"  {time.strftime('%H:%M:%S')} {lock_icon(event)} {label}")

        engine.register_update_function(show)
        paths = default_folders(folders)
        engine.update_folders(paths)

        console.print(f"\n  [green]Watching[/] [cyan]{paths[0]}[/] every {engine.sync_interval}s")
        console.print("  [dim]Ctrl+C to stop[/]\n")
        engine.change_active_folder(paths[0])
        engine.start()
        try:
            while True:
                time.sleep(1)
        except KeyboardInterrupt:
            pass
        finally:
            engine.dispose(wait=True)
            console.print("\n  [dim]Stopped.[/]\n")
