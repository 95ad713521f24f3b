"""Status commands: status, keys, agent."""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click
from rich.panel import Panel
from rich.table import Table

from ._common import (
    INDICATOR_HOME,
    build_engine,
    console,
    default_folders,
    key_label,
    lock_icon,
    print_notice_stderr,
)


def register_status_commands(main: click.Group) -> None:
    """Register the status, keys and agent commands."""

    @main.command()
    @click.argument("folders", nargs=-1, type=click.Path(exists=True, file_okay=False))
    @click.option("--home", default=INDICATOR_HOME, type=click.Path())
    @click.option("--json-out", is_flag=True, help="Output as machine-readable JSON.")
    def status(folders: tuple[str, ...], home: str, json_out: bool):
        """Show the signing key and lock state of each folder.

        Defaults to the current directory.
        """
        engine = build_engine(home, notify=print_notice_stderr if json_out else None)
        paths = default_folders(folders)
        engine.update_folders(paths)

        rows = []
        for folder in paths:
            engine.change_active_folder(folder)
            key = engine.get_current_key()
            event = None
            if key is not None and engine.state.last_check_ok:
                event = engine.state.last_event
            rows.append((folder, key, event))
        engine.dispose()

        if json_out:
            payload = [
                {
                    "folder": folder,
                    "fingerprint": key.fingerprint if key else None,
                    "keygrip": key.keygrip if key else None,
                    "user_id": key.user_id if key else None,
                    "locked": event.is_locked if event else None,
                }
                for folder, key, event in rows
            ]
            click.echo(json.dumps(payload, indent=2))
            return

        table = Table(title="Signing keys", show_lines=False)
        table.add_column("Folder", style="cyan")
        table.add_column("Key")
        table.add_column("State", justify="center")
        for folder, key, event in rows:
            if key is None:
                table.add_row(folder, "[dim]signing disabled or key not found[/]", lock_icon(None))
            elif event is None:
                table.add_row(folder, key_label(key), "[yellow]UNKNOWN[/]")
            else:
                table.add_row(folder, key_label(key), lock_icon(event))
        console.print()
        console.print(table)
        console.print()

    @main.command()
    @click.option("--home", default=INDICATOR_HOME, type=click.Path())
    def keys(home: str):
        """List secret keys with their capabilities and keygrips."""
        from ..adapters.gpg import GpgBackend, GpgError
        from ..config import load_config

        config = load_config(Path(home))
        backend = GpgBackend(config.agent_socket, config.agent_timeout)
        try:
            records = backend.list_key_records()
        except GpgError as exc:
            console.print(f"[bold red]Cannot list keys:[/] {exc}")
            sys.exit(1)

        if not records:
            console.print("\n  [dim]No secret keys.[/]\n")
            return

        table = Table(title=f"Secret keys ({len(records)})")
        table.add_column("Kind", style="bold")
        table.add_column("Fingerprint", style="cyan")
        table.add_column("Keygrip", style="dim")
        table.add_column("Usage")
        table.add_column("User ID")
        for record in records:
            usage = "".join(sorted(c.value[0].upper() for c in record.capabilities))
            table.add_row(
                record.kind.value,
                record.fingerprint,
                record.keygrip,
                usage or "-",
                record.user_id or "",
            )
        console.print()
        console.print(table)
        console.print()

    @main.command()
    @click.option("--home", default=INDICATOR_HOME, type=click.Path())
    def agent(home: str):
        """Show how gpg-agent is reached."""
        from ..adapters.gpg import GpgBackend, GpgError
        from ..assuan import MalformedTransportFile, TcpTarget, detect_transport
        from ..config import load_config

        config = load_config(Path(home))
        backend = GpgBackend(config.agent_socket, config.agent_timeout)
        try:
            path = backend.agent_socket_path()
            target = detect_transport(path)
        except (GpgError, MalformedTransportFile) as exc:
            console.print(f"[bold red]Cannot locate gpg-agent:[/] {exc}")
            sys.exit(1)

        if isinstance(target, TcpTarget):
            body = (
                f"Transport: [cyan]TCP[/]\n"
                f"Address:   {target.host}:{target.port}\n"
                f"Via:       {path}"
            )
        else:
            body = f"Transport: [cyan]Unix socket[/]\nPath:      {target.path}"
        console.print()
        console.print(Panel(body, title="gpg-agent", border_style="bright_blue"))
        console.print()
