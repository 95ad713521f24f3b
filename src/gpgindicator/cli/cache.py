"""Passphrase cache commands: list, forget, clear."""

from __future__ import annotations

import sys
from pathlib import Path

import click

from ._common import INDICATOR_HOME, console


def register_cache_commands(main: click.Group) -> None:
    """Register the cache command group."""

    @main.group()
    def cache():
        """Cached passphrases used for automatic unlocking."""

    def _open(home: str):
        from ..cache import PassphraseCache
        from ..config import resolve_home

        return PassphraseCache(resolve_home(Path(home)))

    @cache.command("list")
    @click.option("--home", default=INDICATOR_HOME, type=click.Path())
    def cache_list(home: str):
        """List fingerprints that have a cached passphrase."""
        fingerprints = _open(home).keys()
        if not fingerprints:
            console.print("\n  [dim]Passphrase cache is empty.[/]\n")
            return
        console.print()
        for fingerprint in fingerprints:
            console.print(f"  [cyan]{fingerprint}[/]")
        console.print()

    @cache.command("forget")
    @click.argument("fingerprint")
    @click.option("--home", default=INDICATOR_HOME, type=click.Path())
    def cache_forget(fingerprint: str, home: str):
        """Remove the cached passphrase of FINGERPRINT."""
        if not _open(home).delete(fingerprint.upper()):
            console.print(f"[yellow]No cached passphrase for {fingerprint}.[/]")
            sys.exit(1)
        console.print(f"[green]Forgot[/] {fingerprint.upper()}")

    @cache.command("clear")
    @click.option("--home", default=INDICATOR_HOME, type=click.Path())
    @click.confirmation_option(prompt="Drop every cached passphrase?")
    def cache_clear(home: str):
        """Drop every cached passphrase."""
        _open(home).clear()
        console.print("[green]Passphrase cache cleared.[/]")
