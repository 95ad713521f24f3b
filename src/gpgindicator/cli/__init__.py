"""
GPG Indicator CLI: key lock status from the command line.

The main Click group is defined here and every command module
registers its commands through a register function.

Entry point: gpgindicator.cli:main
"""

from __future__ import annotations

import click

from .. import __version__


@click.group()
@click.version_option(version=__version__, prog_name="gpgindicator")
def main():
    """GPG Indicator: is your signing key unlocked?"""


# ---------------------------------------------------------------------------
# Register all command groups/commands from modular files
# ---------------------------------------------------------------------------

from .status import register_status_commands
from .unlock import register_unlock_commands
from .cache import register_cache_commands

register_status_commands(main)
register_unlock_commands(main)
register_cache_commands(main)
