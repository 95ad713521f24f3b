"""
GPG Indicator: know whether your signing key is unlocked.

Tracks which signing key each project folder is configured to use,
asks the local gpg-agent whether that key is unlocked, and unlocks
it on demand (or automatically from an encrypted passphrase cache).
"""

import os

__version__ = "0.1.0"

INDICATOR_HOME = os.environ.get("GPGINDICATOR_HOME", "~/.gpgindicator")
