"""Read commit-signing settings from a folder's git configuration.

Usage:
    from gpgindicator.adapters import git
    if git.is_signing_activated(folder):
        key_id = git.get_signing_key(folder)
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Union

logger = logging.getLogger("gpgindicator.adapters.git")

# `git config --get` exits 1 when the key is simply not set.
_UNSET = 1


class GitError(Exception):
    """Raised when git cannot answer a configuration query."""


def _git_config(folder: Union[str, Path], key: str) -> subprocess.CompletedProcess:
    """Run ``git config --get <key>`` inside ``folder``."""
    try:
        return subprocess.run(
            ["git", "config", "--get", key],
            cwd=str(folder),
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        raise GitError(f"Cannot run git in {folder}: {exc}") from exc


def from_git_boolean(value: str) -> bool:
    """Interpret a git boolean; anything unrecognized counts as false."""
    return value.strip().lower() in ("true", "yes", "on", "1")


def is_signing_activated(folder: Union[str, Path]) -> bool:
    """Whether ``commit.gpgSign`` is on for ``folder``.

    Raises:
        GitError: If git fails for a reason other than the key being unset.
    """
    result = _git_config(folder, "commit.gpgSign")
    if result.returncode == _UNSET:
        return False
    if result.returncode != 0:
        raise GitError(f"Fail to test whether signing is activated: {result.stderr.strip()}")
    return from_git_boolean(result.stdout)


def get_signing_key(folder: Union[str, Path]) -> str:
    """The ``user.signingKey`` of ``folder``, normalized.

    Git and GnuPG accept a ``0x`` prefix and a trailing ``!`` (exact
    subkey match); both are stripped so the result can be matched
    against fingerprints.

    Raises:
        GitError: If no signing key is configured or git fails.
    """
    result = _git_config(folder, "user.signingKey")
    if result.returncode != 0:
        raise GitError(f"Fail to get signing key: {result.stderr.strip() or 'not configured'}")

    key_id = result.stdout.strip()
    if key_id.lower().startswith("0x"):
        key_id = key_id[2:]
    key_id = key_id.rstrip("!")
    return key_id.upper()
