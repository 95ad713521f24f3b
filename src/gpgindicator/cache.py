"""
Encrypted passphrase cache.

Maps key fingerprints to passphrases so the status engine can unlock
a re-locked key without asking again. The whole mapping is stored
as a single Fernet token (AES-128-CBC + HMAC-SHA256).

Storage layout:
    ~/.gpgindicator/cache/
    ├── cache.key          # Fernet key, mode 0600
    └── passphrases.enc    # Fernet token of the JSON mapping

Usage:
    cache = PassphraseCache(home)
    cache.set(key.fingerprint, passphrase)
    cache.get(key.fingerprint)
    cache.delete(key.fingerprint)
"""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger("gpgindicator.cache")

CACHE_DIR = "cache"
KEY_FILE = "cache.key"
STORE_FILE = "passphrases.enc"


class PassphraseCache:
    """Fingerprint to passphrase store, encrypted at rest.

    Every read and write goes through one lock, so concurrent
    read-modify-write cycles from the status loop and a manual unlock
    never lose an update.

    Args:
        home: Indicator home directory (~/.gpgindicator).
    """

    def __init__(self, home: Path) -> None:
        self._dir = Path(home).expanduser() / CACHE_DIR
        self._key_file = self._dir / KEY_FILE
        self._store_file = self._dir / STORE_FILE
        self._lock = threading.Lock()

    def get(self, fingerprint: str) -> Optional[str]:
        """Return the cached passphrase for ``fingerprint``, if any."""
        with self._lock:
            return self._load().get(fingerprint)

    def set(self, fingerprint: str, passphrase: str) -> None:
        """Store ``passphrase`` for ``fingerprint``."""
        with self._lock:
            entries = self._load()
            entries[fingerprint] = passphrase
            self._save(entries)
        logger.info("Cached passphrase for %s", fingerprint)

    def delete(self, fingerprint: str) -> bool:
        """Forget ``fingerprint``.

        Returns:
            True if an entry was removed.
        """
        with self._lock:
            entries = self._load()
            if entries.pop(fingerprint, None) is None:
                return False
            self._save(entries)
        logger.info("Deleted cached passphrase for %s", fingerprint)
        return True

    def has(self, fingerprint: str) -> bool:
        return self.get(fingerprint) is not None

    def keys(self) -> list[str]:
        """Fingerprints that have a cached passphrase."""
        with self._lock:
            return sorted(self._load())

    def clear(self) -> None:
        """Drop every cached passphrase."""
        with self._lock:
            self._save({})
        logger.info("Cleared passphrase cache")

    # -------------------------------------------------------------------
    # Internal helpers
    # -------------------------------------------------------------------

    def _fernet(self) -> Fernet:
        """Load the Fernet key, creating it (0600) on first use."""
        if not self._key_file.exists():
            self._dir.mkdir(parents=True, exist_ok=True)
            fd = os.open(self._key_file, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as f:
                f.write(Fernet.generate_key())
        return Fernet(self._key_file.read_bytes().strip())

    def _load(self) -> dict[str, str]:
        if not self._store_file.exists():
            return {}
        try:
            plain = self._fernet().decrypt(self._store_file.read_bytes())
            data = json.loads(plain)
        except (InvalidToken, ValueError, OSError) as exc:
            logger.error("Cannot read the passphrase cache, treating it as empty: %s", exc)
            return {}
        if not isinstance(data, dict):
            logger.error("Passphrase cache holds %s, not a mapping", type(data).__name__)
            return {}
        return {str(k): str(v) for k, v in data.items()}

    def _save(self, entries: dict[str, str]) -> None:
        token = self._fernet().encrypt(json.dumps(entries).encode("utf-8"))
        tmp_path = self._store_file.with_suffix(".tmp")
        tmp_path.write_bytes(token)
        os.chmod(tmp_path, 0o600)
        tmp_path.replace(self._store_file)
