"""
GnuPG adapter: key listing, agent queries, and unlocking.

Key records come from gpg's machine-readable colon listing:

    sec:u:255:22:C728B2BDC9756E05:...::cSC:::...
    fpr:::::::::BA6178432DE5A500A82820F6C728B2BDC9756E05:
    grp:::::::::D215899C4CB530235AA8B246C6517CDED9FE217A:
    uid:u::::...::Sophia Taylor <sophia@example.com>::...
    ssb:u:255:22:8CC2E9CFB3BE270C:...:::::s:::...
    fpr:::::::::B3D18BC755A7E11EC8F3A9028CC2E9CFB3BE270C:
    grp:::::::::CF1E56A855F60F97EAF98832039644B260803887:

Lock state comes from ``KEYINFO`` via ``gpg-connect-agent``; the
seventh token of the status line is ``1`` when the passphrase is
cached. Unlocking runs the Assuan handshake directly.
"""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import Iterable, Optional

from ..assuan.client import DEFAULT_TIMEOUT
from ..assuan.handshake import unlock
from ..assuan.transport import detect_transport
from ..models import Capability, KeyKind, KeyRecord

logger = logging.getLogger("gpgindicator.adapters.gpg")

_PRIMARY_RECORDS = ("pub", "sec")
_SUBKEY_RECORDS = ("sub", "ssb")
_CAPABILITY_LETTERS = {
    "s": Capability.SIGN,
    "e": Capability.ENCRYPT,
    "c": Capability.CERTIFY,
    "a": Capability.AUTHENTICATE,
}


class GpgError(Exception):
    """Raised when a gpg tool fails or prints something unexpected."""


class KeyNotFound(GpgError):
    """Raised when no listed key matches a key ID."""


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _parse_capabilities(field: str) -> frozenset[Capability]:
    # Lower-case letters are the key's own usage; upper-case ones
    # summarize the whole certificate.
    return frozenset(
        _CAPABILITY_LETTERS[letter] for letter in field if letter in _CAPABILITY_LETTERS
    )


def parse_key_records(text: str) -> list[KeyRecord]:
    """Parse ``gpg --with-colons --with-keygrip`` output.

    The first user ID is attached to the primary key only. Keys
    lacking a fingerprint or keygrip are dropped.

    Args:
        text: Raw colon-delimited listing.

    Returns:
        KeyRecords in listing order.
    """
    records: list[KeyRecord] = []
    current: Optional[dict] = None

    def flush() -> None:
        if current and current.get("fingerprint") and current.get("keygrip"):
            records.append(KeyRecord(**current))

    for line in text.splitlines():
        fields = line.split(":")
        tag = fields[0]

        if tag in _PRIMARY_RECORDS or tag in _SUBKEY_RECORDS:
            flush()
            current = {
                "kind": KeyKind.PRIMARY if tag in _PRIMARY_RECORDS else KeyKind.SUBORDINATE,
                "capabilities": _parse_capabilities(fields[11] if len(fields) > 11 else ""),
            }
        elif current is None or len(fields) < 10:
            continue
        elif tag == "fpr" and "fingerprint" not in current:
            current["fingerprint"] = fields[9]
        elif tag == "grp" and "keygrip" not in current:
            current["keygrip"] = fields[9]
        elif tag == "uid" and current["kind"] is KeyKind.PRIMARY and "user_id" not in current:
            current["user_id"] = fields[9]

    flush()
    return records


def resolve_key(key_id: str, records: Iterable[KeyRecord]) -> KeyRecord:
    """Find the key a (possibly abbreviated) key ID refers to.

    Short and long key IDs are suffixes of the fingerprint, so a
    substring match covers every accepted form.

    Raises:
        KeyNotFound: If nothing matches.
    """
    needle = key_id.strip().upper()
    if needle:
        for record in records:
            if needle in record.fingerprint.upper():
                return record
    raise KeyNotFound(f"Can not find key with ID: {key_id}")


def parse_keyinfo(output: str) -> bool:
    """Decide from ``KEYINFO`` output whether the key is unlocked.

    Sample:
        S KEYINFO CB18328AD05158F97CC8F33682F7AD291F52CB08 D - - 1 P - - -
        OK

    Raises:
        GpgError: On an ``ERR`` answer or an unexpected line shape.
    """
    lines = [line for line in output.splitlines() if line.strip()]
    status = next((line for line in lines if line.startswith("S KEYINFO ")), None)
    if status is None:
        raise GpgError(lines[0] if lines else "Empty KEYINFO output")

    tokens = status.split(" ")
    if len(tokens) != 11:
        raise GpgError("Fail to parse KEYINFO output")
    return tokens[6] == "1"


# ---------------------------------------------------------------------------
# Backend
# ---------------------------------------------------------------------------

class GpgBackend:
    """Talks to the installed GnuPG tools and agent.

    Args:
        agent_socket: Agent socket path; asked from gpgconf when None.
        timeout: Bound on each agent read during unlocking.
        gpg: Name or path of the gpg executable.
    """

    def __init__(
        self,
        agent_socket: Optional[Path] = None,
        timeout: float = DEFAULT_TIMEOUT,
        gpg: str = "gpg",
    ) -> None:
        self._agent_socket = agent_socket
        self._timeout = timeout
        self._gpg = gpg

    def list_key_records(self) -> list[KeyRecord]:
        """List every secret key and subkey of the current user."""
        # --fingerprint twice prints subkey fingerprints as well
        output = self._run(
            [
                self._gpg,
                "--batch",
                "--list-secret-keys",
                "--with-colons",
                "--fingerprint",
                "--fingerprint",
                "--with-keygrip",
            ]
        )
        return parse_key_records(output)

    def resolve_key(
        self, key_id: str, records: Optional[list[KeyRecord]] = None
    ) -> KeyRecord:
        """Resolve ``key_id``, listing keys unless ``records`` is given."""
        if records is None:
            records = self.list_key_records()
        return resolve_key(key_id, records)

    def is_key_unlocked(self, keygrip: str) -> bool:
        """Ask the agent whether the passphrase for ``keygrip`` is cached."""
        output = self._run(["gpg-connect-agent"], stdin=f"KEYINFO {keygrip}\n")
        return parse_keyinfo(output)

    def agent_socket_path(self) -> Path:
        """The agent socket, from config or ``gpgconf``."""
        if self._agent_socket is not None:
            return Path(self._agent_socket).expanduser()
        output = self._run(["gpgconf", "--list-dirs", "agent-socket"]).strip()
        if not output:
            raise GpgError("gpgconf did not report an agent socket")
        return Path(output)

    def unlock_key(self, keygrip: str, passphrase: str) -> None:
        """Unlock ``keygrip`` through the Assuan handshake."""
        target = detect_transport(self.agent_socket_path())
        unlock(target, keygrip, passphrase, timeout=self._timeout)

    def _run(self, cmd: list[str], stdin: str = "") -> str:
        """Run a gpg tool and return its stdout.

        Raises:
            GpgError: If the tool is missing, times out or exits non-zero.
        """
        try:
            result = subprocess.run(
                cmd, input=stdin, capture_output=True, text=True, timeout=30,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            raise GpgError(f"Cannot run {cmd[0]}: {exc}") from exc
        if result.returncode != 0:
            raise GpgError(f"{cmd[0]} exited with {result.returncode}: {result.stderr.strip()}")
        return result.stdout
