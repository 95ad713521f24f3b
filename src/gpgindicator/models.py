"""
Pydantic models for keys, status events, and indicator configuration.

A KeyRecord is what gpg tells us about one (sub)key. A StatusEvent
is what observers hear about the active folder's key. Both are
immutable: a refresh replaces them, it never edits them.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class KeyKind(str, Enum):
    """Position of a key in its OpenPGP certificate."""

    PRIMARY = "primary"
    SUBORDINATE = "subordinate"


class Capability(str, Enum):
    """What a key is allowed to do."""

    SIGN = "sign"
    ENCRYPT = "encrypt"
    CERTIFY = "certify"
    AUTHENTICATE = "authenticate"


class KeyRecord(BaseModel):
    """One key as listed by gpg.

    The fingerprint is the stable identity (used for folder maps and
    the passphrase cache); the keygrip is only needed to talk to the
    agent.
    """

    model_config = ConfigDict(frozen=True)

    kind: KeyKind
    capabilities: frozenset[Capability] = Field(default_factory=frozenset)
    fingerprint: str
    keygrip: str
    user_id: Optional[str] = None

    @property
    def can_sign(self) -> bool:
        """Whether this key carries the signing capability."""
        return Capability.SIGN in self.capabilities

    @property
    def short_id(self) -> str:
        """The conventional 16 hex digit long key ID."""
        return self.fingerprint[-16:]


@dataclass(frozen=True, eq=False)
class StatusEvent:
    """Lock state of the active folder's key, as pushed to observers.

    Two events are equal when they name the same fingerprint with the
    same lock state. "No key" is represented by ``None``, never by an
    event, so it never compares equal to one.
    """

    key: KeyRecord
    is_locked: bool

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, StatusEvent):
            return NotImplemented
        return (
            self.key.fingerprint == other.key.fingerprint
            and self.is_locked == other.is_locked
        )

    def __hash__(self) -> int:
        return hash((self.key.fingerprint, self.is_locked))


class IndicatorConfig(BaseModel):
    """Persistent configuration, loaded from config/config.yaml."""

    sync_interval: float = Field(default=30, gt=0, description="Seconds between status checks")
    initial_delay: float = Field(default=1, ge=0, description="Seconds before the first check")
    enable_passphrase_cache: bool = False
    agent_socket: Optional[Path] = Field(
        default=None, description="gpg-agent socket; asked from gpgconf when unset"
    )
    agent_timeout: float = Field(default=10, gt=0, description="Bound on each agent read")
    workspace_trusted: bool = True
    untrusted_folder: Optional[Path] = Field(
        default=None, description="Folder tracked instead of the real one when untrusted"
    )
    log_level: str = "INFO"
