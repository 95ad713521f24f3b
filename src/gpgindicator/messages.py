"""User-facing notices raised by the status engine."""

from __future__ import annotations

from enum import Enum


class Notice(str, Enum):
    """Things worth telling the user, valued by their message text."""

    KEY_CHANGED_AND_AUTOMATICALLY_UNLOCKED = (
        "Key changed, and unlocked automatically using the previously stored passphrase."
    )
    KEY_RELOCKED_AND_AUTOMATICALLY_UNLOCKED = (
        "Key re-locked, and unlocked automatically using the previously stored passphrase."
    )
    KEY_AUTOMATICALLY_UNLOCKED = (
        "Key unlocked automatically using the previously stored passphrase."
    )
    KEY_CHANGED_BUT_AUTOMATIC_UNLOCK_FAILED = (
        "Key changed, but the stored passphrase for this key cannot unlock it. "
        "The passphrase has been deleted; unlock the key manually."
    )
    KEY_RELOCKED_BUT_AUTOMATIC_UNLOCK_FAILED = (
        "Key re-locked, and the stored passphrase cannot unlock it any more. "
        "The passphrase has been deleted; unlock the key manually."
    )
    KEY_AUTOMATIC_UNLOCK_FAILED = (
        "The stored passphrase cannot unlock the current key. "
        "The passphrase has been deleted; unlock the key manually."
    )
    KEY_RELOCKED = "Key re-locked."
    NO_ACTIVE_FOLDER = "No active folder"
    NO_KEY_FOR_CURRENT_FOLDER = "No key for current folder"

    def __str__(self) -> str:
        return self.value
