"""
Key status engine: which key does the active folder sign with, and
is it unlocked right now?

Per folder:
    Unresolved ──> NoKeyConfigured
               └─> Resolved(key) ──> Locked <──> Unlocked

Every transition happens inside ``sync_status``, which holds the
status lock so that two checks (the periodic loop and a user action,
say) can never interleave an automatic unlock or emit events out of
order. Events and notices are queued under that lock and delivered,
in order, once it is released. The folder map has its own lock: a
refresh builds a complete new map and swaps it in, so readers never
see half of one.

Edge-triggered notices, from the state carried between checks:
    was unlocked, same key, now locked   -> "re-locked" (cache off)
    locked, cached passphrase works      -> "automatically unlocked"
    locked, cached passphrase rejected   -> "automatic unlock failed",
                                            passphrase deleted

Usage:
    engine = KeyStatusEngine(config, cache=PassphraseCache(home))
    engine.register_update_function(print)
    engine.update_folders(["/src/project"])
    engine.change_active_folder("/src/project")
    engine.start()
    ...
    engine.dispose()
"""

from __future__ import annotations

import logging
import tempfile
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Mapping, Optional

from .adapters import git as git_adapter
from .adapters.gpg import GpgBackend
from .messages import Notice
from .models import IndicatorConfig, KeyRecord, StatusEvent

logger = logging.getLogger("gpgindicator.engine")

MAX_RESOLVE_WORKERS = 8

UpdateFunction = Callable[[Optional[StatusEvent]], None]
NotifyFunction = Callable[[Notice], None]


class NoActiveFolder(Exception):
    """Raised when an operation needs an active folder and there is none."""


class NoKeyForCurrentFolder(Exception):
    """Raised when the active folder has no signing key."""


@dataclass
class EngineState:
    """Mutable engine state, only touched under the status lock.

    Attributes:
        active_folder: Folder actually tracked (after untrusted substitution).
        requested_folder: Folder the caller asked for.
        last_event: Last event pushed to observers; None when absent.
        last_checked_key: Key seen by the previous check.
        was_unlocked: Lock state seen by the previous check.
        passphrase_cache_enabled: Whether automatic unlock may run.
        workspace_trusted: Whether folder git configuration may be read.
        last_check_ok: Whether the latest check reached a verdict.
    """

    active_folder: Optional[str] = None
    requested_folder: Optional[str] = None
    last_event: Optional[StatusEvent] = None
    last_checked_key: Optional[KeyRecord] = None
    was_unlocked: bool = False
    passphrase_cache_enabled: bool = False
    workspace_trusted: bool = True
    last_check_ok: bool = False


def resolve_current_key(
    folder_keys: Mapping[str, KeyRecord], active_folder: Optional[str]
) -> Optional[KeyRecord]:
    """The key of the active folder, or None."""
    if active_folder is None:
        return None
    return folder_keys.get(active_folder)


def _log_notice(notice: Notice) -> None:
    logger.info("Notice: %s", notice.value)


class KeyStatusEngine:
    """Keeps per-folder key state and pushes lock-state changes.

    Args:
        config: Indicator configuration.
        gpg: GnuPG backend (key listing, agent queries, unlocking).
        cache: Passphrase cache with ``get``/``set``/``delete``; may be
            None when caching is never enabled.
        git: git adapter with ``is_signing_activated`` and
            ``get_signing_key``.
        notify: Receives user-facing notices.
    """

    def __init__(
        self,
        config: Optional[IndicatorConfig] = None,
        gpg: Optional[GpgBackend] = None,
        cache=None,
        git=git_adapter,
        notify: NotifyFunction = _log_notice,
    ) -> None:
        self.config = config or IndicatorConfig()
        self._gpg = gpg or GpgBackend(
            agent_socket=self.config.agent_socket, timeout=self.config.agent_timeout
        )
        self._cache = cache
        self._git = git
        self._notify = notify

        self._untrusted_tmp: Optional[tempfile.TemporaryDirectory] = None
        self.state = EngineState(
            passphrase_cache_enabled=self.config.enable_passphrase_cache,
            workspace_trusted=self.config.workspace_trusted,
        )
        self.sync_interval = self.config.sync_interval

        self._folder_keys: dict[str, KeyRecord] = {}
        self._folder_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._update_functions: list[UpdateFunction] = []
        # (callback, argument) pairs queued under the status lock
        self._pending: deque[tuple[Callable, object]] = deque()
        self._dispatch_lock = threading.RLock()
        self._stop_event = threading.Event()
        self._wake = threading.Event()
        self._thread: Optional[threading.Thread] = None

    # -------------------------------------------------------------------
    # Folders
    # -------------------------------------------------------------------

    def update_folders(self, folders: list[str]) -> None:
        """Rebuild the folder map for ``folders``.

        The key list is fetched once and shared by every folder;
        folders are resolved concurrently. A folder whose key cannot
        be resolved is left out of the map.
        """
        logger.info("Update folder information for %d folder(s)", len(folders))
        try:
            records = self._gpg.list_key_records()
        except Exception as exc:
            logger.error("Cannot list keys: %s", exc)
            records = None

        new_map: dict[str, KeyRecord] = {}
        if folders:
            workers = min(MAX_RESOLVE_WORKERS, len(folders))
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="resolve") as pool:
                results = pool.map(lambda f: (f, self._resolve_folder(f, records)), folders)
                for folder, key in results:
                    if key is not None:
                        new_map[str(folder)] = key

        with self._folder_lock:
            self._folder_keys = new_map

    def _resolve_folder(
        self, folder: str, records: Optional[list[KeyRecord]]
    ) -> Optional[KeyRecord]:
        """Find the signing key of one folder; None when there is none."""
        try:
            if not self._git.is_signing_activated(folder):
                return None
            key_id = self._git.get_signing_key(folder)
            key = self._gpg.resolve_key(key_id, records)
        except Exception as exc:
            logger.warning("Can not find key information for folder %s: %s", folder, exc)
            return None
        logger.info("Find key %s for folder %s", key.fingerprint, folder)
        return key

    def _refresh_folder(self, folder: str) -> None:
        """Re-read one folder's signing key and point-update the map.

        Adapter failures keep whatever the map already had.
        """
        with self._folder_lock:
            old_key = self._folder_keys.get(folder)
        try:
            if not self._git.is_signing_activated(folder):
                new_key = None
            else:
                key_id = self._git.get_signing_key(folder)
                if old_key is not None and key_id.upper() in old_key.fingerprint.upper():
                    return
                new_key = self._gpg.resolve_key(key_id)
        except Exception as exc:
            logger.warning("Can not refresh key information for folder %s: %s", folder, exc)
            return

        with self._folder_lock:
            if new_key is None:
                self._folder_keys.pop(folder, None)
            else:
                self._folder_keys[folder] = new_key
        if new_key is not None:
            logger.info(
                "Find updated key %s from old key %s for current folder %s",
                new_key.fingerprint,
                old_key.fingerprint if old_key else None,
                folder,
            )

    def get_current_key(self) -> Optional[KeyRecord]:
        """The key of the active folder, or None."""
        with self._folder_lock:
            return resolve_current_key(self._folder_keys, self.state.active_folder)

    def folder_keys(self) -> dict[str, KeyRecord]:
        """A copy of the folder map."""
        with self._folder_lock:
            return dict(self._folder_keys)

    def change_active_folder(self, folder: str) -> None:
        """Track ``folder``, then check its status right away.

        In an untrusted workspace the folder's git configuration must
        not be read, so a private empty folder is tracked instead.
        """
        folder = str(folder)
        with self._status_lock:
            self.state.requested_folder = folder
            if not self.state.workspace_trusted:
                substitute = self._untrusted_folder()
                logger.info(
                    "Running in restricted mode for an untrusted workspace, "
                    "%s will not be used, %s instead.",
                    folder,
                    substitute,
                )
                folder = substitute
            if self.state.active_folder == folder:
                return
            logger.info("Change folder to %s", folder)
            self.state.active_folder = folder
        self.sync_status()

    def _untrusted_folder(self) -> str:
        """The folder tracked instead of an untrusted one.

        Without a configured folder, a private temporary directory is
        created on first use and removed by :meth:`dispose`.
        """
        if self.config.untrusted_folder is not None:
            return str(self.config.untrusted_folder)
        if self._untrusted_tmp is None:
            self._untrusted_tmp = tempfile.TemporaryDirectory(prefix="gpgindicator-")
        return self._untrusted_tmp.name

    def grant_workspace_trust(self) -> None:
        """Mark the workspace trusted and switch to the requested folder."""
        with self._status_lock:
            self.state.workspace_trusted = True
            requested = self.state.requested_folder
        if requested is None:
            logger.info("The workspace has been granted trust, but no folder passed in before.")
            return
        logger.info("The workspace has been granted trust, %s will be used.", requested)
        self.change_active_folder(requested)

    def set_passphrase_cache_enabled(self, enabled: bool) -> None:
        with self._status_lock:
            self.state.passphrase_cache_enabled = enabled

    # -------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------

    def register_update_function(self, update: UpdateFunction) -> None:
        """Add an observer; observers run in registration order.

        Observers and notices run after the status lock is released,
        so an observer may call back into the engine.
        """
        logger.info("Got one update function")
        self._update_functions.append(update)

    def sync_status(self) -> None:
        """Check the active folder's key and push a changed status.

        At most one check runs at a time. Never raises.
        """
        with self._status_lock:
            self._check_status()
        self._dispatch()

    def _check_status(self) -> None:
        """One status check; caller holds the status lock."""
        folder = self.state.active_folder
        if folder is None:
            return

        self._refresh_folder(folder)
        current = self.get_current_key()

        if current is None:
            self.state.last_check_ok = True
            self.state.was_unlocked = False
            self.state.last_checked_key = None
            if self.state.last_event is not None:
                logger.info(
                    "Signing disabled or key removed for current folder, "
                    "trigger status update functions"
                )
                self.state.last_event = None
                self._post(self._fan_out, None)
            return

        previous = self.state.last_checked_key
        key_changed = previous is not None and previous.fingerprint != current.fingerprint

        event: Optional[StatusEvent] = None
        try:
            is_unlocked = self._gpg.is_key_unlocked(current.keygrip)
            if self.state.passphrase_cache_enabled:
                if not is_unlocked:
                    is_unlocked = self._auto_unlock(current, key_changed)
            elif not key_changed and self.state.was_unlocked and not is_unlocked:
                self._post(self._notify, Notice.KEY_RELOCKED)
            event = StatusEvent(key=current, is_locked=not is_unlocked)
        except Exception as exc:
            is_unlocked = False
            logger.error("Fail to check key status: %s", exc)

        self.state.last_check_ok = event is not None
        self.state.was_unlocked = is_unlocked
        self.state.last_checked_key = current

        if event is None or event == self.state.last_event:
            return
        self.state.last_event = event
        self._post(self._fan_out, event)

    def _auto_unlock(self, key: KeyRecord, key_changed: bool) -> bool:
        """Try the cached passphrase for a locked key.

        Returns:
            The lock state queried afterwards (True when unlocked).
        """
        if self._cache is None:
            return False
        passphrase = self._cache.get(key.fingerprint)
        if passphrase is None:
            return False

        relocked = self.state.was_unlocked
        try:
            self._gpg.unlock_key(key.keygrip, passphrase)
        except Exception as exc:
            logger.error("Cannot unlock the key with the cached passphrase: %s", exc)
            self._cache.delete(key.fingerprint)
            if key_changed:
                self._post(self._notify, Notice.KEY_CHANGED_BUT_AUTOMATIC_UNLOCK_FAILED)
            elif relocked:
                self._post(self._notify, Notice.KEY_RELOCKED_BUT_AUTOMATIC_UNLOCK_FAILED)
            else:
                self._post(self._notify, Notice.KEY_AUTOMATIC_UNLOCK_FAILED)
        else:
            if key_changed:
                self._post(self._notify, Notice.KEY_CHANGED_AND_AUTOMATICALLY_UNLOCKED)
            elif relocked:
                self._post(self._notify, Notice.KEY_RELOCKED_AND_AUTOMATICALLY_UNLOCKED)
            else:
                self._post(self._notify, Notice.KEY_AUTOMATICALLY_UNLOCKED)
        return self._gpg.is_key_unlocked(key.keygrip)

    def _post(self, callback: Callable, argument: object) -> None:
        self._pending.append((callback, argument))

    def _dispatch(self) -> None:
        """Deliver queued notices and events in the order they were posted."""
        with self._dispatch_lock:
            while self._pending:
                callback, argument = self._pending.popleft()
                try:
                    callback(argument)
                except Exception as exc:
                    logger.error("Notice delivery failed: %s", exc)

    def _fan_out(self, event: Optional[StatusEvent]) -> None:
        if event is None:
            logger.info("New event: no key for current folder")
        else:
            logger.info(
                "New event, key: %s, is locked: %s", event.key.fingerprint, event.is_locked
            )
        for update in list(self._update_functions):
            try:
                update(event)
            except Exception as exc:
                logger.error("Status update function failed: %s", exc)

    def unlock_current_key(self, passphrase: str, remember: bool = False) -> None:
        """Unlock the active folder's key with ``passphrase``.

        Args:
            passphrase: The key's passphrase.
            remember: Store the passphrase in the cache after a
                successful unlock (only when caching is enabled).

        Raises:
            NoActiveFolder: No folder is active.
            NoKeyForCurrentFolder: The active folder has no key.
            AssuanError: The unlock handshake failed.
        """
        if self.state.active_folder is None:
            raise NoActiveFolder(Notice.NO_ACTIVE_FOLDER.value)

        key = self.get_current_key()
        if key is None:
            raise NoKeyForCurrentFolder(Notice.NO_KEY_FOR_CURRENT_FOLDER.value)

        if self._gpg.is_key_unlocked(key.keygrip):
            logger.warning("Key is already unlocked, skip unlock request")
            return

        logger.info("Try to unlock current key: %s", key.fingerprint)
        self._gpg.unlock_key(key.keygrip, passphrase)

        if remember and self.state.passphrase_cache_enabled and self._cache is not None:
            self._cache.set(key.fingerprint, passphrase)

    # -------------------------------------------------------------------
    # Periodic loop
    # -------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic status loop in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._wake.clear()
        self._thread = threading.Thread(
            target=self._sync_loop, name="gpgindicator-sync", daemon=True
        )
        self._thread.start()
        logger.info("Status loop started, interval %ss", self.sync_interval)

    def update_sync_interval(self, seconds: float) -> None:
        """Change the loop interval.

        A wait already in progress restarts with the new interval.
        """
        self.sync_interval = seconds
        self._wake.set()

    def _wait(self, seconds: float) -> bool:
        """Sleep ``seconds``, restarting on an interval change.

        Returns:
            True once the loop has been stopped.
        """
        while not self._stop_event.is_set():
            if not self._wake.wait(timeout=seconds):
                return False
            self._wake.clear()
            seconds = self.sync_interval
        return True

    def _sync_loop(self) -> None:
        """Check status every ``sync_interval`` seconds until disposed."""
        if self._wait(self.config.initial_delay):
            return
        while not self._stop_event.is_set():
            try:
                self.sync_status()
            except Exception as exc:
                logger.error("Status loop error: %s", exc)
            if self._wait(self.sync_interval):
                return

    def dispose(self, wait: bool = False) -> None:
        """Stop the periodic loop and remove the private untrusted folder.

        Caches are left as they are.

        Args:
            wait: Block until the loop thread (and any check in
                flight) has finished.
        """
        self._stop_event.set()
        self._wake.set()
        if wait and self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()
        if self._untrusted_tmp is not None:
            self._untrusted_tmp.cleanup()
            self._untrusted_tmp = None
        logger.info("Status loop stopped")
