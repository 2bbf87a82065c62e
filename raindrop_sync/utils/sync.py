"""
Core synchronization logic between Raindrop.io and the vault

This module contains the RaindropSync class that runs one reconciliation
pass: archive notes whose bookmark went away, import new highlights as
article notes, and keep the identity maps up to date.
"""

import os
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Any

from loguru import logger
from platformdirs import user_data_dir, user_cache_dir
from beartype import beartype as typecheck

from .deletion_detector import archive_candidates, get_deletion_strategy
from .exceptions import ConfigError, RaindropError, StateFileError, SyncLogicError
from .grouper import ArticleBundle, group_by_article
from .raindrop_manager import RaindropManager, RemoteSnapshot
from .state_manager import IMPORTED_IDS, LAST_SYNC_RESULT, LAST_SYNC_TIME, IdentityStore
from .vault_manager import DEDICATED, IMPORT_LOCATIONS, VaultManager

NO_TOKEN_MESSAGE = "No API token configured."
BUSY_MESSAGE = "A sync is already in progress."

# one in-process guard per lock file, shared by every RaindropSync using it
_RUN_LOCKS: Dict[str, threading.Lock] = {}
_RUN_LOCKS_GUARD = threading.Lock()


def _run_lock_for(lock_file: Path) -> threading.Lock:
    key = os.path.abspath(lock_file)
    with _RUN_LOCKS_GUARD:
        return _RUN_LOCKS.setdefault(key, threading.Lock())


def get_default_sync_state_path() -> str:
    """Get the default sync state file path using platformdirs."""
    data_dir = Path(user_data_dir("raindrop-sync", "raindrop-sync"))
    data_dir.mkdir(parents=True, exist_ok=True)
    return str(data_dir / "sync_state.json")


def get_default_lock_file_path() -> str:
    """Get the default lock file path using platformdirs."""
    cache_dir = Path(user_cache_dir("raindrop-sync", "raindrop-sync"))
    cache_dir.mkdir(parents=True, exist_ok=True)
    return str(cache_dir / "raindrop-sync.lock")


def get_default_debug_log_path() -> str:
    """Get the default debug log file path using platformdirs."""
    cache_dir = Path(user_cache_dir("raindrop-sync", "raindrop-sync"))
    cache_dir.mkdir(parents=True, exist_ok=True)
    return str(cache_dir / "raindrop-sync_debug.log")


@dataclass
class SyncConfig:
    """Configuration for the synchronization process"""

    vault_path: str
    api_token: Optional[str] = None
    sync_state_path: Optional[str] = None
    lock_file_path: Optional[str] = None
    import_location: str = "daily"
    sync_interval_minutes: int = 30
    include_colors: bool = True
    deletion_strategy: str = "trash"
    forget_archived_highlights: bool = False
    namespace: str = "raindrop-sync"
    request_timeout: float = 30.0


@dataclass
class SyncResult:
    """Outcome of one sync pass."""

    imported: int = 0
    archived: int = 0
    errors: List[str] = field(default_factory=list)
    failed: bool = False
    skipped: bool = False
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    def summary(self) -> str:
        """One-line description for the status display."""
        if self.failed:
            return f"Sync failed: {self.errors[0] if self.errors else 'unknown error'}"
        if self.skipped:
            return self.errors[0] if self.errors else "Sync skipped."

        text = f"Imported {self.imported} new highlight(s)."
        if self.archived:
            text += f" Archived {self.archived} article(s)."
        if self.errors:
            text += f" {len(self.errors)} error(s): {self.errors[0]}"
        return text

    def raise_for_status(self) -> None:
        """Re-raise the exception that aborted the pass, if any."""
        if self.exception is not None:
            raise self.exception


class RaindropSync:
    """
    Main class for synchronizing Raindrop.io highlights into the vault.

    Collaborators can be injected; by default they are built from the
    configuration. Only one pass runs at a time: a second call while a pass
    is in flight, in this process or another one, returns a skipped result.
    """

    @typecheck
    def __init__(
        self,
        config: SyncConfig,
        raindrop=None,
        vault=None,
        store: Optional[IdentityStore] = None,
    ):
        """
        Initialize the synchronization manager.

        Parameters
        ----------
        config : SyncConfig
            Sync settings
        raindrop : RaindropManager, optional
            Remote API client
        vault : VaultManager, optional
            Note-tree writer
        store : IdentityStore, optional
            Persistent identity maps
        """
        if config.sync_state_path is None:
            config.sync_state_path = get_default_sync_state_path()
        if config.lock_file_path is None:
            config.lock_file_path = get_default_lock_file_path()

        self.config = config
        self._validate_config()

        logger.debug(f"Initializing RaindropSync with state file {config.sync_state_path}")

        self.raindrop = raindrop or RaindropManager(timeout=config.request_timeout)
        self.vault = vault or VaultManager(config)
        self.store = store or IdentityStore(config.sync_state_path, namespace=config.namespace)
        self.strategy = get_deletion_strategy(
            config.deletion_strategy, config.forget_archived_highlights
        )

        self.lock_file = Path(config.lock_file_path)
        self._running = _run_lock_for(self.lock_file)

    @typecheck
    def _validate_config(self) -> None:
        """Validate the configuration parameters."""
        if self.config.import_location not in IMPORT_LOCATIONS:
            raise ConfigError(
                f"import_location must be one of {IMPORT_LOCATIONS}, "
                f"got '{self.config.import_location}'"
            )
        if self.config.sync_interval_minutes < 0:
            raise ConfigError("sync_interval_minutes cannot be negative")
        if self.config.request_timeout <= 0:
            raise ConfigError("request_timeout must be positive")

        logger.debug("Configuration validation passed")

    @typecheck
    def perform_sync(self) -> SyncResult:
        """
        Run one reconciliation pass.

        Never raises for remote or state file failures: those abort the pass
        and come back as a failed result whose ``raise_for_status()``
        re-raises them.

        Returns
        -------
        SyncResult
            Counts of imported highlights and archived articles, plus errors
        """
        token = (self.config.api_token or "").strip()
        if not token:
            logger.warning("No Raindrop.io API token configured, skipping sync")
            return SyncResult(errors=[NO_TOKEN_MESSAGE])

        if not self._running.acquire(blocking=False):
            logger.warning("Sync requested while another sync is running, skipping")
            return SyncResult(errors=[BUSY_MESSAGE], skipped=True)

        try:
            try:
                self._acquire_lock()
            except SyncLogicError as e:
                return SyncResult(errors=[str(e)], skipped=True)

            try:
                result = self._run_pass(token)
            finally:
                self._release_lock()
        finally:
            self._running.release()

        self._record_result(result)
        return result

    def _run_pass(self, token: str) -> SyncResult:
        logger.info("Starting Raindrop.io synchronization")
        snapshot = RemoteSnapshot(self.raindrop, token)
        archived = 0

        try:
            # Archive first so a trashed bookmark is not imported and archived in one pass
            if self.config.import_location == DEDICATED:
                archived = self._archive_removed(snapshot)

            highlights = snapshot.highlights()
            self.strategy.migrate_legacy_state(self.store, highlights)

            imported_ids = self.store.get(IMPORTED_IDS)
            excluded_refs = (
                self.strategy.excluded_refs(snapshot)
                if self.config.import_location == DEDICATED
                else set()
            )
            new_highlights = [
                h
                for h in highlights
                if h.id not in imported_ids and h.raindrop_ref not in excluded_refs
            ]
            logger.info(
                f"{len(new_highlights)} new highlights out of {len(highlights)} on Raindrop.io"
            )

            if not new_highlights:
                self._set_last_sync_time()
                return SyncResult(imported=0, archived=archived)

            imported, errors = self._import_bundles(group_by_article(new_highlights))
            self._set_last_sync_time()

        except (RaindropError, StateFileError) as e:
            logger.error(f"Synchronization failed: {e}")
            return SyncResult(archived=archived, errors=[str(e)], failed=True, exception=e)

        logger.info(
            f"Sync Summary: {imported} highlights imported, {archived} articles archived, "
            f"{len(errors)} errors"
        )
        return SyncResult(imported=imported, archived=archived, errors=errors)

    def _archive_removed(self, snapshot: RemoteSnapshot) -> int:
        """Archive the notes whose source went away and forget them."""
        candidates = self.strategy.detect(self.store, snapshot)
        if not candidates:
            logger.info("No notes to archive")
            return 0

        logger.info(f"Archiving {len(candidates)} notes ({self.strategy.name} strategy)")
        archived, failed = archive_candidates(candidates, self.vault.archive_note)

        # failed entries stay tracked so the next pass retries them
        if archived:
            self.strategy.forget(self.store, archived)
        if failed:
            logger.warning(f"{len(failed)} notes could not be archived")

        return len(archived)

    def _import_bundles(self, bundles: List[ArticleBundle]):
        """Create one note per bundle, recording progress after each one."""
        imported = 0
        errors = []

        for bundle in bundles:
            try:
                note_id = self._write_bundle(bundle)
            except Exception as e:
                message = f'Failed to import "{bundle.title}": {e}'
                logger.error(message)
                errors.append(message)
                continue

            # imported ids go first so every tracked reference has its highlights
            self.store.merge(
                IMPORTED_IDS, {h.id: str(h.raindrop_ref) for h in bundle.highlights}
            )
            self.strategy.record_import(self.store, bundle, note_id)
            imported += len(bundle.highlights)

        logger.info(f"Imported {imported} highlights from {len(bundles)} articles")
        return imported, errors

    def _write_bundle(self, bundle: ArticleBundle) -> str:
        """Append to the note already tracking the article, else create one."""
        note_id = self.strategy.tracked_note(self.store, bundle)
        if note_id and self.vault.append_to_note(note_id, bundle):
            return note_id
        return str(self.vault.create_article_note(bundle))

    def _set_last_sync_time(self) -> None:
        self.store.set_value(LAST_SYNC_TIME, datetime.now(timezone.utc).isoformat())

    def _record_result(self, result: SyncResult) -> None:
        try:
            self.store.set_value(LAST_SYNC_RESULT, result.summary())
        except StateFileError as e:
            logger.warning(f"Could not record sync result: {e}")

    @typecheck
    def status(self) -> Dict[str, Any]:
        """Information shown by the status display."""
        return {
            "token_configured": bool((self.config.api_token or "").strip()),
            "last_sync_time": self.store.get_value(LAST_SYNC_TIME),
            "last_result": self.store.get_value(LAST_SYNC_RESULT),
            "imported_highlights": len(self.store.get(IMPORTED_IDS)),
        }

    @typecheck
    def _acquire_lock(self) -> None:
        """
        Acquire lock to prevent concurrent execution across processes.

        Raises
        ------
        SyncLogicError
            If another instance is already running
        """
        if self.lock_file.exists():
            try:
                existing_pid = self.lock_file.read_text().strip()
            except OSError as e:
                logger.warning(f"Error reading lock file, removing it: {e}")
                existing_pid = ""

            try:
                pid = int(existing_pid)
                # Signal 0 only checks that the process exists
                os.kill(pid, 0)
            except (OSError, ValueError):
                logger.warning(f"Removing stale lock file (PID {existing_pid or '?'} not running)")
                self.lock_file.unlink(missing_ok=True)
            else:
                if pid != os.getpid():
                    error_msg = f"Another raindrop-sync process is already running (PID: {pid})"
                    logger.error(error_msg)
                    raise SyncLogicError(error_msg)

        try:
            self.lock_file.parent.mkdir(parents=True, exist_ok=True)
            self.lock_file.write_text(str(os.getpid()))
            logger.debug(f"Acquired lock: {self.lock_file}")
        except OSError as e:
            raise SyncLogicError(f"Failed to create lock file: {e}") from e

    @typecheck
    def _release_lock(self) -> None:
        """Release the execution lock by removing the lock file."""
        try:
            self.lock_file.unlink(missing_ok=True)
            logger.debug(f"Released lock: {self.lock_file}")
        except OSError as e:
            logger.warning(f"Failed to remove lock file: {e}")
