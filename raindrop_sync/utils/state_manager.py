"""
Sync state management

Handles loading, saving, and managing the identity maps that tie Raindrop
highlights and bookmarks to the notes created for them in the vault.
"""

import json
import os
import shutil
import threading
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Any, Union
from datetime import datetime
from loguru import logger
from beartype import beartype as typecheck

from .exceptions import StateFileError

STATE_VERSION = "2.0"
BACKUP_INFIX = ".backup_"

# Logical keys, namespaced per instance when stored
IMPORTED_IDS = "imported-highlight-ids"
REF_TO_NOTE = "raindrop-ref-to-note-id"
HIGHLIGHT_TO_URL = "highlight-id-to-article-url"
URL_TO_NOTE = "article-url-to-note-id"
LAST_SYNC_TIME = "last-sync-time"
LAST_SYNC_RESULT = "last-sync-result"


class IdentityStore:
    """
    Durable key-value store backed by a single JSON state file.

    Every mutation re-reads the file, applies the change and writes the
    result back atomically, so the store always reflects the last completed
    write. There is no transaction spanning several keys.
    """

    @typecheck
    def __init__(
        self,
        state_path: Union[str, Path],
        namespace: str = "raindrop-sync",
        keep_backups: int = 5,
    ):
        """
        Initialize the identity store.

        Parameters
        ----------
        state_path : Union[str, Path]
            Path to the JSON state file
        namespace : str
            Prefix applied to every key so several instances can share a file
        keep_backups : int
            Number of timestamped backups kept next to the state file
        """
        self.state_file = Path(state_path)
        self.namespace = namespace
        self.keep_backups = keep_backups
        self._lock = threading.RLock()

        logger.debug(
            f"IdentityStore initialized with state file: {self.state_file} "
            f"(namespace: {self.namespace})"
        )

    def _namespaced(self, key: str) -> str:
        return f"{self.namespace}/{key}"

    @typecheck
    def get(self, key: str) -> Dict[str, Any]:
        """
        Return the mapping stored under ``key``, or an empty dict.

        Parameters
        ----------
        key : str
            Logical key, without namespace

        Returns
        -------
        Dict[str, Any]
            A copy of the stored mapping
        """
        with self._lock:
            state_data = self.load_state()
            value = state_data["entries"].get(self._namespaced(key))
            if value is None:
                return {}
            if not isinstance(value, dict):
                raise StateFileError(f"Entry '{key}' is not a mapping")
            return dict(value)

    @typecheck
    def merge(self, key: str, entries: Dict[str, Any]) -> None:
        """
        Union ``entries`` into the mapping stored under ``key``.

        Existing fields are overwritten by the new values.
        """
        if not entries:
            return

        with self._lock:
            state_data = self.load_state()
            name = self._namespaced(key)
            current = state_data["entries"].get(name) or {}
            if not isinstance(current, dict):
                raise StateFileError(f"Entry '{key}' is not a mapping")
            current.update(entries)
            state_data["entries"][name] = current
            self.save_state(state_data)

        logger.debug(f"Merged {len(entries)} entries into '{key}'")

    @typecheck
    def remove_keys(self, key: str, keys: Iterable[str]) -> int:
        """
        Remove ``keys`` from the mapping stored under ``key``.

        Returns
        -------
        int
            Number of keys actually removed
        """
        keys = list(keys)
        if not keys:
            return 0

        with self._lock:
            state_data = self.load_state()
            name = self._namespaced(key)
            current = state_data["entries"].get(name)
            if not current:
                return 0

            removed = 0
            for k in keys:
                if k in current:
                    del current[k]
                    removed += 1

            if removed:
                state_data["entries"][name] = current
                self.save_state(state_data)

        logger.debug(f"Removed {removed} entries from '{key}'")
        return removed

    @typecheck
    def get_value(self, key: str, default: Optional[Any] = None) -> Any:
        """Return a scalar value stored under ``key``."""
        with self._lock:
            state_data = self.load_state()
            return state_data["entries"].get(self._namespaced(key), default)

    @typecheck
    def set_value(self, key: str, value: Any) -> None:
        """Store a scalar value under ``key``."""
        with self._lock:
            state_data = self.load_state()
            state_data["entries"][self._namespaced(key)] = value
            self.save_state(state_data)

    @typecheck
    def has(self, key: str) -> bool:
        """Whether a non-empty entry exists under ``key``."""
        with self._lock:
            state_data = self.load_state()
            return bool(state_data["entries"].get(self._namespaced(key)))

    @typecheck
    def load_state(self) -> Dict[str, Any]:
        """
        Load the state file.

        Returns
        -------
        Dict[str, Any]
            The state data, or an empty structure if the file doesn't exist

        Raises
        ------
        StateFileError
            If the state file exists but cannot be loaded
        """
        if not self.state_file.exists():
            return self._create_empty_state()

        try:
            with open(self.state_file, "r", encoding="utf-8") as f:
                state_data = json.load(f)
        except json.JSONDecodeError as e:
            error_msg = f"Invalid JSON in state file {self.state_file}: {e}"
            logger.error(error_msg)
            raise StateFileError(error_msg) from e
        except OSError as e:
            error_msg = f"Failed to load state file {self.state_file}: {e}"
            logger.error(error_msg)
            raise StateFileError(error_msg) from e

        self._validate_state_structure(state_data)
        return state_data

    @typecheck
    def save_state(self, state_data: Dict[str, Any]) -> None:
        """
        Write ``state_data`` to the state file, keeping a backup of the
        previous version.

        Raises
        ------
        StateFileError
            If the state cannot be saved
        """
        state_data["version"] = STATE_VERSION
        state_data["last_updated"] = datetime.now().isoformat()

        self._create_backup()
        try:
            self._write_atomic(json.dumps(state_data, indent=2, ensure_ascii=False))
        except (OSError, TypeError, ValueError) as e:
            error_msg = f"Failed to save state file {self.state_file}: {e}"
            logger.error(error_msg)
            raise StateFileError(error_msg) from e

        logger.debug(f"Saved sync state to {self.state_file}")

    def _write_atomic(self, payload: str) -> None:
        """Replace the state file with ``payload`` in a single rename."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        partial = self.state_file.with_name(self.state_file.name + ".partial")
        try:
            with open(partial, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())
            os.replace(partial, self.state_file)
        finally:
            partial.unlink(missing_ok=True)

    def _create_empty_state(self) -> Dict[str, Any]:
        """Create an empty state structure."""
        now = datetime.now().isoformat()
        return {
            "version": STATE_VERSION,
            "created_at": now,
            "last_updated": now,
            "entries": {},
        }

    def _validate_state_structure(self, state_data: Any) -> None:
        """
        Validate that the state data has the expected structure.

        Raises
        ------
        StateFileError
            If the state structure is invalid
        """
        if not isinstance(state_data, dict):
            raise StateFileError("State file must contain a JSON object")

        missing = [key for key in ("version", "entries") if key not in state_data]
        if missing:
            raise StateFileError(f"State file missing required key(s): {', '.join(missing)}")

        if not isinstance(state_data["entries"], dict):
            raise StateFileError("State file 'entries' must be an object")

    def _backup_path(self, stamp: str) -> Path:
        return self.state_file.with_name(f"{self.state_file.stem}{BACKUP_INFIX}{stamp}")

    def _backup_files(self) -> List[Path]:
        """Existing backups, newest first."""
        pattern = f"{self.state_file.stem}{BACKUP_INFIX}*"
        # stamps are zero-padded, so name order is age order
        return sorted(self.state_file.parent.glob(pattern), key=lambda p: p.name, reverse=True)

    def _create_backup(self) -> None:
        """Copy the current state file aside and prune backups past ``keep_backups``."""
        if self.keep_backups <= 0 or not self.state_file.exists():
            return

        backup_file = self._backup_path(datetime.now().strftime("%Y%m%d_%H%M%S_%f"))
        try:
            shutil.copyfile(self.state_file, backup_file)
            for stale in self._backup_files()[self.keep_backups :]:
                stale.unlink()
                logger.debug(f"Pruned backup {stale.name}")
        except OSError as e:
            # a missing backup never blocks the write itself
            logger.warning(f"Could not back up {self.state_file}: {e}")

    @typecheck
    def restore_from_backup(self, backup_timestamp: Optional[str] = None) -> bool:
        """
        Put a backup back in place of the state file.

        The backup is validated before anything is overwritten.

        Parameters
        ----------
        backup_timestamp : Optional[str]
            Stamp of the backup to restore, the newest one if None

        Returns
        -------
        bool
            True if the state file now holds the backup's content
        """
        with self._lock:
            if backup_timestamp:
                candidates = [self._backup_path(backup_timestamp)]
            else:
                candidates = self._backup_files()

            if not candidates or not candidates[0].exists():
                logger.error(f"No backup to restore for {self.state_file}")
                return False
            backup_file = candidates[0]

            try:
                payload = backup_file.read_text(encoding="utf-8")
                self._validate_state_structure(json.loads(payload))
                self._write_atomic(payload)
            except (OSError, ValueError, StateFileError) as e:
                logger.error(f"Could not restore {backup_file.name}: {e}")
                return False

        logger.info(f"Restored state from {backup_file.name}")
        return True
