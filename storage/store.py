"""
storage/store.py -- Session record persistence across two storage scopes.

Scopes:
  TAB        -- lives as long as the current process ("tab"). Always written
                on sign-in.
  PERSISTENT -- survives restarts. Written at registration and on a
                "remember me" login; also holds the device id.

Write-through: write_through() updates every scope that currently holds a
record, so a mutation never leaves the two copies disagreeing.

Reconciliation: when both scopes hold a record at startup, the one with the
larger last_sync_timestamp wins and is written back to both. Ties go to the
tab-scoped copy. A persistent-only record is copied into the tab scope.
Concurrent writers across processes are not locked against each other;
last write wins.

Corrupt records (bad JSON, failed validation) are logged, deleted, and
reported as absent.

Layer rule: no imports from practice/. Only auth.models is imported from auth/.
"""

from __future__ import annotations

import enum
import logging
import uuid

from pydantic import ValidationError

from storage.kv import KeyValueStorage
from storage.models import StoredUser

logger = logging.getLogger("codegen.storage")

USER_KEY = "codegen_user"
DEVICE_KEY = "codegen_device_id"


class Scope(str, enum.Enum):
    TAB = "tab"
    PERSISTENT = "persistent"


class SessionStore:
    """Reads and writes the StoredUser blob in the tab and persistent scopes.

    Usage:
        store = SessionStore(tab=KeyValueStorage(), persistent=KeyValueStorage(path))
        store.write_tab_scoped(record)
        store.reconcile()          # at startup
        store.clear(Scope.TAB)
    """

    def __init__(self, tab: KeyValueStorage, persistent: KeyValueStorage) -> None:
        self._storages = {Scope.TAB: tab, Scope.PERSISTENT: persistent}

    # ------------------------------------------------------------------
    # Per-scope access
    # ------------------------------------------------------------------

    def write_tab_scoped(self, record: StoredUser) -> None:
        self._write(Scope.TAB, record)

    def write_persistent(self, record: StoredUser) -> None:
        self._write(Scope.PERSISTENT, record)

    def read_tab_scoped(self) -> StoredUser | None:
        return self._read(Scope.TAB)

    def read_persistent(self) -> StoredUser | None:
        return self._read(Scope.PERSISTENT)

    def clear(self, scope: Scope) -> None:
        self._storages[scope].delete(USER_KEY)

    def clear_all(self) -> None:
        for scope in Scope:
            self.clear(scope)

    def _write(self, scope: Scope, record: StoredUser) -> None:
        self._storages[scope].set(USER_KEY, record.model_dump_json())

    def _read(self, scope: Scope) -> StoredUser | None:
        raw = self._storages[scope].get(USER_KEY)
        if raw is None:
            return None
        try:
            return StoredUser.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding corrupt %s session record (%d errors)", scope.value, exc.error_count())
            self.clear(scope)
            return None

    # ------------------------------------------------------------------
    # Multi-scope operations
    # ------------------------------------------------------------------

    def populated_scopes(self) -> list[Scope]:
        return [scope for scope in Scope if self._storages[scope].get(USER_KEY) is not None]

    def write_through(self, record: StoredUser) -> list[Scope]:
        """Write the record to every populated scope, and to the tab scope regardless.

        Returns the scopes written.
        """
        scopes = self.populated_scopes()
        if Scope.TAB not in scopes:
            scopes.insert(0, Scope.TAB)
        for scope in scopes:
            self._write(scope, record)
        return scopes

    def reconcile(self) -> StoredUser | None:
        """Pick the authoritative record at startup and heal the other scope."""
        tab = self.read_tab_scoped()
        persistent = self.read_persistent()
        if tab is None and persistent is None:
            return None
        if tab is None:
            self.write_tab_scoped(persistent)  # type: ignore[arg-type]
            return persistent
        if persistent is None:
            return tab
        if persistent.last_sync_timestamp > tab.last_sync_timestamp:
            winner, stale = persistent, Scope.TAB
        else:
            winner, stale = tab, Scope.PERSISTENT
        logger.debug("Reconciled session records; %s copy was stale", stale.value)
        self.write_tab_scoped(winner)
        self.write_persistent(winner)
        return winner

    # ------------------------------------------------------------------
    # Device identity
    # ------------------------------------------------------------------

    def device_id(self) -> str:
        """Return the stable per-profile device id, creating it on first use."""
        storage = self._storages[Scope.PERSISTENT]
        existing = storage.get(DEVICE_KEY)
        if existing:
            return existing
        device = str(uuid.uuid4())
        storage.set(DEVICE_KEY, device)
        logger.info("Generated device id %s", device)
        return device

    def storage(self, scope: Scope) -> KeyValueStorage:
        return self._storages[scope]

    def close(self) -> None:
        for storage in self._storages.values():
            storage.close()
