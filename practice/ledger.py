"""
practice/ledger.py -- Per-account record of completed challenges.

Stored in the persistent storage namespace as a JSON list under
``codegen_completed_<account_id>``. The ledger is what makes crediting a
challenge idempotent: mark_completed() answers "was this new?" and only a new
completion earns points.
"""

from __future__ import annotations

import json
import logging

from storage.kv import KeyValueStorage

logger = logging.getLogger("codegen.practice")

_KEY_PREFIX = "codegen_completed_"


def ledger_key(account_id: str) -> str:
    return f"{_KEY_PREFIX}{account_id}"


class ChallengeLedger:
    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage

    def completed(self, account_id: str) -> list[str]:
        """Completed challenge ids in completion order. Corrupt data reads as empty."""
        raw = self._storage.get(ledger_key(account_id))
        if raw is None:
            return []
        try:
            ids = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding corrupt challenge ledger for %s", account_id)
            return []
        if not isinstance(ids, list):
            logger.warning("Discarding malformed challenge ledger for %s", account_id)
            return []
        return [str(i) for i in ids]

    def is_completed(self, account_id: str, challenge_id: str) -> bool:
        return challenge_id in self.completed(account_id)

    def mark_completed(self, account_id: str, challenge_id: str) -> bool:
        """Record a completion. Returns True only the first time."""
        ids = self.completed(account_id)
        if challenge_id in ids:
            return False
        ids.append(challenge_id)
        self._storage.set(ledger_key(account_id), json.dumps(ids))
        return True

    def unmark(self, account_id: str, challenge_id: str) -> None:
        ids = [i for i in self.completed(account_id) if i != challenge_id]
        self._storage.set(ledger_key(account_id), json.dumps(ids))
