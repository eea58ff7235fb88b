"""
Resource ledger: the single source of truth for "what did we change".

Records the pre-optimization value of every tunable before it is written so
that revert restores the exact prior value. Entries are kept in insertion
order and optionally mirrored to a JSON file so a crash mid-optimization can
be rolled back on the next start.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import time
from collections import OrderedDict
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from .data_models import LedgerEntry, TunableTarget

logger = logging.getLogger(__name__)

LEDGER_VERSION = 1

TargetKey = Union[TunableTarget, str]


def _key(target: TargetKey) -> str:
    return target.path if isinstance(target, TunableTarget) else str(target)


class ResourceLedger:
    """In-memory ledger keyed by tunable path, optionally mirrored to disk."""

    def __init__(self, path: Optional[Path] = None):
        self.path = Path(path) if path is not None else None
        self._entries: "OrderedDict[str, LedgerEntry]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, target: TargetKey) -> bool:
        return _key(target) in self._entries

    def record(
        self,
        target: TunableTarget,
        prior_value: str,
        applied_value: Optional[str] = None,
    ) -> LedgerEntry:
        """Record the prior value of ``target``.

        An existing entry keeps its original prior value, so re-applying a
        plan never overwrites the true pre-optimization value with an
        already-optimized one.
        """
        key = _key(target)
        existing = self._entries.get(key)
        if existing is not None:
            applied = applied_value or target.desired_value
            if existing.applied_value != applied:
                existing.applied_value = applied
                self._persist()
            return existing

        entry = LedgerEntry(
            target=target,
            prior_value=prior_value,
            applied_value=applied_value or target.desired_value,
            timestamp=time.time(),
        )
        self._entries[key] = entry
        self._persist()
        return entry

    def lookup(self, target: TargetKey) -> Tuple[Optional[str], bool]:
        """Return ``(prior_value, found)``."""
        entry = self._entries.get(_key(target))
        if entry is None:
            return None, False
        return entry.prior_value, True

    def get(self, target: TargetKey) -> Optional[LedgerEntry]:
        return self._entries.get(_key(target))

    def clear(self, target: TargetKey) -> None:
        """Drop the entry for ``target`` (after a successful revert)."""
        if self._entries.pop(_key(target), None) is not None:
            self._persist()

    def entries(self) -> List[LedgerEntry]:
        """Entries in insertion order."""
        return list(self._entries.values())

    def snapshot(self) -> Dict[str, str]:
        """Mapping of path -> prior value, for comparisons and tests."""
        return {k: e.prior_value for k, e in self._entries.items()}

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Load entries from disk. Returns the number loaded.

        A missing file is an empty ledger; a corrupt file is logged and
        treated as empty so the caller falls back to baseline values.
        """
        if self.path is None or not self.path.exists():
            return 0

        try:
            data = json.loads(self.path.read_text())
            entries = [LedgerEntry.from_dict(e) for e in data.get("entries", [])]
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning("Ledger file %s unreadable, ignoring: %s", self.path, e)
            return 0

        self._entries = OrderedDict((e.target.path, e) for e in entries)
        logger.info("Loaded %d ledger entries from %s", len(self._entries), self.path)
        return len(self._entries)

    def exists_on_disk(self) -> bool:
        return self.path is not None and self.path.exists()

    def _persist(self) -> None:
        """Mirror to disk atomically. An empty ledger removes the file."""
        if self.path is None:
            return

        try:
            if not self._entries:
                if self.path.exists():
                    self.path.unlink()
                return

            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = {
                "version": LEDGER_VERSION,
                "entries": [e.to_dict() for e in self._entries.values()],
            }
            fd, tmp_name = tempfile.mkstemp(
                dir=str(self.path.parent), prefix=".ledger-", suffix=".tmp"
            )
            with os.fdopen(fd, "w") as handle:
                json.dump(payload, handle, indent=2)
            os.replace(tmp_name, self.path)
        except OSError as e:
            # The in-memory ledger stays authoritative for this process
            logger.warning("Could not persist ledger to %s: %s", self.path, e)
