"""
In-process buffer of transactions waiting for a daily or weekly digest.

Entries live only in memory: a restart drops anything not yet flushed.
"""

import threading
from typing import Dict, List

from models.notification import DigestEntry


class DigestQueue:
    """Pending digest entries grouped by frequency and user."""

    def __init__(self):
        self._lock = threading.Lock()
        self._pending: Dict[str, Dict[str, List[DigestEntry]]] = {
            "daily": {},
            "weekly": {},
        }

    def enqueue(self, entry: DigestEntry) -> bool:
        """
        Add an entry to the user's buffer.

        Returns:
            False if this transaction is already queued for the user
        """
        with self._lock:
            entries = self._pending[entry.frequency].setdefault(entry.user_id, [])
            if any(e.transaction_id == entry.transaction_id for e in entries):
                return False
            entries.append(entry)
            return True

    def drain(self, frequency: str) -> Dict[str, List[DigestEntry]]:
        """Remove and return every pending entry for a frequency, grouped by user_id."""
        with self._lock:
            drained = self._pending[frequency]
            self._pending[frequency] = {}
        return drained

    def pending_count(self, frequency: str | None = None) -> int:
        with self._lock:
            buckets = [frequency] if frequency else list(self._pending)
            return sum(
                len(entries)
                for bucket in buckets
                for entries in self._pending[bucket].values()
            )
