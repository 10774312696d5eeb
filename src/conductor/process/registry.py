"""Managed process registry: live sessions keyed by session id."""

from __future__ import annotations

import logging
import threading

from conductor.process.types import ManagedProcess

logger = logging.getLogger(__name__)


class ProcessRegistry:
    """Thread-safe table of live sessions.

    An entry exists exactly while its backing process is alive and has
    not been killed.  Removal can be made conditional on identity so that
    a late exit notification from a replaced process never evicts its
    successor.
    """

    def __init__(self) -> None:
        self._entries: dict[str, ManagedProcess] = {}
        self._lock = threading.Lock()

    def add(self, entry: ManagedProcess) -> bool:
        """Register an entry. Returns False if the session id is taken."""
        with self._lock:
            if entry.session_id in self._entries:
                return False
            self._entries[entry.session_id] = entry
        logger.debug("Registered session %s (%s)", entry.session_id, entry.mode.value)
        return True

    def get(self, session_id: str) -> ManagedProcess | None:
        with self._lock:
            return self._entries.get(session_id)

    def remove(
        self, session_id: str, expected: ManagedProcess | None = None
    ) -> ManagedProcess | None:
        """Remove and return an entry.

        With ``expected``, only removes the entry if it is that exact object.
        """
        with self._lock:
            current = self._entries.get(session_id)
            if current is None:
                return None
            if expected is not None and current is not expected:
                return None
            del self._entries[session_id]
        logger.debug("Removed session %s", session_id)
        return current

    def session_ids(self) -> list[str]:
        """Snapshot of the registered session ids."""
        with self._lock:
            return list(self._entries)

    def all(self) -> list[ManagedProcess]:
        with self._lock:
            return list(self._entries.values())

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
