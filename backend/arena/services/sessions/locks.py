import threading
from contextlib import contextmanager
from typing import Dict, List


class SessionLocks:
    """Registry of one re-entrant lock per session public id.

    Mutations of the same session are serialized; different sessions never
    contend. An entry lives only while some thread holds or waits on it, so
    finished sessions do not accumulate locks.
    """

    def __init__(self):
        self._guard = threading.Lock()
        # session id -> [lock, holders and waiters]
        self._locks: Dict[str, List] = {}

    def _acquire_entry(self, session_id: str) -> threading.RLock:
        with self._guard:
            entry = self._locks.get(session_id)
            if entry is None:
                entry = [threading.RLock(), 0]
                self._locks[session_id] = entry
            entry[1] += 1
            return entry[0]

    def _release_entry(self, session_id: str) -> None:
        with self._guard:
            entry = self._locks[session_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[session_id]

    @contextmanager
    def hold(self, session_id: str):
        lock = self._acquire_entry(session_id)
        try:
            with lock:
                yield
        finally:
            self._release_entry(session_id)

    def __len__(self):
        with self._guard:
            return len(self._locks)
