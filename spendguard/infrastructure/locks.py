"""Per-entity locks serializing read-modify-write on a single aggregate"""

import threading
import weakref


class EntityLocks:
    """
    Lazily created re-entrant lock per entity id.

    Entries are weak: a lock lives only while some caller holds it, so the table stays
    as large as the set of entities currently being mutated.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = weakref.WeakValueDictionary()

    def for_key(self, key: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.RLock()
                self._locks[key] = lock
            return lock

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)
