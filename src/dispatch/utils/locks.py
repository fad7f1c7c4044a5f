"""In-process lock table keyed by string (provider names, batch ids)."""

import threading


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        # Holders plus waiters
        self.users = 0


class KeyedLocks:
    """Named mutexes created on demand and dropped once nobody holds or waits on them.

    ``acquire(key, timeout=None)`` never waits.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._entries: dict[str, _Entry] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    def _enter(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _leave(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                del self._entries[key]

    def acquire(self, key: str, timeout: float | None = None) -> bool:
        entry = self._enter(key)
        if timeout is None:
            acquired = entry.lock.acquire(blocking=False)
        else:
            acquired = entry.lock.acquire(timeout=timeout)
        if not acquired:
            self._leave(key, entry)
        return acquired

    def release(self, key: str) -> None:
        with self._guard:
            entry = self._entries[key]
        entry.lock.release()
        self._leave(key, entry)
