"""
Per-key locks for serializing read-modify-write cycles
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterator


class _KeyEntry:
    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.RLock()
        self.holders = 0


class KeyedLock:
    """
    One lock per key (token id, chain id).

    An entry lives only while some thread holds or waits on it; the last
    one out removes it, so idle keys cost nothing.
    """

    def __init__(self):
        self._entries: Dict[str, _KeyEntry] = {}
        self._guard = threading.Lock()

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = _KeyEntry()
                self._entries[key] = entry
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._entries[key]
