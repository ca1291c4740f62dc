"""Per-variant mutual exclusion for the resolve -> merge -> stock sequence."""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List

from ..utils.exceptions import LockTimeoutError


class _Entry:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class VariantLockRegistry:
    """
    Named locks keyed by variant identity (``variant:12``,
    ``inventory_item:808``, ...).

    Keys are always taken in sorted order so two units of work that share
    several variants cannot deadlock, provided no caller takes a second
    batch while holding a first. Entries are dropped once nobody holds
    or waits on them. Database row locks (SELECT ... FOR UPDATE) back this
    up where the backend supports them.
    """

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._entries: Dict[str, _Entry] = {}

    def _checkout(self, key: str) -> _Entry:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = self._entries[key] = _Entry()
            entry.users += 1
            return entry

    def _checkin(self, key: str, entry: _Entry) -> None:
        with self._guard:
            entry.users -= 1
            if entry.users == 0:
                self._entries.pop(key, None)

    @contextmanager
    def hold(self, keys: Iterable[str], timeout: float = None) -> Iterator[List[str]]:
        """
        Acquire every key or none of them.

        Raises:
            LockTimeoutError: If the keys are not all acquired within ``timeout``
        """
        ordered = sorted(set(keys))
        deadline = time.monotonic() + (self.timeout if timeout is None else timeout)
        held = []
        try:
            for key in ordered:
                entry = self._checkout(key)
                remaining = max(0.0, deadline - time.monotonic())
                if not entry.lock.acquire(timeout=remaining):
                    self._checkin(key, entry)
                    raise LockTimeoutError(
                        f"Timed out waiting for lock {key}",
                        details={"key": key, "keys": ordered}
                    )
                held.append((key, entry))
            yield ordered
        finally:
            for key, entry in reversed(held):
                entry.lock.release()
                self._checkin(key, entry)

    def active_keys(self) -> List[str]:
        with self._guard:
            return sorted(self._entries)
