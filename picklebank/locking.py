"""
Per-Account Locking

Serializes operations that touch the same account while letting operations
on disjoint accounts run in parallel. Locks are always taken in sorted id
order so two transfers in opposite directions cannot deadlock, and every
acquisition is bounded by a timeout.
"""

import threading
import time
from contextlib import contextmanager
from typing import Dict, Iterable, List


class LockTimeout(Exception):
    """An account lock could not be acquired in time"""

    def __init__(self, account_id: str, timeout: float):
        self.account_id = account_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for account {account_id}")


class AccountLockManager:
    """
    Registry of one lock per account id

    Entries are reference counted and dropped once no caller holds or waits
    for them, so the registry only tracks accounts with operations in flight.
    """

    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout
        self._locks: Dict[str, List] = {}  # account id -> [lock, users]
        self._registry_lock = threading.Lock()

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._locks)

    def _checkout(self, account_id: str) -> threading.Lock:
        with self._registry_lock:
            entry = self._locks.get(account_id)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[account_id] = entry
            entry[1] += 1
            return entry[0]

    def _checkin(self, account_id: str) -> None:
        with self._registry_lock:
            entry = self._locks[account_id]
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[account_id]

    @contextmanager
    def hold(self, account_ids: Iterable[str]):
        """
        Hold the locks of every given account for the duration of the block.

        Raises:
            LockTimeout: If the locks are not all acquired within the timeout
        """
        ordered = sorted(set(account_ids))
        deadline = time.monotonic() + self.timeout
        checked_out: List[str] = []
        acquired: List[threading.Lock] = []
        try:
            for account_id in ordered:
                lock = self._checkout(account_id)
                checked_out.append(account_id)
                remaining = max(0.0, deadline - time.monotonic())
                if not lock.acquire(timeout=remaining):
                    raise LockTimeout(account_id, self.timeout)
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for account_id in checked_out:
                self._checkin(account_id)
