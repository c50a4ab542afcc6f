"""
Shared test doubles for the ledger test suite
"""

import threading
from datetime import datetime, timezone, timedelta
from typing import List, Optional, Tuple

from picklebank.storage import InMemoryStorage, StorageInterface
from picklebank.notifications import Notifier, NotificationDispatcher
from picklebank.engine import LedgerEngine


START = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock injected wherever the code asks for 'now'"""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingNotifier(Notifier):
    """Keeps every delivered (address, code) pair"""

    def __init__(self):
        self.sent: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    async def send_code(self, address: str, code: str) -> None:
        with self._lock:
            self.sent.append((address, code))


class FailingNotifier(Notifier):
    """Simulates an unreachable delivery channel"""

    def __init__(self):
        self.attempts = 0

    async def send_code(self, address: str, code: str) -> None:
        self.attempts += 1
        raise ConnectionError("delivery channel offline")


def make_engine(
    storage: Optional[StorageInterface] = None,
    notifier: Optional[Notifier] = None,
    clock: Optional[FakeClock] = None,
    **kwargs
) -> LedgerEngine:
    """Engine over in-memory storage with a recording notifier by default"""
    dispatcher = NotificationDispatcher(notifier or RecordingNotifier(), max_workers=2)
    return LedgerEngine(
        storage or InMemoryStorage(),
        dispatcher=dispatcher,
        clock=clock or FakeClock(),
        **kwargs
    )


def provision_card_holder(engine: LedgerEngine, account_id: str, card_id: str,
                          balance: int = 0, address: str = "discord:1234") -> None:
    """Register a card, link a delivery handle and fund the account"""
    engine.register_credential(card_id, account_id)
    engine.link_notification_address(account_id, address)
    if balance:
        engine.deposit(account_id, balance)
