"""
System wiring and request dependencies
"""

import hmac
import threading
from typing import Optional

from fastapi import Depends, Header

from ..config import PickleBankConfig, get_config
from ..storage import StorageInterface, InMemoryStorage, SQLiteStorage
from ..notifications import Notifier, NotificationDispatcher, create_notifier
from ..engine import LedgerEngine
from ..errors import Unauthorized


def create_storage(config: PickleBankConfig) -> StorageInterface:
    """Storage backend selected by configuration"""
    if config.storage_backend == "memory":
        return InMemoryStorage()
    if config.storage_backend == "sqlite":
        return SQLiteStorage(config.database_path, busy_timeout=config.sqlite_busy_timeout)
    raise ValueError(f"Unknown storage backend: {config.storage_backend}")


class LedgerSystem:
    """Ledger engine with its storage and notifier, built from configuration"""

    def __init__(
        self,
        config: Optional[PickleBankConfig] = None,
        storage: Optional[StorageInterface] = None,
        notifier: Optional[Notifier] = None
    ):
        self.config = config or get_config()

        self.storage = storage or create_storage(self.config)
        notifier = notifier or create_notifier(
            self.config.notifier_url,
            token=self.config.notifier_token,
            timeout=self.config.notifier_timeout,
            discord_token=self.config.discord_token,
            discord_api_url=self.config.discord_api_url,
            reveal_codes=self.config.log_codes
        )
        self.dispatcher = NotificationDispatcher(
            notifier, max_workers=self.config.notification_workers
        )
        self.engine = LedgerEngine(
            self.storage,
            dispatcher=self.dispatcher,
            code_ttl_seconds=self.config.code_ttl_seconds,
            code_length=self.config.code_length,
            lock_timeout=self.config.lock_timeout_seconds,
            default_transactions_limit=self.config.recent_transactions_limit,
            max_transactions_limit=self.config.max_transactions_limit
        )

    @property
    def admin_secret(self) -> str:
        return self.config.admin_secret

    def close(self) -> None:
        self.engine.close()


_system: Optional[LedgerSystem] = None
_system_lock = threading.Lock()


def get_ledger_system() -> LedgerSystem:
    """Process-wide ledger system, created on first use"""
    global _system
    with _system_lock:
        if _system is None:
            _system = LedgerSystem()
        return _system


def get_engine(system: LedgerSystem = Depends(get_ledger_system)) -> LedgerEngine:
    return system.engine


def require_admin(
    x_admin_secret: Optional[str] = Header(None),
    system: LedgerSystem = Depends(get_ledger_system)
) -> None:
    """Pre-shared secret check for administrative endpoints"""
    expected = system.admin_secret
    if not expected:
        raise Unauthorized("Admin endpoints are disabled")
    if not x_admin_secret or not hmac.compare_digest(
        x_admin_secret.encode("utf-8"), expected.encode("utf-8")
    ):
        raise Unauthorized("Unauthorized")
