"""
Account Management Module

The ledger store: one row per named account holding its current balance in
minor units and the optional handle codes are delivered to. Accounts are
provisioned lazily with a zero balance the first time anything references
them, and are never deleted.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, List, Optional

from .storage import StorageInterface, StorageRecord, RecordExistsError
from .errors import InsufficientFunds
from .logging_config import get_logger, log_action


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Account(StorageRecord):
    """Named balance holder"""
    balance: int = 0
    notification_address: Optional[str] = None
    version: int = 0  # Incremented on every balance change

    @property
    def has_notification_address(self) -> bool:
        return bool(self.notification_address)


class AccountStore:
    """Durable account balances keyed by account id"""

    def __init__(self, storage: StorageInterface, clock: Callable[[], datetime] = utcnow):
        self.storage = storage
        self.clock = clock
        self.table_name = "accounts"
        self.logger = get_logger("picklebank.accounts")

    def get(self, account_id: str) -> Optional[Account]:
        """Load an account without provisioning it"""
        data = self.storage.load(self.table_name, account_id)
        if data:
            return Account.from_dict(data)
        return None

    def get_or_create(self, account_id: str) -> Account:
        """
        Read-or-create: return the account, provisioning it at balance 0 if
        this is the first reference to it.

        Provisioning is a visible side effect; the row exists afterwards even
        when the caller only asked for a balance.
        """
        account = self.get(account_id)
        if account:
            return account

        now = self.clock()
        account = Account(id=account_id, created_at=now, updated_at=now)
        try:
            self.storage.insert(self.table_name, account_id, account.to_dict())
        except RecordExistsError:
            # Another caller provisioned it first
            return self.get(account_id)

        log_action(self.logger, "info", "Account provisioned",
                   account_id=account_id, action="provision_account")
        return account

    def apply_delta(self, account_id: str, delta: int) -> Account:
        """
        Add a signed delta to an account balance.

        Bypasses every business check except the non-negative balance floor.
        Only the ledger engine calls this, while holding the account lock and
        inside storage.atomic(), together with the matching ledger entry.
        """
        account = self.get_or_create(account_id)
        new_balance = account.balance + delta
        if new_balance < 0:
            raise InsufficientFunds(
                f"Balance of {account_id} cannot go below zero",
                context={"balance": account.balance, "delta": delta}
            )

        account.balance = new_balance
        account.version += 1
        account.updated_at = self.clock()
        self.storage.save(self.table_name, account_id, account.to_dict())
        return account

    def set_notification_address(self, account_id: str, address: Optional[str]) -> Account:
        """Link (or with None, unlink) the handle authorization codes go to"""
        account = self.get_or_create(account_id)
        account.notification_address = address or None
        account.updated_at = self.clock()
        self.storage.save(self.table_name, account_id, account.to_dict())

        log_action(self.logger, "info",
                   "Notification address linked" if address else "Notification address removed",
                   account_id=account_id, action="link_notification_address")
        return account

    def list_accounts(self) -> List[Account]:
        accounts = [Account.from_dict(data) for data in self.storage.load_all(self.table_name)]
        accounts.sort(key=lambda a: a.id)
        return accounts
