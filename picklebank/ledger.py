"""
Transaction Log Module

Append-only log of balance-affecting events. Each entry belongs to exactly
one account (the one whose balance it moved) and stores the signed delta
applied to it, so a transfer writes two entries with opposite signs and the
entries of any account always sum to its balance. Entries are never updated
or deleted.
"""

from datetime import datetime, timezone
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Any, List, Optional
from enum import Enum

from .storage import StorageInterface


class EntryType(Enum):
    """Kinds of ledger events"""
    TRANSFER_OUT = "transfer_out"  # Sender side of a peer transfer
    TRANSFER_IN = "transfer_in"    # Receiver side of a peer transfer
    WITHDRAWAL = "withdrawal"      # Cash-out, settled manually outside the ledger
    DEPOSIT = "deposit"            # Cash-in booked by an operator


@dataclass(frozen=True)
class LedgerEntry:
    """
    Immutable record of one signed balance change

    from_account_id is None for external cash-in, to_account_id is None for
    external cash-out. date has day resolution; recorded_at keeps the exact
    time for audits. Recency ordering always uses id.
    """
    id: int
    account_id: str
    entry_type: EntryType
    from_account_id: Optional[str]
    to_account_id: Optional[str]
    amount: int
    date: str
    description: str
    recorded_at: datetime

    @property
    def counterparty_id(self) -> Optional[str]:
        """The other account involved, if any"""
        if self.account_id == self.from_account_id:
            return self.to_account_id
        return self.from_account_id

    @property
    def is_debit(self) -> bool:
        return self.amount < 0

    def to_dict(self) -> Dict[str, Any]:
        result = asdict(self)
        result['entry_type'] = self.entry_type.value
        result['recorded_at'] = self.recorded_at.isoformat()
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'LedgerEntry':
        data = dict(data)
        data['entry_type'] = EntryType(data['entry_type'])
        data['recorded_at'] = datetime.fromisoformat(data['recorded_at'])
        return cls(**data)


class TransactionLog:
    """Durable append-only sequence of ledger entries"""

    def __init__(self, storage: StorageInterface,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.storage = storage
        self.clock = clock
        self.table_name = "ledger_entries"
        self.storage.add_index(self.table_name, "account_id")

    def append(
        self,
        account_id: str,
        amount: int,
        entry_type: EntryType,
        description: str,
        from_account_id: Optional[str] = None,
        to_account_id: Optional[str] = None
    ) -> LedgerEntry:
        """
        Write a new entry with the next id from the store's sequence.

        Must run inside the same atomic block as the balance change it
        records.

        Raises:
            ValueError: If amount is zero
        """
        if amount == 0:
            raise ValueError("Ledger entries must move a non-zero amount")

        now = self.clock()
        entry = LedgerEntry(
            id=self.storage.next_sequence(self.table_name),
            account_id=account_id,
            entry_type=entry_type,
            from_account_id=from_account_id,
            to_account_id=to_account_id,
            amount=amount,
            date=now.date().isoformat(),
            description=description,
            recorded_at=now
        )
        self.storage.insert(self.table_name, str(entry.id), entry.to_dict())
        return entry

    def get(self, entry_id: int) -> Optional[LedgerEntry]:
        data = self.storage.load(self.table_name, str(entry_id))
        if data:
            return LedgerEntry.from_dict(data)
        return None

    def entries_for_account(self, account_id: str, limit: Optional[int] = None) -> List[LedgerEntry]:
        """
        Entries that moved the account's balance, most recent first by id.

        Args:
            account_id: Account to list
            limit: Maximum number of entries to return (None for all)
        """
        records = self.storage.find(
            self.table_name, {"account_id": account_id},
            order_by="id", descending=True, limit=limit
        )
        return [LedgerEntry.from_dict(data) for data in records]

    def balance_of(self, account_id: str) -> int:
        """Sum of every entry that moved the account's balance"""
        return sum(e.amount for e in self.entries_for_account(account_id))

    def count(self) -> int:
        return self.storage.count(self.table_name)
