"""
Ledger Engine

Orchestrates the account store, transaction log, credential registry and
authorization code store. Every mutating operation validates its inputs,
takes the locks of the accounts it touches and runs inside one storage
transaction, so it either applies completely or not at all.
"""

from contextlib import contextmanager
from concurrent.futures import Future
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterable, List, Optional

from .storage import StorageInterface, StorageError
from .accounts import Account, AccountStore, utcnow
from .ledger import EntryType, LedgerEntry, TransactionLog
from .credentials import Credential, CredentialRegistry
from .authorization import AuthorizationCode, AuthorizationCodeStore
from .locking import AccountLockManager, LockTimeout
from .notifications import NotificationDispatcher
from .errors import (
    ErrorCodes, LedgerError, InvalidInput, InvalidCredential, InvalidOrExpiredCode,
    InsufficientFunds, UnlinkedNotificationTarget, StorageFailure
)
from .logging_config import get_logger, log_action


WITHDRAWAL_DESCRIPTION = "cash withdrawal"
DEPOSIT_DESCRIPTION = "cash deposit"


@dataclass
class CodeIssuance:
    """A stored code and the handle of its (possibly still running) delivery"""
    code: AuthorizationCode
    delivery: Optional[Future] = None

    @property
    def expires_at(self) -> datetime:
        return self.code.expires_at


@dataclass
class ReconciliationResult:
    account_id: str
    balance: int
    ledger_total: int

    @property
    def consistent(self) -> bool:
        return self.balance == self.ledger_total


def parse_amount(value: Any) -> int:
    """
    Coerce a caller-supplied amount to a positive integer number of minor units.

    Accepts ints, integral floats and numeric strings; rejects booleans,
    fractions, zero and negatives.

    Raises:
        InvalidInput: With code invalid_amount
    """
    amount = None
    if isinstance(value, bool) or value is None:
        amount = None
    elif isinstance(value, int):
        amount = value
    elif isinstance(value, float):
        if value.is_integer():
            amount = int(value)
    elif isinstance(value, str):
        text = value.strip()
        try:
            amount = int(text)
        except ValueError:
            try:
                number = float(text)
            except ValueError:
                number = None
            if number is not None and number.is_integer():
                amount = int(number)

    if amount is None or amount <= 0:
        raise InvalidInput("Invalid amount", code=ErrorCodes.INVALID_AMOUNT,
                           context={"amount": str(value)})
    return amount


def is_encodable(value: str) -> bool:
    """False for strings the store cannot persist, such as lone surrogates"""
    try:
        value.encode("utf-8")
    except UnicodeEncodeError:
        return False
    return True


def require_identifier(value: Any, field_name: str) -> str:
    """Reject missing, non-string, blank or unencodable identifiers"""
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"Missing {field_name}", context={"field": field_name})
    if not is_encodable(value):
        raise InvalidInput(f"Invalid {field_name}", context={"field": field_name})
    return value


class LedgerEngine:
    """
    Single authoritative ledger instance

    All collaborators share the injected storage handle. The dispatcher is
    optional; without one, codes are stored but nobody is notified.
    """

    def __init__(
        self,
        storage: StorageInterface,
        dispatcher: Optional[NotificationDispatcher] = None,
        clock: Callable[[], datetime] = utcnow,
        code_ttl_seconds: int = 300,
        code_length: int = 6,
        lock_timeout: float = 5.0,
        default_transactions_limit: int = 50,
        max_transactions_limit: int = 500
    ):
        self.storage = storage
        self.dispatcher = dispatcher
        self.clock = clock
        self.accounts = AccountStore(storage, clock)
        self.transaction_log = TransactionLog(storage, clock)
        self.credentials = CredentialRegistry(storage, clock)
        self.codes = AuthorizationCodeStore(
            storage, clock, ttl_seconds=code_ttl_seconds, code_length=code_length
        )
        self.locks = AccountLockManager(timeout=lock_timeout)
        self.default_transactions_limit = default_transactions_limit
        self.max_transactions_limit = max_transactions_limit
        self.logger = get_logger("picklebank.engine")

    # Atomic boundary

    @contextmanager
    def _storage_guard(self, action: str):
        """Report backend failures of reads and admin writes as StorageFailure"""
        try:
            yield
        except StorageError as e:
            log_action(self.logger, "error", f"Storage failure during {action}: {e}",
                       action=action)
            raise StorageFailure("Storage unavailable, retry later") from e

    @contextmanager
    def _transaction(self, account_ids: Iterable[str], action: str, read_only: bool = False):
        """
        Hold the account locks and one storage transaction for the block.

        Domain errors roll back and propagate unchanged. Anything else rolls
        back and surfaces as a retryable StorageFailure.
        """
        account_ids = list(account_ids)
        try:
            with self.locks.hold(account_ids):
                with self.storage.atomic(immediate=not read_only):
                    yield
        except LedgerError as e:
            log_action(self.logger, "warning", f"{action} rejected: {e.message}",
                       account_id=account_ids[0], action=action,
                       extra={"error_code": e.code})
            raise
        except LockTimeout as e:
            log_action(self.logger, "error", f"{action} aborted: {e}",
                       account_id=account_ids[0], action=action)
            raise StorageFailure("Account is busy, retry later") from e
        except Exception as e:
            self.logger.exception(f"{action} aborted and rolled back")
            raise StorageFailure("Transaction aborted, retry later") from e

    # Query surface

    def get_account(self, account_id: str) -> Account:
        """Read-or-create the account record"""
        require_identifier(account_id, "account id")
        with self._storage_guard("get_account"):
            return self.accounts.get_or_create(account_id)

    def get_balance(self, account_id: str) -> int:
        """
        Current balance of the account.

        Never fails on an unknown account: the account is provisioned with a
        zero balance as a side effect of the first lookup.
        """
        return self.get_account(account_id).balance

    def list_recent_transactions(self, account_id: str, limit: Optional[int] = None) -> List[LedgerEntry]:
        """
        The account's ledger entries, most recent first.

        Args:
            account_id: Account to list (provisioned if new)
            limit: Maximum entries, default 50
        """
        require_identifier(account_id, "account id")
        if limit is None:
            limit = self.default_transactions_limit
        if isinstance(limit, bool) or not isinstance(limit, int) or not 0 < limit <= self.max_transactions_limit:
            raise InvalidInput(
                f"limit must be between 1 and {self.max_transactions_limit}",
                context={"field": "limit"}
            )

        with self._storage_guard("list_recent_transactions"):
            self.accounts.get_or_create(account_id)
            return self.transaction_log.entries_for_account(account_id, limit=limit)

    # Mutating surface

    def issue_authorization_code(self, account_id: str, credential_id: str) -> CodeIssuance:
        """
        Issue a fresh transfer code for the account and send it out of band.

        The caller proves card ownership here; the code replaces any earlier
        one. Delivery is dispatched after the code is committed and its
        failure does not affect the code.

        Raises:
            InvalidInput: Missing identifiers
            InvalidCredential: Unknown card or card of another account
            UnlinkedNotificationTarget: No delivery address on file
            StorageFailure: Store unavailable, nothing was issued
        """
        require_identifier(account_id, "account id")
        require_identifier(credential_id, "credential id")

        with self._transaction([account_id], "issue_authorization_code"):
            if not self.credentials.is_owned_by(credential_id, account_id):
                raise InvalidCredential("Invalid bank card")

            account = self.accounts.get_or_create(account_id)
            if not account.has_notification_address:
                raise UnlinkedNotificationTarget(
                    f"No notification address linked to {account_id}"
                )

            issued = self.codes.issue(account_id, credential_id=credential_id)

        delivery = None
        if self.dispatcher:
            delivery = self.dispatcher.dispatch(account_id, account.notification_address, issued.code)
        else:
            log_action(self.logger, "warning", "No notifier configured, code not delivered",
                       account_id=account_id, action="issue_authorization_code")

        log_action(self.logger, "info", "Authorization code issued",
                   account_id=account_id, action="issue_authorization_code",
                   resource=credential_id,
                   extra={"expires_at": issued.expires_at.isoformat()})
        return CodeIssuance(code=issued, delivery=delivery)

    def transfer(
        self,
        from_account_id: str,
        to_account_id: str,
        amount: Any,
        credential_id: str,
        presented_code: str
    ) -> int:
        """
        Move funds between accounts, authorized by card and one-time code.

        Checks run in order: amount, card ownership, code, funds. Debit,
        credit, both ledger entries and consumption of the code commit
        together. A rejected code stays valid for a corrected retry; a
        consumed one cannot be reused, so retries after success or after a
        StorageFailure may need a new code.

        Returns:
            The sender's balance after the transfer

        Raises:
            InvalidInput: Bad amount, missing fields, or sender == receiver
            InvalidCredential: Card unknown or not owned by the sender
            InvalidOrExpiredCode: Code missing, wrong or expired
            InsufficientFunds: Sender balance below amount
            StorageFailure: Store unavailable, nothing was applied
        """
        amount = parse_amount(amount)
        require_identifier(from_account_id, "sender")
        require_identifier(to_account_id, "receiver")
        require_identifier(credential_id, "credential id")
        if not isinstance(presented_code, str) or not presented_code:
            raise InvalidInput("Missing security code", context={"field": "code"})
        if not is_encodable(presented_code):
            raise InvalidInput("Invalid security code", context={"field": "code"})
        if from_account_id == to_account_id:
            raise InvalidInput("Cannot transfer to the same account")

        with self._transaction([from_account_id, to_account_id], "transfer"):
            if not self.credentials.is_owned_by(credential_id, from_account_id):
                raise InvalidCredential("Invalid bank card")

            if not self.codes.validate(from_account_id, presented_code):
                raise InvalidOrExpiredCode("Invalid or expired security code")

            sender = self.accounts.get_or_create(from_account_id)
            self.accounts.get_or_create(to_account_id)
            if sender.balance < amount:
                raise InsufficientFunds(
                    "Insufficient balance",
                    context={"balance": sender.balance, "amount": amount}
                )

            sender = self.accounts.apply_delta(from_account_id, -amount)
            self.accounts.apply_delta(to_account_id, amount)
            self.transaction_log.append(
                from_account_id, -amount, EntryType.TRANSFER_OUT,
                f"Transfer to {to_account_id}",
                from_account_id=from_account_id, to_account_id=to_account_id
            )
            self.transaction_log.append(
                to_account_id, amount, EntryType.TRANSFER_IN,
                f"Received from {from_account_id}",
                from_account_id=from_account_id, to_account_id=to_account_id
            )
            self.codes.consume(from_account_id)

        log_action(self.logger, "info", "Transfer completed",
                   account_id=from_account_id, action="transfer",
                   resource=to_account_id,
                   extra={"amount": amount, "balance": sender.balance})
        return sender.balance

    def withdraw(self, account_id: str, amount: Any) -> int:
        """
        Book a cash withdrawal.

        Only debits the ledger; paying out the cash is a manual step for an
        operator. No card or code is required.

        Returns:
            The account's new balance

        Raises:
            InvalidInput: Bad amount or missing account
            InsufficientFunds: Balance below amount
            StorageFailure: Store unavailable, nothing was applied
        """
        amount = parse_amount(amount)
        require_identifier(account_id, "account id")

        with self._transaction([account_id], "withdraw"):
            account = self.accounts.get_or_create(account_id)
            if account.balance < amount:
                raise InsufficientFunds(
                    "Insufficient balance",
                    context={"balance": account.balance, "amount": amount}
                )

            account = self.accounts.apply_delta(account_id, -amount)
            self.transaction_log.append(
                account_id, -amount, EntryType.WITHDRAWAL, WITHDRAWAL_DESCRIPTION,
                from_account_id=account_id, to_account_id=None
            )

        log_action(self.logger, "info", "Withdrawal booked, manual cash-out pending",
                   account_id=account_id, action="withdraw",
                   extra={"amount": amount, "balance": account.balance})
        return account.balance

    # Administrative operations

    def deposit(self, account_id: str, amount: Any, description: str = DEPOSIT_DESCRIPTION) -> int:
        """Book cash handed in to an operator. Returns the new balance."""
        amount = parse_amount(amount)
        require_identifier(account_id, "account id")
        if description is not None and (not isinstance(description, str) or not is_encodable(description)):
            raise InvalidInput("Invalid description", context={"field": "description"})

        with self._transaction([account_id], "deposit"):
            account = self.accounts.apply_delta(account_id, amount)
            self.transaction_log.append(
                account_id, amount, EntryType.DEPOSIT, description or DEPOSIT_DESCRIPTION,
                from_account_id=None, to_account_id=account_id
            )

        log_action(self.logger, "info", "Deposit booked",
                   account_id=account_id, action="deposit",
                   extra={"amount": amount, "balance": account.balance})
        return account.balance

    def register_credential(self, credential_id: str, owner_account_id: str) -> Credential:
        """
        Bind a card to its owner.

        Raises:
            InvalidInput: Missing identifiers
            DuplicateCredential: Card already registered
        """
        require_identifier(credential_id, "credential id")
        require_identifier(owner_account_id, "owner")
        with self._storage_guard("register_credential"):
            return self.credentials.register(credential_id, owner_account_id)

    def link_notification_address(self, account_id: str, address: Optional[str]) -> Account:
        """Set the handle codes are delivered to; None unlinks it"""
        require_identifier(account_id, "account id")
        if address is not None and (not isinstance(address, str) or not address.strip()
                                    or not is_encodable(address)):
            raise InvalidInput("Invalid notification address", context={"field": "address"})

        with self._transaction([account_id], "link_notification_address"):
            return self.accounts.set_notification_address(account_id, address)

    def reconcile(self, account_id: str) -> ReconciliationResult:
        """
        Compare the stored balance with the sum of the account's entries.

        Read only: an unknown account reconciles as balance 0 and is not
        provisioned.
        """
        require_identifier(account_id, "account id")
        with self._transaction([account_id], "reconcile", read_only=True):
            account = self.accounts.get(account_id)
            total = self.transaction_log.balance_of(account_id)

        result = ReconciliationResult(account_id, account.balance if account else 0, total)
        if not result.consistent:
            log_action(self.logger, "error", "Balance does not match ledger",
                       account_id=account_id, action="reconcile",
                       extra={"balance": result.balance, "ledger_total": result.ledger_total})
        return result

    def reconcile_all(self) -> List[ReconciliationResult]:
        with self._storage_guard("reconcile_all"):
            account_ids = [account.id for account in self.accounts.list_accounts()]
        return [self.reconcile(account_id) for account_id in account_ids]

    def close(self) -> None:
        """Wait for pending deliveries and release the store"""
        if self.dispatcher:
            self.dispatcher.shutdown(wait=True)
        self.storage.close()
