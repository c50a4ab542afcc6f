"""
Tests for the account store: lazy provisioning, balance deltas and
notification addresses
"""

import pytest

from picklebank.storage import InMemoryStorage
from picklebank.accounts import Account, AccountStore
from picklebank.errors import InsufficientFunds

from helpers import FakeClock


class TestAccountStore:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.clock = FakeClock()
        self.accounts = AccountStore(self.storage, self.clock)

    def test_get_does_not_provision(self):
        assert self.accounts.get("alice") is None
        assert not self.storage.exists("accounts", "alice")

    def test_get_or_create_provisions_zero_balance(self):
        account = self.accounts.get_or_create("alice")

        assert account.id == "alice"
        assert account.balance == 0
        assert account.notification_address is None
        assert account.created_at == self.clock.now
        # The row now exists
        assert self.storage.exists("accounts", "alice")

    def test_get_or_create_returns_existing(self):
        self.accounts.get_or_create("alice")
        self.accounts.apply_delta("alice", 40)

        assert self.accounts.get_or_create("alice").balance == 40
        assert self.storage.count("accounts") == 1

    def test_apply_delta_updates_balance_and_version(self):
        self.accounts.apply_delta("alice", 100)
        account = self.accounts.apply_delta("alice", -30)

        assert account.balance == 70
        assert account.version == 2
        assert self.accounts.get("alice").balance == 70

    def test_apply_delta_never_goes_negative(self):
        self.accounts.apply_delta("alice", 10)

        with pytest.raises(InsufficientFunds):
            self.accounts.apply_delta("alice", -11)

        assert self.accounts.get("alice").balance == 10

    def test_set_notification_address(self):
        account = self.accounts.set_notification_address("alice", "discord:42")
        assert account.has_notification_address
        assert self.accounts.get("alice").notification_address == "discord:42"

        account = self.accounts.set_notification_address("alice", None)
        assert not account.has_notification_address

    def test_list_accounts_sorted(self):
        for name in ["carol", "alice", "bob"]:
            self.accounts.get_or_create(name)

        assert [a.id for a in self.accounts.list_accounts()] == ["alice", "bob", "carol"]

    def test_round_trip_through_dict(self):
        account = self.accounts.apply_delta("alice", 5)
        restored = Account.from_dict(account.to_dict())
        assert restored == account
