"""
Tests for the credential registry
"""

import pytest

from picklebank.storage import InMemoryStorage
from picklebank.credentials import CredentialRegistry
from picklebank.errors import DuplicateCredential, InvalidInput

from helpers import FakeClock


class TestCredentialRegistry:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.registry = CredentialRegistry(self.storage, FakeClock())

    def test_register_and_resolve(self):
        credential = self.registry.register("CARD1", "alice")

        assert credential.id == "CARD1"
        assert credential.owner_account_id == "alice"
        assert self.registry.resolve_owner("CARD1") == "alice"
        assert self.registry.is_owned_by("CARD1", "alice")
        assert not self.registry.is_owned_by("CARD1", "bob")

    def test_unknown_credential(self):
        assert self.registry.resolve_owner("NOPE") is None
        assert not self.registry.is_owned_by("NOPE", "alice")

    def test_duplicate_registration_rejected(self):
        self.registry.register("CARD1", "alice")

        with pytest.raises(DuplicateCredential):
            self.registry.register("CARD1", "mallory")

        # Ownership is immutable
        assert self.registry.resolve_owner("CARD1") == "alice"

    def test_missing_fields_rejected(self):
        with pytest.raises(InvalidInput):
            self.registry.register("", "alice")
        with pytest.raises(InvalidInput):
            self.registry.register("CARD1", "")

    def test_credentials_for_account(self):
        self.registry.register("CARD1", "alice")
        self.registry.register("CARD2", "alice")
        self.registry.register("CARD3", "bob")

        assert sorted(c.id for c in self.registry.credentials_for("alice")) == ["CARD1", "CARD2"]
