"""
Tests for authorization code generation, expiry and single use
"""

import pytest
from datetime import timedelta
from unittest.mock import patch

from picklebank.storage import InMemoryStorage
from picklebank.authorization import (
    AuthorizationCode, AuthorizationCodeStore, generate_code
)

from helpers import FakeClock


class TestGenerateCode:

    def test_fixed_width_numeric(self):
        for _ in range(50):
            code = generate_code()
            assert len(code) == 6
            assert code.isdigit()

    def test_leading_zeros_kept(self):
        with patch("picklebank.authorization.secrets.randbelow", return_value=42) as randbelow:
            assert generate_code() == "000042"
        # Drawn from the full 6 digit range
        randbelow.assert_called_once_with(10 ** 6)

    def test_custom_length(self):
        assert len(generate_code(8)) == 8


class TestAuthorizationCodeStore:

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.clock = FakeClock()
        self.codes = AuthorizationCodeStore(self.storage, self.clock, ttl_seconds=300)

    def test_issue_sets_five_minute_expiry(self):
        issued = self.codes.issue("alice", credential_id="CARD1")

        assert issued.account_id == "alice"
        assert issued.expires_at == self.clock.now + timedelta(seconds=300)
        assert issued.credential_id == "CARD1"
        assert self.codes.get("alice").code == issued.code

    def test_valid_code(self):
        issued = self.codes.issue("alice")
        assert self.codes.validate("alice", issued.code)

    def test_wrong_code(self):
        issued = self.codes.issue("alice")
        wrong = "999999" if issued.code != "999999" else "000000"
        assert not self.codes.validate("alice", wrong)
        # A failed attempt does not consume the code
        assert self.codes.validate("alice", issued.code)

    def test_no_normalization(self):
        with patch("picklebank.authorization.secrets.randbelow", return_value=1234):
            self.codes.issue("alice")

        assert self.codes.validate("alice", "001234")
        assert not self.codes.validate("alice", "1234")
        assert not self.codes.validate("alice", " 001234")

    def test_missing_or_non_string_code(self):
        self.codes.issue("alice")
        assert not self.codes.validate("alice", None)
        assert not self.codes.validate("alice", "")
        assert not self.codes.validate("alice", 123456)

    def test_code_is_bound_to_its_account(self):
        issued = self.codes.issue("alice")
        assert not self.codes.validate("bob", issued.code)

    def test_expiry_boundary(self):
        issued = self.codes.issue("alice")

        self.clock.advance(299)
        assert self.codes.validate("alice", issued.code)

        self.clock.advance(2)  # T+301
        assert not self.codes.validate("alice", issued.code)

    def test_expires_exactly_at_deadline(self):
        issued = self.codes.issue("alice")
        self.clock.advance(300)
        assert not self.codes.validate("alice", issued.code)

    def test_reissue_invalidates_previous_code(self):
        with patch("picklebank.authorization.secrets.randbelow", side_effect=[111111, 222222]):
            first = self.codes.issue("alice")
            second = self.codes.issue("alice")

        assert not self.codes.validate("alice", first.code)
        assert self.codes.validate("alice", second.code)
        assert self.storage.count("authorization_codes") == 1

    def test_validate_and_consume_is_single_use(self):
        issued = self.codes.issue("alice")

        assert self.codes.validate_and_consume("alice", issued.code)
        assert not self.codes.validate_and_consume("alice", issued.code)
        assert self.codes.get("alice") is None

    def test_failed_validation_does_not_consume(self):
        issued = self.codes.issue("alice")
        wrong = "999999" if issued.code != "999999" else "000000"

        assert not self.codes.validate_and_consume("alice", wrong)
        assert self.codes.get("alice") is not None

    def test_consume_rolls_back_with_enclosing_transaction(self):
        issued = self.codes.issue("alice")

        with pytest.raises(RuntimeError):
            with self.storage.atomic():
                assert self.codes.validate_and_consume("alice", issued.code)
                raise RuntimeError("transfer failed after consumption")

        assert self.codes.validate("alice", issued.code)

    def test_round_trip_through_dict(self):
        issued = self.codes.issue("alice", credential_id="CARD1")
        restored = AuthorizationCode.from_dict(issued.to_dict())
        assert restored == issued
        assert restored.seconds_remaining(self.clock.now) == 300
