"""
Authorization Code Module

Short-lived, single-use numeric codes that gate transfers. The store keeps at
most one code per account: issuing replaces the previous code, a successful
transfer deletes it, and anything else simply expires when checked.
"""

import hmac
import secrets
from datetime import datetime, timezone, timedelta
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .storage import StorageInterface, StorageRecord


def generate_code(length: int = 6) -> str:
    """Uniform fixed-width numeric code; leading zeros are valid digits"""
    return f"{secrets.randbelow(10 ** length):0{length}d}"


@dataclass
class AuthorizationCode(StorageRecord):
    """Outstanding code for one account; id is the account id"""
    code: str = ""
    expires_at: Optional[datetime] = None
    credential_id: Optional[str] = None

    @property
    def account_id(self) -> str:
        return self.id

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is None or now >= self.expires_at

    def matches(self, presented: str) -> bool:
        """Exact comparison, no normalization, constant time"""
        try:
            presented_bytes = presented.encode("utf-8")
        except UnicodeEncodeError:
            return False
        return hmac.compare_digest(self.code.encode("utf-8"), presented_bytes)

    def seconds_remaining(self, now: datetime) -> int:
        if self.is_expired(now):
            return 0
        return int((self.expires_at - now).total_seconds())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'AuthorizationCode':
        data = dict(data)
        if isinstance(data.get('expires_at'), str):
            data['expires_at'] = datetime.fromisoformat(data['expires_at'])
        return super().from_dict(data)


class AuthorizationCodeStore:
    """
    At-most-one-code-per-account table

    Callers serialize issue/validate/consume per account (the engine holds
    the account lock); the per-account primary key keeps a single current
    code even without it.
    """

    def __init__(
        self,
        storage: StorageInterface,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        ttl_seconds: int = 300,
        code_length: int = 6
    ):
        self.storage = storage
        self.clock = clock
        self.ttl = timedelta(seconds=ttl_seconds)
        self.code_length = code_length
        self.table_name = "authorization_codes"

    def issue(self, account_id: str, credential_id: Optional[str] = None) -> AuthorizationCode:
        """
        Generate a fresh code valid for the configured TTL and store it,
        replacing (and so invalidating) any previous code for the account.

        Does not check the credential or the delivery address; the engine
        does that before calling.
        """
        now = self.clock()
        issued = AuthorizationCode(
            id=account_id,
            created_at=now,
            updated_at=now,
            code=generate_code(self.code_length),
            expires_at=now + self.ttl,
            credential_id=credential_id
        )
        self.storage.save(self.table_name, account_id, issued.to_dict())
        return issued

    def get(self, account_id: str) -> Optional[AuthorizationCode]:
        data = self.storage.load(self.table_name, account_id)
        if data:
            return AuthorizationCode.from_dict(data)
        return None

    def validate(self, account_id: str, presented: Optional[str]) -> bool:
        """True iff a code exists for the account, equals presented and has not expired"""
        if not isinstance(presented, str) or not presented:
            return False
        current = self.get(account_id)
        if current is None:
            return False
        return current.matches(presented) and not current.is_expired(self.clock())

    def consume(self, account_id: str) -> bool:
        """Delete the account's code; True if one was present"""
        return self.storage.delete(self.table_name, account_id)

    def validate_and_consume(self, account_id: str, presented: Optional[str]) -> bool:
        """
        Validate and, on success, delete the code in one atomic step.

        Inside an enclosing storage.atomic() block the deletion commits or
        rolls back with that block.
        """
        with self.storage.atomic():
            if not self.validate(account_id, presented):
                return False
            self.consume(account_id)
            return True
