"""
Credential Registry Module

Maps card credentials to the single account that owns them. Registration is
an administrative, create-only operation; ownership never changes afterwards.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Callable, List, Optional

from .storage import StorageInterface, StorageRecord, RecordExistsError
from .errors import DuplicateCredential, InvalidInput
from .logging_config import get_logger, log_action


@dataclass
class Credential(StorageRecord):
    """Physical or virtual card bound to one account; id is the card id"""
    owner_account_id: str = ""


class CredentialRegistry:
    """Durable card id -> owner account mapping"""

    def __init__(self, storage: StorageInterface,
                 clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)):
        self.storage = storage
        self.clock = clock
        self.table_name = "credentials"
        self.logger = get_logger("picklebank.credentials")

    def register(self, credential_id: str, owner_account_id: str) -> Credential:
        """
        Bind a new credential to its owner.

        Raises:
            InvalidInput: If either identifier is empty
            DuplicateCredential: If the credential id is already registered
        """
        if not credential_id or not owner_account_id:
            raise InvalidInput("Missing credential id or owner")

        now = self.clock()
        credential = Credential(
            id=credential_id,
            created_at=now,
            updated_at=now,
            owner_account_id=owner_account_id
        )
        try:
            self.storage.insert(self.table_name, credential_id, credential.to_dict())
        except RecordExistsError:
            log_action(self.logger, "warning", "Credential already registered",
                       account_id=owner_account_id, action="register_credential",
                       resource=credential_id)
            raise DuplicateCredential(f"Credential {credential_id} is already registered")

        log_action(self.logger, "info", "Credential registered",
                   account_id=owner_account_id, action="register_credential",
                   resource=credential_id)
        return credential

    def get(self, credential_id: str) -> Optional[Credential]:
        data = self.storage.load(self.table_name, credential_id)
        if data:
            return Credential.from_dict(data)
        return None

    def resolve_owner(self, credential_id: str) -> Optional[str]:
        """Return the owning account id, or None for an unknown credential"""
        credential = self.get(credential_id)
        return credential.owner_account_id if credential else None

    def is_owned_by(self, credential_id: str, account_id: str) -> bool:
        return self.resolve_owner(credential_id) == account_id

    def credentials_for(self, account_id: str) -> List[Credential]:
        return [
            Credential.from_dict(data)
            for data in self.storage.find(self.table_name, {"owner_account_id": account_id})
        ]
