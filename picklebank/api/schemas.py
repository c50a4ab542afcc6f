"""
Pydantic schemas for API requests and responses
"""

from datetime import datetime
from typing import Any, Optional
from pydantic import BaseModel, Field

from ..ledger import LedgerEntry


AMOUNT_DESCRIPTION = "Positive whole number of minor units"


class LedgerEntryModel(BaseModel):
    id: int
    date: str
    description: str
    amount: int
    entry_type: str
    from_account_id: Optional[str] = None
    to_account_id: Optional[str] = None
    recorded_at: datetime

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> 'LedgerEntryModel':
        return cls(
            id=entry.id,
            date=entry.date,
            description=entry.description,
            amount=entry.amount,
            entry_type=entry.entry_type.value,
            from_account_id=entry.from_account_id,
            to_account_id=entry.to_account_id,
            recorded_at=entry.recorded_at
        )


# Authorization schemas
class IssueCodeRequest(BaseModel):
    account_id: str
    credential_id: str = Field(..., description="Bank card id owned by the account")


# Transfer schemas
class TransferRequest(BaseModel):
    from_account_id: str
    to_account_id: str
    amount: Any = Field(..., description=AMOUNT_DESCRIPTION)
    credential_id: str
    code: str = Field(..., description="Security code delivered out of band")


class WithdrawRequest(BaseModel):
    account_id: str
    amount: Any = Field(..., description=AMOUNT_DESCRIPTION)


# Admin schemas
class RegisterCardRequest(BaseModel):
    credential_id: str
    owner_account_id: str


class NotificationAddressRequest(BaseModel):
    address: Optional[str] = Field(None, description="Delivery handle, null to unlink")


class DepositRequest(BaseModel):
    account_id: str
    amount: Any = Field(..., description=AMOUNT_DESCRIPTION)
    description: Optional[str] = None
