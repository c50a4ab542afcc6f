"""
Account query endpoints
"""

from typing import Optional
from fastapi import APIRouter, Depends

from .dependencies import get_engine
from .schemas import LedgerEntryModel
from ..engine import LedgerEngine


router = APIRouter()


@router.get("/{account_id}/balance")
def get_balance(account_id: str, engine: LedgerEngine = Depends(get_engine)):
    """Current balance; unknown accounts are opened with zero balance"""
    return {
        "success": True,
        "account_id": account_id,
        "balance": engine.get_balance(account_id)
    }


@router.get("/{account_id}/transactions")
def list_transactions(
    account_id: str,
    limit: Optional[int] = None,
    engine: LedgerEngine = Depends(get_engine)
):
    """Most recent ledger entries first"""
    entries = engine.list_recent_transactions(account_id, limit=limit)
    return {
        "success": True,
        "account_id": account_id,
        "transactions": [LedgerEntryModel.from_entry(entry) for entry in entries]
    }
