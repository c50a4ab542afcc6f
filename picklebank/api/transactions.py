"""
Transfer and withdrawal endpoints
"""

from fastapi import APIRouter, Depends

from .dependencies import get_engine
from .schemas import TransferRequest, WithdrawRequest
from ..engine import LedgerEngine


router = APIRouter()


@router.post("/transfers")
def transfer(request: TransferRequest, engine: LedgerEngine = Depends(get_engine)):
    """Transfer between accounts using a card and a fresh security code"""
    new_balance = engine.transfer(
        from_account_id=request.from_account_id,
        to_account_id=request.to_account_id,
        amount=request.amount,
        credential_id=request.credential_id,
        presented_code=request.code
    )
    return {"success": True, "new_balance": new_balance}


@router.post("/withdrawals")
def withdraw(request: WithdrawRequest, engine: LedgerEngine = Depends(get_engine)):
    """Book a cash withdrawal to be paid out manually"""
    new_balance = engine.withdraw(request.account_id, request.amount)
    return {
        "success": True,
        "new_balance": new_balance,
        "note": "Hand out the cash manually now."
    }
