"""
Admin endpoints (card provisioning, notification links, cash deposits)

Every route requires the pre-shared secret in the X-Admin-Secret header.
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_engine, require_admin
from .schemas import RegisterCardRequest, NotificationAddressRequest, DepositRequest
from ..engine import LedgerEngine


router = APIRouter(dependencies=[Depends(require_admin)])


@router.post("/cards", status_code=status.HTTP_201_CREATED)
def add_card(request: RegisterCardRequest, engine: LedgerEngine = Depends(get_engine)):
    credential = engine.register_credential(request.credential_id, request.owner_account_id)
    return {
        "success": True,
        "message": "Bank card added",
        "credential_id": credential.id,
        "owner_account_id": credential.owner_account_id
    }


@router.put("/accounts/{account_id}/notification-address")
def set_notification_address(
    account_id: str,
    request: NotificationAddressRequest,
    engine: LedgerEngine = Depends(get_engine)
):
    account = engine.link_notification_address(account_id, request.address)
    return {
        "success": True,
        "account_id": account.id,
        "notification_linked": account.has_notification_address
    }


@router.post("/deposits")
def deposit(request: DepositRequest, engine: LedgerEngine = Depends(get_engine)):
    kwargs = {}
    if request.description:
        kwargs["description"] = request.description
    new_balance = engine.deposit(request.account_id, request.amount, **kwargs)
    return {"success": True, "new_balance": new_balance}


@router.get("/accounts/{account_id}/reconciliation")
def reconcile(account_id: str, engine: LedgerEngine = Depends(get_engine)):
    result = engine.reconcile(account_id)
    return {
        "account_id": result.account_id,
        "balance": result.balance,
        "ledger_total": result.ledger_total,
        "consistent": result.consistent
    }
