"""
Security code endpoints
"""

from fastapi import APIRouter, Depends, status

from .dependencies import get_engine
from .schemas import IssueCodeRequest
from ..engine import LedgerEngine


router = APIRouter()


@router.post("/codes", status_code=status.HTTP_201_CREATED)
def request_code(request: IssueCodeRequest, engine: LedgerEngine = Depends(get_engine)):
    """Issue a transfer code and send it to the account's linked handle"""
    issuance = engine.issue_authorization_code(request.account_id, request.credential_id)
    # The code itself only travels through the notification channel
    return {
        "success": True,
        "message": "Security code sent",
        "expires_at": issuance.expires_at.isoformat()
    }
