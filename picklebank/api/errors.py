"""
Exception handlers rendering ledger errors as JSON
"""

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ..errors import ErrorCodes, LedgerError
from ..logging_config import get_logger


logger = get_logger("picklebank.api")

STATUS_CODES = {
    ErrorCodes.INVALID_INPUT: 400,
    ErrorCodes.INVALID_AMOUNT: 400,
    ErrorCodes.UNAUTHORIZED: 401,
    ErrorCodes.INVALID_CREDENTIAL: 403,
    ErrorCodes.INVALID_OR_EXPIRED_CODE: 403,
    ErrorCodes.INSUFFICIENT_FUNDS: 409,
    ErrorCodes.UNLINKED_NOTIFICATION_TARGET: 409,
    ErrorCodes.DUPLICATE_CREDENTIAL: 409,
    ErrorCodes.STORAGE_FAILURE: 503,
}


def error_response(status_code: int, code: str, message: str, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={
            "success": False,
            "error": {"code": code, "message": message, "retryable": retryable}
        }
    )


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    return error_response(
        STATUS_CODES.get(exc.code, 400), exc.code, exc.message, retryable=exc.retryable
    )


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first_error = exc.errors()[0]
    field = ".".join(str(loc) for loc in first_error.get("loc", []) if loc != "body")
    logger.info(f"Rejected request to {request.url.path}: {first_error.get('msg')} ({field})")
    return error_response(
        400, ErrorCodes.INVALID_INPUT,
        f"Missing or invalid field '{field}': {first_error.get('msg', 'validation error')}"
    )
