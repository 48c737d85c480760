from fastapi import HTTPException

from service_ledger.schemas.common import OperationResult

STATUS_BY_ERROR = {
    "validation": 400,
    "not_found": 404,
    "insufficient_stock": 409,
    "persistence": 500,
}


def raise_for_result(result: OperationResult) -> None:
    """Turn a failed core result into an HTTP error for the client."""
    if result.success:
        return
    raise HTTPException(STATUS_BY_ERROR.get(result.error, 400), result.message)
