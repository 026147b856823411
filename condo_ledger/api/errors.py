"""API error handling and response helpers."""

from typing import Any, Dict, NoReturn

from fastapi import HTTPException

from condo_ledger.services.errors import LedgerError


def error_response(error: LedgerError) -> Dict[str, Any]:
    """Create a standardized error response."""
    return {
        "error": {
            "code": error.code,
            "message": error.message,
            "retryable": error.retryable,
        }
    }


def raise_app_error(error: LedgerError) -> NoReturn:
    """Raise an HTTPException from a LedgerError."""
    raise HTTPException(
        status_code=error.http_status,
        detail=error_response(error),
    ) from error
