# Overview: Maps OperationResult codes onto HTTP responses.

from __future__ import annotations

from typing import Optional

from .services.results import OperationResult

STATUS_BY_CODE = {
    "validation": 400,
    "auth_error": 400,
    "permission_denied": 403,
    "not_found": 404,
    "conflict": 409,
    "store_error": 500,
    "bootstrap_failed": 500,
}


def result_response(result: OperationResult, success_status: int = 200, overrides: Optional[dict] = None):
    if result.success:
        return result.to_dict(), success_status
    status = (overrides or {}).get(result.code) or STATUS_BY_CODE.get(result.code, 400)
    return result.to_dict(), status
