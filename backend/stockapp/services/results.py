# Overview: Uniform success/failure outcome returned by write operations.

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class OperationResult:
    """
    Outcome of a store or auth operation.

    Services never let a store/auth error escape to callers expecting a
    definite outcome; they return OperationResult.fail(...) instead.
    `code` is a short machine-readable reason the HTTP layer maps to a
    status ("not_found", "permission_denied", "conflict", ...).
    """
    success: bool
    error: Optional[str] = None
    code: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, **data) -> "OperationResult":
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: str, code: str = "error") -> "OperationResult":
        return cls(success=False, error=error, code=code)

    def __bool__(self) -> bool:
        return self.success

    def to_dict(self) -> dict:
        payload = {"success": self.success, **self.data}
        if not self.success:
            payload["error"] = self.error
        return payload
