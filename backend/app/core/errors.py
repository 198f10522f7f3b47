"""Caller-facing errors raised by the reorder engine."""

from __future__ import annotations

from typing import Any, Dict, Optional


class ReorderInputError(ValueError):
    """Raised for invalid caller input before any collaborator is contacted."""

    def __init__(
        self,
        message: str,
        code: str = "invalid_request",
        details: Optional[Any] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details
        super().__init__(message)

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload
