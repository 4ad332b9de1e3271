from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    INVALID_STATE = "invalid_state"
    VALIDATION_ERROR = "validation_error"
    PERSISTENCE_ERROR = "persistence_error"


class ClearanceError(Exception):
    """Base class for every recoverable error raised by the clearance core.

    Each subclass carries a fixed ``code`` so the HTTP layer can pick a
    status code without inspecting messages.
    """

    code: ErrorCode = ErrorCode.VALIDATION_ERROR

    def __init__(self, message: str, *, detail: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.detail:
            body["detail"] = self.detail
        return body


class ForbiddenError(ClearanceError):
    code = ErrorCode.FORBIDDEN


class NotFoundError(ClearanceError):
    code = ErrorCode.NOT_FOUND


class InvalidStateError(ClearanceError):
    code = ErrorCode.INVALID_STATE


class ValidationFailedError(ClearanceError):
    code = ErrorCode.VALIDATION_ERROR


class PersistenceError(ClearanceError):
    code = ErrorCode.PERSISTENCE_ERROR
