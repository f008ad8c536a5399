"""
Error taxonomy for the fulfillment core.
Every error carries a stable `kind` code and the HTTP status the API layer maps it to.
"""
from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    BAD_REQUEST = "BAD_REQUEST"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"


class LedgerError(Exception):
    kind: ErrorKind = ErrorKind.BAD_REQUEST
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def as_dict(self) -> dict:
        return {"code": self.kind.value, "message": self.message}


class NotFound(LedgerError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404


class Forbidden(LedgerError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403


class Conflict(LedgerError):
    """State already terminal, duplicate operation or exhausted quota."""

    kind = ErrorKind.CONFLICT
    status_code = 409


class BadRequest(LedgerError):
    kind = ErrorKind.BAD_REQUEST
    status_code = 400


class InsufficientBalance(LedgerError):
    """Points balance or minimum-purchase shortfall."""

    kind = ErrorKind.INSUFFICIENT_BALANCE
    status_code = 409
