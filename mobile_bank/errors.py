"""
Error Taxonomy Module

Typed errors raised by the ledger, transfer engine, history reader and
credential service. Each kind maps to one HTTP status; the API renders them
as ``{"error": {"code": ..., "message": ...}}``.
"""

from enum import Enum
from typing import Any, Dict, Optional


class ErrorKind(Enum):
    """Machine-readable error codes shared by server and client"""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    ACCOUNT_NOT_FOUND = "ACCOUNT_NOT_FOUND"
    INSUFFICIENT_FUNDS = "INSUFFICIENT_FUNDS"
    INVALID_AMOUNT = "INVALID_AMOUNT"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    UNAUTHORIZED = "UNAUTHORIZED"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    MALFORMED_TOKEN = "MALFORMED_TOKEN"
    DUPLICATE_ENTRY = "DUPLICATE_ENTRY"
    TRANSACTION_FAILED = "TRANSACTION_FAILED"
    NETWORK_ERROR = "NETWORK_ERROR"  # Client-observed only


HTTP_STATUS = {
    ErrorKind.VALIDATION_ERROR: 400,
    ErrorKind.ACCOUNT_NOT_FOUND: 404,
    ErrorKind.INSUFFICIENT_FUNDS: 400,
    ErrorKind.INVALID_AMOUNT: 400,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.UNAUTHORIZED: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.INVALID_SIGNATURE: 401,
    ErrorKind.MALFORMED_TOKEN: 401,
    ErrorKind.DUPLICATE_ENTRY: 409,
    ErrorKind.TRANSACTION_FAILED: 500,
    ErrorKind.NETWORK_ERROR: 503,
}

DEFAULT_MESSAGES = {
    ErrorKind.VALIDATION_ERROR: "Validation failed",
    ErrorKind.ACCOUNT_NOT_FOUND: "Account not found",
    ErrorKind.INSUFFICIENT_FUNDS: "Insufficient funds",
    ErrorKind.INVALID_AMOUNT: "Invalid transaction amount",
    ErrorKind.INVALID_CREDENTIALS: "Invalid email or password",
    ErrorKind.UNAUTHORIZED: "Authentication required",
    ErrorKind.TOKEN_EXPIRED: "Authentication token expired",
    ErrorKind.INVALID_SIGNATURE: "Invalid token signature",
    ErrorKind.MALFORMED_TOKEN: "Malformed token",
    ErrorKind.DUPLICATE_ENTRY: "Resource already exists",
    ErrorKind.TRANSACTION_FAILED: "Transaction failed",
    ErrorKind.NETWORK_ERROR: "Network error. Please check your connection.",
}


class BankingError(ValueError):
    """Error with a stable code and HTTP status"""

    def __init__(self, kind: ErrorKind, message: Optional[str] = None,
                 status_code: Optional[int] = None):
        self.kind = kind
        self.message = message or DEFAULT_MESSAGES[kind]
        self.status_code = status_code or HTTP_STATUS[kind]
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return self.kind.value

    def to_dict(self) -> Dict[str, Any]:
        """Render as the API error body"""
        return {"error": {"code": self.code, "message": self.message}}

    def __repr__(self) -> str:
        return f"BankingError({self.code}, {self.message!r})"


class TokenError(BankingError):
    """Token verification failure (expired, bad signature, malformed)"""
