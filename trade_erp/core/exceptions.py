"""
Typed exception hierarchy for the invoice core.

    TradeERPError (base)
    |
    +-- NotFoundError        invoice / item / counterparty missing          -> 404
    +-- ValidationError      malformed input, business-rule violation       -> 422
    +-- StateConflictError   illegal lifecycle transition                   -> 409
    +-- InternalError        storage or collaborator failure (rolled back)  -> 500

Every error carries a machine-readable ``code`` and structured ``details`` so
callers catch by type and API clients switch on the code, never on the text.
"""
from typing import Any, Dict, Optional


class TradeERPError(Exception):
    """Base class for all errors raised by the invoice core."""

    code: str = "ERP_ERROR"
    status_code: int = 500

    def __init__(self, message: str, code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        self.message = message
        if code:
            self.code = code
        self.details = details or {}
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, "code": self.code, "details": self.details}


class NotFoundError(TradeERPError):
    code = "NOT_FOUND"
    status_code = 404


class ValidationError(TradeERPError):
    code = "VALIDATION_ERROR"
    status_code = 422


class StateConflictError(TradeERPError):
    code = "STATE_CONFLICT"
    status_code = 409


class InternalError(TradeERPError):
    code = "INTERNAL_ERROR"
    status_code = 500
