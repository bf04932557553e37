"""Risk engine error taxonomy.

A denied request is not an error: it is a ``Decision`` whose outcome is
``deny``. These exceptions cover calls that could not be decided at all.
The builtin bases let the API error handler map them to status codes.
"""


class RiskEngineError(Exception):
    """Base class for risk engine failures."""


class ValidationError(RiskEngineError, ValueError):
    """Malformed or out-of-range request fields. Nothing is audited or scored."""

    def __init__(self, message: str, errors: list | None = None) -> None:
        super().__init__(message)
        self.errors = errors or []


class AuthorizationError(RiskEngineError, PermissionError):
    """The caller's role lacks the capability for the requested operation."""


class NotFoundError(RiskEngineError, LookupError):
    """Unknown approval id."""


class ConflictError(RiskEngineError):
    """The approval has already been resolved."""


class InternalError(RiskEngineError):
    """Unexpected fault inside a detector, the scorer or the ledger."""
