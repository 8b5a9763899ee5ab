"""Error taxonomy shared by every operation in the package.

Callers distinguish "fix input" (`ValidationError`, `DuplicateError`),
"nothing to do" (`NotFoundError`), "retry later" (`StoreUnavailable`) and
media failures (`UploadError`) by type or by the `retryable` flag. Each error
renders the `{success, message, ...}` envelope the HTTP layer returns.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError


class InvestmentError(Exception):
    """Base class for all domain errors.

    Attributes:
        code: Stable machine-readable error code.
        message: Human-readable summary.
        errors: Optional list of field-level messages.
        http_status: Status code the HTTP layer should use.
        retryable: True when retrying the same request may succeed.
    """

    code = "INTERNAL_ERROR"
    http_status = 500
    retryable = False

    def __init__(self, message: str, errors: list[str] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = list(errors or [])

    def to_response(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "success": False,
            "code": self.code,
            "message": self.message,
        }
        if self.errors:
            body["errors"] = self.errors
        return body


class ValidationError(InvestmentError):
    code = "VALIDATION_ERROR"
    http_status = 400

    @classmethod
    def from_pydantic(
        cls,
        exc: PydanticValidationError,
        message: str = "Validation failed",
    ) -> "ValidationError":
        """Build a ValidationError with one `"<field>: <message>"` entry per problem."""
        errors = []
        for err in exc.errors():
            loc = ".".join(str(p) for p in err.get("loc", ()) if p != "__root__")
            msg = err.get("msg", "invalid value")
            errors.append(f"{loc}: {msg}" if loc else msg)
        return cls(message, errors)


class DuplicateError(InvestmentError):
    code = "DUPLICATE"
    http_status = 400


class NotFoundError(InvestmentError):
    code = "NOT_FOUND"
    http_status = 404


class StoreUnavailable(InvestmentError):
    code = "STORE_UNAVAILABLE"
    http_status = 503
    retryable = True


class UploadError(InvestmentError):
    code = "UPLOAD_FAILED"
    http_status = 500
