"""Domain errors raised by Showya services.

Every error carries an HTTP status and a stable ``error`` code so the API can
turn it into a JSON body without knowing where it came from.
"""

from __future__ import annotations

from typing import Any


class ShowyaError(Exception):
    status_code = 400
    code = "BadRequest"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.extra = dict(extra or {})

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.extra}


class BadRequestError(ShowyaError):
    status_code = 400
    code = "BadRequest"


class AuthenticationError(ShowyaError):
    status_code = 401
    code = "Unauthorized"


class PermissionDeniedError(ShowyaError):
    status_code = 403
    code = "Forbidden"


class NotFoundError(ShowyaError):
    status_code = 404
    code = "NotFound"


class ConflictError(ShowyaError):
    status_code = 409
    code = "Conflict"


class TooManyRequestsError(ShowyaError):
    status_code = 429
    code = "TooManyRequests"


class EmailDeliveryError(ShowyaError):
    status_code = 502
    code = "EmailDeliveryFailed"


class RazorpayError(ShowyaError):
    """Raised when the payment provider rejects a request."""

    status_code = 502
    code = "PaymentProviderError"

    def __init__(
        self,
        description: str,
        *,
        status: int | None = None,
        field: str | None = None,
        payload: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(description)
        self.description = description
        self.status = status
        self.field = field
        self.payload = payload or {}

    @property
    def is_access_denied(self) -> bool:
        return self.status in {400, 401, 403} and "access denied" in (
            self.description or ""
        ).lower()

    def to_dict(self) -> dict[str, Any]:
        body = super().to_dict()
        if self.field:
            body["field"] = self.field
        return body
