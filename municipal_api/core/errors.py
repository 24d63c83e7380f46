from __future__ import annotations

from typing import Any, Optional, Sequence


class AppError(Exception):
    """
    Base class for domain errors raised by services and the authorization core.

    The API layer (municipal_api.api.main) converts these into the standard ErrorResponse
    envelope using `status_code` and `error_type`.
    """

    status_code: int = 500
    error_type: str = "internal_error"

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class InvalidRequestError(AppError):
    status_code = 400
    error_type = "bad_request"


class AuthenticationError(AppError):
    status_code = 401
    error_type = "unauthorized"


class ForbiddenError(AppError):
    """Denied by the policy evaluator, the role hierarchy or the resolved scope."""

    status_code = 403
    error_type = "forbidden"

    def __init__(self, message: str, missing: Sequence[str] = ()) -> None:
        super().__init__(message, details={"missing": list(missing)} if missing else None)
        self.missing = tuple(missing)


class NotFoundError(AppError):
    """Entity does not exist or is outside the caller's visibility."""

    status_code = 404
    error_type = "not_found"


class ConflictError(AppError):
    status_code = 409
    error_type = "conflict"
