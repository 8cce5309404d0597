"""
Domain exceptions.

Services raise these instead of HTTP errors so the same code paths can be driven
from the API, the CLI and queued import tasks. The API maps them to responses via
`register_error_handlers` (see `vidvault.main`).
"""

from __future__ import annotations

from typing import Any


class VidVaultError(Exception):
    http_status_code: int = 500
    default_code: str = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.message = message
        self.code = code or self.default_code
        self.metadata = metadata or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.metadata:
            out["metadata"] = self.metadata
        return out

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r})"


class ValidationError(VidVaultError):
    """Malformed or out-of-range input. Nothing was mutated."""

    http_status_code = 422
    default_code = "VALIDATION_ERROR"

    def __init__(self, message: str, *, field: str | None = None, **kwargs: Any) -> None:
        metadata = kwargs.pop("metadata", None) or {}
        if field:
            metadata["field"] = field
        super().__init__(message, metadata=metadata, **kwargs)


class AuthorizationError(VidVaultError):
    # Raised for foreign AND missing assets alike so callers cannot enumerate ids.
    http_status_code = 403
    default_code = "UNAUTHORIZED"

    def __init__(self, message: str = "Unauthorized", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(VidVaultError):
    http_status_code = 404
    default_code = "NOT_FOUND"


class BackendError(VidVaultError):
    """Storage or remote video host failure."""

    http_status_code = 502
    default_code = "BACKEND_ERROR"


class UploadInitiationError(BackendError):
    http_status_code = 500
    default_code = "UPLOAD_INITIATION_FAILED"


class RateLimitedError(VidVaultError):
    http_status_code = 429
    default_code = "RATE_LIMITED"


class RetryableTaskError(VidVaultError):
    """Transient failure inside a queued task; the runner may retry it."""

    http_status_code = 503
    default_code = "RETRYABLE"


class MailDeliveryError(BackendError):
    http_status_code = 500
    default_code = "MAIL_DELIVERY_FAILED"
