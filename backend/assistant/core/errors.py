"""
Service-level exception hierarchy.

Services raise these; the HTTP layer (assistant.main) maps each class to a
status code and an ErrorResponse envelope. Messages on every class except
UpstreamServiceError are safe to show to end users verbatim. For upstream
failures the raw provider text lives in `detail` and only reaches the logs.

    AssistantError
      ├── ValidationError          400
      ├── AuthorizationError
      │     ├── AuthenticationError  401
      │     └── PermissionDeniedError 403
      ├── NotFoundError            404
      ├── StateConflictError       409
      └── UpstreamServiceError     502
"""

from __future__ import annotations


class AssistantError(Exception):
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.field   = field


class ValidationError(AssistantError):
    code = "VALIDATION_ERROR"


class AuthorizationError(AssistantError):
    code = "FORBIDDEN"


class AuthenticationError(AuthorizationError):
    code = "UNAUTHORIZED"


class PermissionDeniedError(AuthorizationError):
    code = "FORBIDDEN"


class NotFoundError(AssistantError):
    code = "NOT_FOUND"


class StateConflictError(AssistantError):
    code = "STATE_CONFLICT"


class UpstreamServiceError(AssistantError):
    """
    A store, storage, embedding or completion call failed.

    `message` is the sanitized text returned to callers; `detail` keeps the
    original error for logging.
    """
    code = "UPSTREAM_ERROR"

    def __init__(self, message: str, *, detail: str | None = None) -> None:
        super().__init__(message)
        self.detail = detail


class UnsupportedFormatError(ValidationError):
    """Raised by text extraction for content types it cannot read."""
    code = "UNSUPPORTED_FORMAT"
