from __future__ import annotations

from typing import Any


class SignalflowError(Exception):
    """Base error for SignalFlow."""

    status_code: int = 500
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors


class ValidationError(SignalflowError):
    """Malformed input; the caller can fix it and resubmit."""

    status_code = 400
    code = "VALIDATION_ERROR"


class ForbiddenError(SignalflowError):
    """Operation requires a tenant context the caller does not carry."""

    status_code = 403
    code = "TENANT_CONTEXT_REQUIRED"


class AccessDeniedError(SignalflowError):
    """Tenant verification failed."""

    status_code = 403
    code = "ACCESS_DENIED"


class NotFoundError(SignalflowError):
    """Referenced entity does not exist (or is not visible to the caller)."""

    status_code = 404
    code = "NOT_FOUND"


class UnsupportedSourceError(SignalflowError):
    """Signal source has no registered adapter."""

    status_code = 400
    code = "UNSUPPORTED_SOURCE"


class InvalidPayloadError(SignalflowError):
    """Signal payload is not a non-empty object."""

    status_code = 400
    code = "INVALID_PAYLOAD"


class TransientFailureError(SignalflowError):
    """External call kept failing transiently after bounded retries."""

    status_code = 503
    code = "AI_TRANSIENT_FAILURE"


class SchemaValidationError(SignalflowError):
    """Provider response does not match the expected schema."""

    status_code = 502
    code = "AI_SCHEMA_INVALID"


class ProviderConfigError(SignalflowError):
    """Missing or invalid AI provider configuration."""

    code = "AI_PROVIDER_CONFIG"


class ProviderUnavailableError(SignalflowError):
    """AI provider reported a retryable outage (5xx, overload)."""

    status_code = 503
    code = "AI_PROVIDER_UNAVAILABLE"


class WorkflowEngineError(SignalflowError):
    """Workflow engine refused or failed to start a run."""

    status_code = 502
    code = "WORKFLOW_ENGINE_ERROR"


def validation_error_from(exc: Any, message: str = "Invalid request") -> ValidationError:
    # Flatten every pydantic violation so callers see all problems at once, not just the first.
    errors = [
        {
            "field": ".".join(str(part) for part in item.get("loc", ())) or None,
            "message": item.get("msg"),
            "type": item.get("type"),
        }
        for item in exc.errors()
    ]
    return ValidationError(message, errors=errors)
