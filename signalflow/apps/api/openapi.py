from __future__ import annotations

from typing import Any

from signalflow.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    payload: dict[str, Any] = {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }
    if details:
        payload["error"]["details"] = details
    return payload


def _response(description: str, example: dict[str, Any]) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": example}},
    }


DEFAULT_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    400: _response(
        "Invalid input",
        _error_example(
            code="VALIDATION_ERROR",
            message="Invalid payload",
            details={"errors": [{"field": "decision", "message": "Input should be 'approve', 'reject' or 'discuss'"}]},
        ),
    ),
    403: _response(
        "Forbidden",
        _error_example(code="ACCESS_DENIED", message="Access denied"),
    ),
    404: _response(
        "Not found",
        _error_example(code="NOT_FOUND", message="Resource not found"),
    ),
    422: _response(
        "Request validation error",
        _error_example(code="REQUEST_VALIDATION_ERROR", message="Validation error"),
    ),
    500: _response(
        "Internal server error",
        _error_example(code="INTERNAL_ERROR", message="Internal server error"),
    ),
}

ENGINE_ERROR_RESPONSES: dict[int, dict[str, Any]] = {
    502: _response(
        "Workflow engine failed to start a run; the signal is marked failed",
        _error_example(code="WORKFLOW_ENGINE_ERROR", message="workflow engine unavailable"),
    ),
}
