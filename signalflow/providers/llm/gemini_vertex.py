from __future__ import annotations

import logging

from pydantic import BaseModel

from signalflow.core.config import get_settings
from signalflow.core.errors import ProviderConfigError, ProviderUnavailableError

logger = logging.getLogger(__name__)


class GeminiVertexProvider:
    name = "vertex"

    def __init__(self) -> None:
        self._settings = get_settings()
        self._initialized = False

    def _validate_config(self) -> tuple[str, str]:
        # Fail fast to avoid confusing downstream SDK errors.
        project = self._settings.google_cloud_project
        location = self._settings.google_cloud_location
        missing = []
        if not project:
            missing.append("GOOGLE_CLOUD_PROJECT")
        if not location:
            missing.append("GOOGLE_CLOUD_LOCATION")
        if missing:
            raise ProviderConfigError(
                f"Vertex config missing: set {', '.join(missing)} in .env."
            )
        return project, location

    async def call(self, *, model: str, prompt: str, schema: type[BaseModel]) -> str:
        project, location = self._validate_config()

        try:
            from vertexai import init
            from vertexai.generative_models import GenerationConfig, GenerativeModel
            from google.auth.exceptions import DefaultCredentialsError, RefreshError
            from google.api_core.exceptions import (
                DeadlineExceeded,
                InternalServerError,
                PermissionDenied,
                ResourceExhausted,
                ServiceUnavailable,
                Unauthenticated,
            )
        except Exception as exc:  # pragma: no cover - import errors are environment-specific
            raise ProviderConfigError(
                "Vertex AI SDK not available. Install google-cloud-aiplatform."
            ) from exc

        try:
            if not self._initialized:
                init(project=project, location=location)
                self._initialized = True
            logger.info("vertex_call_start model=%s schema=%s", model, schema.__name__)
            generative_model = GenerativeModel(model or self._settings.gemini_model)
            # Ask for JSON so the response can be validated against the schema.
            response = await generative_model.generate_content_async(
                prompt,
                generation_config=GenerationConfig(response_mime_type="application/json"),
            )
            return response.text
        except (DefaultCredentialsError, RefreshError, PermissionDenied, Unauthenticated) as exc:
            logger.warning("vertex_call_auth_error model=%s", model)
            raise ProviderConfigError(
                "Vertex auth error: run `gcloud auth application-default login`."
            ) from exc
        except (ServiceUnavailable, InternalServerError, ResourceExhausted, DeadlineExceeded) as exc:
            # Outages and throttling are transient; the hardened executor retries them.
            logger.warning("vertex_call_unavailable model=%s error=%s", model, type(exc).__name__)
            raise ProviderUnavailableError("Vertex AI temporarily unavailable") from exc
