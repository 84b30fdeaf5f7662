from __future__ import annotations

from signalflow.core.config import get_settings
from signalflow.providers.llm.base import AIProvider
from signalflow.providers.llm.fake import FakeAIProvider
from signalflow.providers.llm.gemini_vertex import GeminiVertexProvider


def get_ai_provider() -> AIProvider:
    settings = get_settings()
    provider = (settings.llm_provider or "vertex").lower()

    if provider == "fake":
        return FakeAIProvider()
    return GeminiVertexProvider()
