from __future__ import annotations

import pytest
from pydantic import BaseModel

from signalflow.core.config import get_settings
from signalflow.core.errors import ProviderConfigError
from signalflow.providers.llm.factory import get_ai_provider
from signalflow.providers.llm.fake import FakeAIProvider
from signalflow.providers.llm.gemini_vertex import GeminiVertexProvider


class Verdict(BaseModel):
    ok: bool


@pytest.mark.asyncio
async def test_vertex_provider_missing_config(monkeypatch) -> None:
    # Force missing config and clear cached settings for deterministic behavior.
    monkeypatch.delenv("GOOGLE_CLOUD_PROJECT", raising=False)
    monkeypatch.delenv("GOOGLE_CLOUD_LOCATION", raising=False)
    get_settings.cache_clear()

    provider = GeminiVertexProvider()
    with pytest.raises(ProviderConfigError) as exc_info:
        await provider.call(model="gemini-2.0-flash-001", prompt="hi", schema=Verdict)
    assert "GOOGLE_CLOUD_PROJECT" in exc_info.value.message


def test_factory_selects_provider(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "fake")
    get_settings.cache_clear()
    assert isinstance(get_ai_provider(), FakeAIProvider)

    monkeypatch.setenv("LLM_PROVIDER", "vertex")
    get_settings.cache_clear()
    assert isinstance(get_ai_provider(), GeminiVertexProvider)
