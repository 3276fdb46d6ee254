from __future__ import annotations

from channelchat.core.config import get_settings
from channelchat.core.errors import ProviderConfigError
from channelchat.domain.models import AIModel
from channelchat.providers.llm.fake import FakeLLMProvider
from channelchat.providers.llm.gemini_vertex import GeminiVertexProvider
from channelchat.providers.llm.openai_compat import OpenAIChatProvider


_VERTEX_PROVIDERS = {"google", "vertex", "gemini"}


def get_llm_provider(model: AIModel):
    settings = get_settings()
    provider = (settings.llm_provider or "auto").lower()

    if provider == "fake":
        return FakeLLMProvider()
    if provider == "openai":
        return OpenAIChatProvider()
    if provider == "vertex":
        return GeminiVertexProvider()
    if provider != "auto":
        raise ProviderConfigError(f"Unsupported LLM provider: {provider}")
    # auto: route by the model's configured provider; other vendors go through an OpenAI-compatible gateway.
    if (model.provider or "").lower() in _VERTEX_PROVIDERS:
        return GeminiVertexProvider()
    return OpenAIChatProvider()
