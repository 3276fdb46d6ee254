from __future__ import annotations

import json
import logging
from typing import AsyncIterator

import httpx

from channelchat.core.config import get_settings
from channelchat.core.errors import (
    ProviderAuthError,
    ProviderConfigError,
    ProviderError,
    ProviderTimeoutError,
)
from channelchat.providers.llm.base import CompletionRequest

logger = logging.getLogger(__name__)


def parse_sse_line(line: str) -> str | None:
    """Return the text delta carried by one ``data:`` line of a chat completion stream."""
    if not line.startswith("data:"):
        return None
    data = line[len("data:"):].strip()
    if not data or data == "[DONE]":
        return None
    try:
        payload = json.loads(data)
    except ValueError:
        logger.warning("openai_stream_unparsable_chunk")
        return None
    choices = payload.get("choices") or []
    if not choices:
        return None
    delta = choices[0].get("delta") or {}
    content = delta.get("content")
    return content if isinstance(content, str) and content else None


class OpenAIChatProvider:
    """Streams chat completions from any OpenAI-compatible endpoint.

    An injected client is shared and left open for its owner to close. Without
    one, each stream opens its own client and closes it when the stream ends.
    """

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._settings = get_settings()
        self._client = client

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        api_key = self._settings.openai_api_key
        if not api_key:
            raise ProviderConfigError("OPENAI_API_KEY is required for the openai provider.")

        if self._client is not None:
            async for delta in self._stream_with(self._client, request, api_key):
                yield delta
            return
        timeout_s = self._settings.openai_timeout_ms / 1000.0
        async with httpx.AsyncClient(timeout=timeout_s) as client:
            async for delta in self._stream_with(client, request, api_key):
                yield delta

    async def _stream_with(
        self,
        client: httpx.AsyncClient,
        request: CompletionRequest,
        api_key: str,
    ) -> AsyncIterator[str]:
        payload = {
            "model": request.model,
            "messages": request.messages,
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "stream": True,
        }
        headers = {"Authorization": f"Bearer {api_key}"}
        url = f"{self._settings.openai_base_url.rstrip('/')}/chat/completions"
        try:
            async with client.stream("POST", url, json=payload, headers=headers) as response:
                if response.status_code in {401, 403}:
                    raise ProviderAuthError("Provider auth error: check OPENAI_API_KEY.")
                if response.status_code >= 400:
                    raise ProviderError(f"Provider error: {response.status_code}")
                async for line in response.aiter_lines():
                    delta = parse_sse_line(line)
                    if delta:
                        yield delta
        except httpx.TimeoutException as exc:
            logger.warning("openai_stream_timeout model=%s", request.model)
            raise ProviderTimeoutError("Provider stream timed out.") from exc
        except httpx.HTTPError as exc:
            logger.error("openai_stream_error model=%s", request.model)
            raise ProviderError("Provider request failed.") from exc
