from __future__ import annotations

import asyncio
from typing import AsyncIterator

from channelchat.core.errors import ProviderError
from channelchat.providers.llm.base import CompletionRequest


class FakeLLMProvider:
    def __init__(
        self,
        response: str = "This is a fake response.",
        *,
        fail_after: int | None = None,
        delay_s: float = 0.0,
    ) -> None:
        # Deterministic response keeps tests stable without external calls.
        self._response = response
        # Raise after this many fragments to exercise mid-stream failures.
        self._fail_after = fail_after
        self._delay_s = delay_s
        self.requests: list[CompletionRequest] = []

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        self.requests.append(request)
        for index, token in enumerate(self._response.split()):
            if self._fail_after is not None and index >= self._fail_after:
                raise ProviderError("Fake provider failure.")
            if self._delay_s:
                await asyncio.sleep(self._delay_s)
            yield f"{token} "
        if self._fail_after is not None and self._fail_after >= len(self._response.split()):
            raise ProviderError("Fake provider failure.")
