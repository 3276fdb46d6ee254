from __future__ import annotations

from dataclasses import dataclass
from typing import AsyncIterator, Protocol


@dataclass(frozen=True)
class CompletionRequest:
    messages: list[dict[str, str]]
    model: str
    max_tokens: int
    temperature: float


class LLMProvider(Protocol):
    def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        ...
