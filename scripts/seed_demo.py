from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from channelchat.domain.models import AIModel, Channel
from channelchat.persistence.db import SessionLocal


@dataclass(frozen=True)
class DemoModel:
    id: str
    display_name: str
    provider: str
    model_id: str
    max_tokens: int = 4000
    temperature: float = 0.7


@dataclass(frozen=True)
class DemoChannel:
    id: str
    name: str
    description: str
    allowed_models: tuple[str, ...]


def build_demo_models() -> tuple[DemoModel, ...]:
    return (
        DemoModel(id="gpt-4o-mini", display_name="GPT-4o Mini", provider="openai", model_id="gpt-4o-mini"),
        DemoModel(id="gpt-4o", display_name="GPT-4o", provider="openai", model_id="gpt-4o"),
        DemoModel(
            id="claude-3-5-sonnet",
            display_name="Claude 3.5 Sonnet",
            provider="anthropic",
            model_id="claude-3-5-sonnet-20241022",
        ),
    )


def build_demo_channels() -> tuple[DemoChannel, ...]:
    return (
        DemoChannel(
            id="general",
            name="General",
            description="General-purpose chat with every model.",
            allowed_models=("gpt-4o-mini", "gpt-4o", "claude-3-5-sonnet"),
        ),
        DemoChannel(
            id="coding",
            name="Coding Assistant",
            description="Programming questions and code review.",
            allowed_models=("gpt-4o", "claude-3-5-sonnet"),
        ),
        DemoChannel(
            id="creative",
            name="Creative Writing",
            description="Creative writing and content drafting.",
            allowed_models=("gpt-4o", "claude-3-5-sonnet"),
        ),
    )


async def seed_demo() -> int:
    # Idempotent: existing rows are left as an admin may have edited them.
    created = 0
    async with SessionLocal() as session:
        for demo in build_demo_models():
            if await session.get(AIModel, demo.id) is not None:
                continue
            session.add(
                AIModel(
                    id=demo.id,
                    name=demo.id,
                    display_name=demo.display_name,
                    provider=demo.provider,
                    model_id=demo.model_id,
                    max_tokens=demo.max_tokens,
                    temperature=demo.temperature,
                    is_active=True,
                )
            )
            created += 1
        # Models must exist before channels reference them in allow-lists.
        await session.flush()
        for demo in build_demo_channels():
            if await session.get(Channel, demo.id) is not None:
                continue
            session.add(
                Channel(
                    id=demo.id,
                    name=demo.name,
                    description=demo.description,
                    allowed_models=list(demo.allowed_models),
                    is_active=True,
                )
            )
            created += 1
        await session.commit()
    if created:
        print(f"Seeded demo catalog with {created} rows.")
    else:
        print("Demo catalog already seeded; skipping.")
    return created


def main() -> int:
    # Surface clear failures and exit non-zero so CI/dev scripts can detect issues.
    try:
        asyncio.run(seed_demo())
        return 0
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
