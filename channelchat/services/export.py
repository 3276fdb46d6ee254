from __future__ import annotations

from datetime import datetime
from typing import Mapping, Sequence

from pydantic import BaseModel, Field

from channelchat.domain.clock import as_utc
from channelchat.domain.models import AIModel, Channel, ChatMessage, ChatSession


class ExportedMessage(BaseModel):
    role: str
    content: str
    timestamp: datetime
    model: str | None = None


class TranscriptExport(BaseModel):
    session_id: str
    session: str | None = None
    channel: str | None = None
    model: str | None = None
    exported_at: datetime
    messages: list[ExportedMessage] = Field(default_factory=list)


def _display_name(models: Mapping[str, AIModel], model_id: str | None) -> str | None:
    if not model_id:
        return None
    model = models.get(model_id)
    # Deleted models keep their raw id so the export still says what answered.
    return model.display_name if model is not None else model_id


def build_export(
    chat_session: ChatSession,
    messages: Sequence[ChatMessage],
    *,
    channel: Channel | None,
    models: Mapping[str, AIModel],
    exported_at: datetime,
) -> TranscriptExport:
    return TranscriptExport(
        session_id=chat_session.id,
        session=chat_session.title,
        channel=channel.name if channel is not None else None,
        model=_display_name(models, chat_session.model_id),
        exported_at=as_utc(exported_at),
        messages=[
            ExportedMessage(
                role=message.role,
                content=message.content,
                timestamp=as_utc(message.created_at),
                model=_display_name(models, message.model_id),
            )
            for message in messages
        ],
    )


def export_filename(exported_at: datetime) -> str:
    return f"chat-export-{as_utc(exported_at).date().isoformat()}.json"


def dump_export(document: TranscriptExport) -> str:
    return document.model_dump_json(indent=2)


def load_export(raw: str | bytes) -> TranscriptExport:
    return TranscriptExport.model_validate_json(raw)


def transcript_triples(messages: Sequence[ChatMessage | ExportedMessage]) -> list[tuple[str, str, datetime]]:
    # (role, content, timestamp) in order; the comparable shape of a transcript.
    triples: list[tuple[str, str, datetime]] = []
    for message in messages:
        timestamp = message.timestamp if isinstance(message, ExportedMessage) else message.created_at
        triples.append((message.role, message.content, as_utc(timestamp)))
    return triples
