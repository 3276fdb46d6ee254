from __future__ import annotations

import logging
from typing import AsyncIterator

from channelchat.core.config import get_settings
from channelchat.core.errors import ProviderAuthError, ProviderConfigError, ProviderError
from channelchat.providers.llm.base import CompletionRequest

logger = logging.getLogger(__name__)


class GeminiVertexProvider:
    def __init__(self) -> None:
        self._settings = get_settings()

    def _format_messages(self, messages: list[dict]) -> str:
        # Preserve roles and keep system guidance at the top of the prompt.
        system_lines: list[str] = []
        other_lines: list[str] = []
        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")
            line = f"{role.upper()}: {content}"
            if role == "system":
                system_lines.append(line)
            else:
                other_lines.append(line)
        return "\n".join(system_lines + other_lines)

    def _validate_config(self) -> tuple[str, str]:
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

    async def stream(self, request: CompletionRequest) -> AsyncIterator[str]:
        project, location = self._validate_config()

        try:
            from vertexai import init
            from vertexai.generative_models import GenerationConfig, GenerativeModel
            from google.auth.exceptions import DefaultCredentialsError, RefreshError
            from google.api_core.exceptions import PermissionDenied, Unauthenticated
        except Exception as exc:  # pragma: no cover - import errors are environment-specific
            raise ProviderConfigError(
                "Vertex AI SDK not available. Install google-cloud-aiplatform."
            ) from exc

        try:
            logger.info("vertex_stream_start model=%s", request.model)
            init(project=project, location=location)
            model = GenerativeModel(request.model)
            responses = await model.generate_content_async(
                self._format_messages(request.messages),
                generation_config=GenerationConfig(
                    max_output_tokens=request.max_tokens,
                    temperature=request.temperature,
                ),
                stream=True,
            )
            async for response in responses:
                delta = getattr(response, "text", None)
                if delta:
                    yield delta
        except (DefaultCredentialsError, RefreshError, PermissionDenied, Unauthenticated) as exc:
            logger.warning("vertex_stream_auth_error model=%s", request.model)
            raise ProviderAuthError(
                "Vertex auth error: run `gcloud auth application-default login`."
            ) from exc
        except ProviderError:
            raise
        except Exception as exc:
            logger.error("vertex_stream_error model=%s", request.model)
            raise ProviderError("Vertex AI request failed. Check credentials and model access.") from exc
