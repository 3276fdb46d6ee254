from __future__ import annotations


class ChannelChatError(Exception):
    """Base error for channelchat."""


class ProviderError(ChannelChatError):
    """Inference provider request failure."""


class ProviderConfigError(ProviderError):
    """Missing or invalid provider configuration."""


class ProviderAuthError(ProviderError):
    """Inference provider authentication/authorization failure."""


class ProviderTimeoutError(ProviderError):
    """Streaming completion exceeded the configured timeout."""


class TranscriptStoreError(ChannelChatError):
    """Persistence layer failure while reading or writing transcripts."""


class SessionNotFoundError(ChannelChatError):
    """Chat session does not exist or is not owned by the caller."""


class TurnInProgressError(ChannelChatError):
    """A streamed turn is already in flight for this session."""


class ModelNotAllowedError(ChannelChatError):
    """Requested model is not in the caller's effective model set."""


class NoAvailableModelError(ChannelChatError):
    """No model is usable for the caller in the requested channel."""


class ClearNotConfirmedError(ChannelChatError):
    """Destructive session clear was requested without confirmation."""
