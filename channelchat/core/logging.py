from __future__ import annotations

import logging

from channelchat.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    settings = get_settings()
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    root = logging.getLogger()
    if root.handlers:
        # Respect handlers installed by uvicorn/pytest and only adjust the level.
        root.setLevel(level)
        return
    logging.basicConfig(level=level, format=_LOG_FORMAT)
    # Keep SQL echo and HTTP client chatter out of application logs.
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
