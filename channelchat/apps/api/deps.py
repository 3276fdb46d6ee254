from __future__ import annotations

from functools import lru_cache
from typing import AsyncGenerator

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.core.config import get_settings
from channelchat.domain.models import ROLE_ADMIN, User
from channelchat.persistence.db import get_session
from channelchat.services.catalog import CatalogResolver
from channelchat.services.chat_sessions import SessionManager
from channelchat.services.completion import CompletionEngine
from channelchat.services.identity import IdentityClaims, get_or_create_user


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    # One AsyncSession per request; context manager ensures close on success/error.
    async with get_session() as session:
        yield session


@lru_cache
def get_session_manager() -> SessionManager:
    # Process-wide so per-user creation locks are shared across requests.
    return SessionManager()


@lru_cache
def get_completion_engine() -> CompletionEngine:
    # Process-wide so the one-turn-per-session guard spans requests.
    return CompletionEngine(store=get_session_manager().store)


@lru_cache
def get_catalog_resolver() -> CatalogResolver:
    return CatalogResolver()


def reset_service_singletons() -> None:
    get_session_manager.cache_clear()
    get_completion_engine.cache_clear()
    get_catalog_resolver.cache_clear()


def _auth_error(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": "AUTH_UNAUTHORIZED", "message": message},
    )


def _forbidden_error(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={"code": code, "message": message},
    )


def identity_from_headers(request: Request) -> IdentityClaims:
    # The fronting identity gateway asserts who the caller is.
    settings = get_settings()
    user_id = (request.headers.get(settings.identity_user_id_header) or "").strip()
    email = (request.headers.get(settings.identity_email_header) or "").strip()
    if not user_id or not email:
        raise _auth_error("Missing identity headers")
    display_name = (request.headers.get(settings.identity_name_header) or "").strip() or None
    return IdentityClaims(id=user_id, email=email, display_name=display_name)


async def get_current_user(
    claims: IdentityClaims = Depends(identity_from_headers),
    db: AsyncSession = Depends(get_db),
) -> User:
    user = await get_or_create_user(db, claims)
    if not user.is_active:
        raise _forbidden_error("USER_INACTIVE", "User account is deactivated")
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.role != ROLE_ADMIN:
        raise _forbidden_error("AUTH_FORBIDDEN", "Admin role required")
    return user
