from __future__ import annotations

import logging

from pydantic import BaseModel
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from channelchat.core.config import get_settings
from channelchat.core.errors import TranscriptStoreError
from channelchat.domain.models import ROLE_ADMIN, ROLE_USER, User
from channelchat.persistence.repos import users as users_repo


logger = logging.getLogger(__name__)


class IdentityClaims(BaseModel):
    # Shape supplied by the identity provider on sign-in.
    id: str
    email: str
    display_name: str | None = None


def default_role_for(email: str) -> str:
    admin_email = get_settings().admin_email
    return ROLE_ADMIN if admin_email and email.strip().lower() == admin_email.strip().lower() else ROLE_USER


async def get_or_create_user(session: AsyncSession, claims: IdentityClaims) -> User:
    existing = await users_repo.get_user(session, claims.id)
    if existing is not None:
        return existing

    user = await users_repo.add_user(
        session,
        user_id=claims.id,
        email=claims.email,
        display_name=claims.display_name or claims.email,
        role=default_role_for(claims.email),
    )
    try:
        await session.commit()
    except IntegrityError:
        # A concurrent first sign-in inserted the row first; reload it instead.
        await session.rollback()
        created = await users_repo.get_user(session, claims.id)
        if created is None:
            raise TranscriptStoreError("User provisioning failed unexpectedly.")
        return created
    logger.info("user_provisioned user_id=%s role=%s", user.id, user.role)
    return user
