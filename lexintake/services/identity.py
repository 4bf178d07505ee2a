"""
Identity Resolver
Maps an upstream login identifier to exactly one user of an institution
"""

from __future__ import annotations

from typing import Optional

import structlog

from lexintake.core.cache import TTLCache
from lexintake.core.exceptions import UserNotFound
from lexintake.repositories.base import PermissionsRepository
from lexintake.schemas.records import UserRecord

logger = structlog.get_logger()


def _positive_int(value: str) -> Optional[int]:
    value = value.strip()
    # ASCII digits only: str.isdigit() also accepts superscripts int() rejects
    if not (value.isascii() and value.isdigit()):
        return None
    number = int(value)
    return number if number > 0 else None


def match_user(
    users: list[UserRecord],
    legacy_user_id: str,
    email: Optional[str] = None,
) -> Optional[UserRecord]:
    """
    Pick the user an identifier refers to. First hit wins:

    1. stored legacy id, case-insensitive
    2. numeric row id, when the identifier is a positive integer
    3. stored email against the ``email`` argument
    4. stored email against the identifier itself, when it looks like one
    """
    legacy = (legacy_user_id or "").strip()
    legacy_lower = legacy.lower()

    if legacy:
        for user in users:
            if user.legacy_user_id and user.legacy_user_id.strip().lower() == legacy_lower:
                return user

    numeric_id = _positive_int(legacy)
    if numeric_id is not None:
        for user in users:
            if user.id == numeric_id:
                return user

    normalized_email = (email or "").strip().lower()
    if normalized_email:
        for user in users:
            if user.email.lower() == normalized_email:
                return user

    if "@" in legacy:
        for user in users:
            if user.email.lower() == legacy_lower:
                return user

    return None


class IdentityResolver:
    def __init__(self, repository: PermissionsRepository, cache: TTLCache):
        self.repository = repository
        self.cache = cache

    async def get_users(self, institution_id: int) -> list[UserRecord]:
        """Institution user list, cached per institution"""
        return await self.cache.get_or_load(
            str(institution_id),
            lambda: self.repository.list_users(institution_id),
        )

    async def resolve(
        self,
        institution_id: int,
        legacy_user_id: str,
        email: Optional[str] = None,
    ) -> UserRecord:
        users = await self.get_users(institution_id)
        user = match_user(users, legacy_user_id, email)
        if user is None:
            logger.info(
                "User not resolved",
                institution_id=institution_id,
                legacy_user_id=legacy_user_id,
            )
            raise UserNotFound()
        return user

    def invalidate(self, institution_id: int) -> None:
        self.cache.invalidate(str(institution_id))
