"""
Institution User Service
Institution-scoped user management on top of the permissions repository.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

import structlog

from lexintake.core.cache import TTLCache
from lexintake.core.exceptions import DuplicateEmail, UserNotFound
from lexintake.core.security import get_password_hash, verify_password
from lexintake.repositories.base import PermissionsRepository
from lexintake.schemas.records import UserRecord
from lexintake.schemas.users import (
    BackfillResult,
    PublicUser,
    UserCreateRequest,
    UserSyncRequest,
    UserSyncResult,
    UserUpdateRequest,
)
from lexintake.services.identity import IdentityResolver

logger = structlog.get_logger()


@dataclass(frozen=True)
class AuthenticatedUser:
    institution_id: int
    user_id: int
    legacy_user_id: str
    name: str
    email: str


class InstitutionUserService:
    def __init__(
        self,
        repository: PermissionsRepository,
        identity: IdentityResolver,
        status_cache: TTLCache,
    ):
        self.repository = repository
        self.identity = identity
        self.status_cache = status_cache

    def _invalidate(self, institution_id: int) -> None:
        self.identity.invalidate(institution_id)
        self.status_cache.invalidate_prefix(f"{institution_id}:")

    async def _require_user(self, institution_id: int, user_id: int) -> UserRecord:
        user = await self.repository.get_user(institution_id, user_id)
        if user is None:
            raise UserNotFound("user not found in this institution")
        return user

    async def _ensure_email_available(
        self,
        institution_id: int,
        email: str,
        exclude_user_id: Optional[int] = None,
    ) -> None:
        matches = await self.repository.find_users_by_email(email, institution_id)
        if any(user.id != exclude_user_id for user in matches):
            raise DuplicateEmail()

    async def list_users(self, institution_id: int) -> list[PublicUser]:
        users = await self.repository.list_users(institution_id)
        return [PublicUser.from_record(user) for user in users]

    async def list_all_users(self) -> list[PublicUser]:
        users = await self.repository.list_all_users()
        return [PublicUser.from_record(user) for user in users]

    async def institution_of(self, user_id: int) -> int:
        """Institution a user belongs to, searched across every institution"""
        users = await self.repository.list_all_users()
        for user in users:
            if user.id == user_id and user.institution_id is not None:
                return user.institution_id
        raise UserNotFound()

    async def create_user(self, institution_id: int, data: UserCreateRequest) -> PublicUser:
        await self._ensure_email_available(institution_id, data.email)

        values: dict[str, Any] = data.model_dump(exclude={"password"})
        if data.password:
            values["password"] = get_password_hash(data.password)

        user = await self.repository.create_user(institution_id, values)
        self._invalidate(institution_id)

        logger.info("User created", institution_id=institution_id, user_id=user.id)
        return PublicUser.from_record(user)

    async def update_user(self, institution_id: int, user_id: int, data: UserUpdateRequest) -> PublicUser:
        await self._require_user(institution_id, user_id)

        values = data.model_dump(exclude_unset=True, exclude={"password"})
        values = {key: value for key, value in values.items() if value is not None}
        if data.email is not None:
            await self._ensure_email_available(institution_id, data.email, exclude_user_id=user_id)
        if data.password:
            values["password"] = get_password_hash(data.password)

        user = await self.repository.update_user(user_id, values)
        self._invalidate(institution_id)

        logger.info("User updated", institution_id=institution_id, user_id=user_id, fields=sorted(values))
        return PublicUser.from_record(user)

    async def delete_user(self, institution_id: int, user_id: int) -> None:
        await self._require_user(institution_id, user_id)
        await self.repository.delete_user(user_id)
        self._invalidate(institution_id)
        logger.info("User deleted", institution_id=institution_id, user_id=user_id)

    async def sync_user(self, institution_id: int, data: UserSyncRequest) -> UserSyncResult:
        """Create or refresh the user an upstream login refers to"""
        users = await self.repository.list_users(institution_id)
        legacy = data.legacy_user_id.strip().lower()
        existing = next(
            (user for user in users if user.legacy_user_id and user.legacy_user_id.strip().lower() == legacy),
            None,
        )

        values = data.model_dump(exclude_none=True)
        if data.email:
            values["email"] = data.email.strip().lower()

        if existing is None:
            if values.get("email"):
                await self._ensure_email_available(institution_id, values["email"])
            user = await self.repository.create_user(institution_id, values)
            created = True
        else:
            changes = {
                key: value
                for key, value in values.items()
                if key != "legacy_user_id" and value not in (None, "") and getattr(existing, key) != value
            }
            if changes.get("email"):
                await self._ensure_email_available(institution_id, changes["email"], exclude_user_id=existing.id)
            user = await self.repository.update_user(existing.id, changes) if changes else existing
            created = False

        self._invalidate(institution_id)
        logger.info("User synced", institution_id=institution_id, user_id=user.id, created=created)
        return UserSyncResult(created=created, user=PublicUser.from_record(user))

    async def backfill_legacy_user_ids(self) -> BackfillResult:
        """Give every user without a legacy id its own row id as one"""
        users = await self.repository.list_all_users()
        result = BackfillResult()
        touched: set[int] = set()

        for user in users:
            if user.legacy_user_id:
                result.skipped += 1
                continue
            await self.repository.update_user(user.id, {"legacy_user_id": str(user.id)})
            result.updated += 1
            if user.institution_id is not None:
                touched.add(user.institution_id)

        for institution_id in touched:
            self._invalidate(institution_id)

        logger.info("Legacy user ids backfilled", updated=result.updated, skipped=result.skipped)
        return result

    async def authenticate(self, email: str, password: str) -> Optional[AuthenticatedUser]:
        candidates = await self.repository.find_users_by_email(email)
        for user in candidates:
            if not user.is_active or not user.password or user.institution_id is None:
                continue
            if verify_password(password, user.password):
                return AuthenticatedUser(
                    institution_id=user.institution_id,
                    user_id=user.id,
                    legacy_user_id=user.legacy_user_id or str(user.id),
                    name=user.name,
                    email=user.email,
                )

        logger.info("Authentication failed", email=email.strip().lower())
        return None
