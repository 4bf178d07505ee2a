"""
Permission Service
Resolves what a principal may see and do, and applies sysadmin-gated
changes to roles, role assignments and institution features.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from functools import partial
from typing import Any, Awaitable, Callable, Optional

import structlog

from lexintake.core.cache import TTLCache
from lexintake.core.exceptions import NotFound, Unauthorized, UserNotFound
from lexintake.core.features import (
    ALL_ACTION_KEYS,
    ALL_FEATURE_PATHS,
    enabled_actions_for,
    filter_pages_for_regular_user,
)
from lexintake.repositories.base import PermissionsRepository
from lexintake.schemas.permissions import (
    InstitutionFeature,
    InstitutionSummary,
    MenuView,
    PermissionsOverview,
    PermissionsStatus,
    PermissionView,
    RoleView,
    UserFeatureSetting,
    UserRoleView,
)
from lexintake.schemas.records import RoleRecord, UserRecord, UserRoleLink
from lexintake.schemas.users import PublicUser
from lexintake.services.features import FeatureService
from lexintake.services.identity import IdentityResolver

logger = structlog.get_logger()

SYSADMIN_ROLE_KIND = "sysadmin"


@dataclass
class UserContext:
    user: UserRecord
    is_sysadmin: bool
    roles: list[RoleRecord]
    user_roles: list[UserRoleLink]


@dataclass
class StatusResolution:
    status: PermissionsStatus
    # Degraded by a backend failure; served once, never cached
    degraded: bool = False


def role_ids_for_user(links: list[UserRoleLink], user_id: int) -> set[int]:
    return {link.role_id for link in links if link.user_id == user_id and link.role_id is not None}


def holds_sysadmin_role(roles: list[RoleRecord], links: list[UserRoleLink], user_id: int) -> bool:
    sysadmin_ids = {role.id for role in roles if role.is_sysadmin_role}
    return bool(sysadmin_ids & role_ids_for_user(links, user_id))


class PermissionService:
    def __init__(
        self,
        repository: PermissionsRepository,
        identity: IdentityResolver,
        features: FeatureService,
        status_cache: TTLCache,
        global_admin_institution_id: int = 4,
    ):
        self.repository = repository
        self.identity = identity
        self.features = features
        self.status_cache = status_cache
        self.global_admin_institution_id = global_admin_institution_id

    def is_global_admin(self, institution_id: int) -> bool:
        return institution_id == self.global_admin_institution_id

    def invalidate_status(self, institution_id: int) -> int:
        return self.status_cache.invalidate_prefix(f"{institution_id}:")

    # ── User context ────────────────────────────────────────────

    async def load_user_context(
        self,
        institution_id: int,
        legacy_user_id: str,
        email: Optional[str] = None,
    ) -> UserContext:
        user = await self.identity.resolve(institution_id, legacy_user_id, email)
        roles, user_roles = await asyncio.gather(
            self.repository.list_roles(institution_id),
            self.repository.list_user_roles(institution_id),
        )
        return UserContext(
            user=user,
            is_sysadmin=holds_sysadmin_role(roles, user_roles, user.id),
            roles=roles,
            user_roles=user_roles,
        )

    async def is_sysadmin(self, institution_id: int, legacy_user_id: str, email: Optional[str] = None) -> bool:
        if self.is_global_admin(institution_id):
            return True
        try:
            context = await self.load_user_context(institution_id, legacy_user_id, email)
        except UserNotFound:
            return False
        return context.is_sysadmin

    async def assert_sysadmin(
        self,
        institution_id: int,
        legacy_user_id: str,
        email: Optional[str] = None,
    ) -> Optional[UserRecord]:
        """Return the acting user (None for the global admin) or raise Unauthorized"""
        if self.is_global_admin(institution_id):
            return None
        context = await self.load_user_context(institution_id, legacy_user_id, email)
        if not context.is_sysadmin:
            logger.warning(
                "Sysadmin action denied",
                institution_id=institution_id,
                legacy_user_id=legacy_user_id,
            )
            raise Unauthorized()
        return context.user

    async def assert_admin(
        self,
        institution_id: int,
        legacy_user_id: str,
        email: Optional[str] = None,
    ) -> Optional[UserRecord]:
        """Like assert_sysadmin, but office admins pass too"""
        if self.is_global_admin(institution_id):
            return None
        context = await self.load_user_context(institution_id, legacy_user_id, email)
        if not (context.is_sysadmin or context.user.is_office_admin):
            raise Unauthorized("only administrators can perform this action")
        return context.user

    def _effective_institution(self, institution_id: int, target_institution_id: Optional[int]) -> int:
        if target_institution_id is None or target_institution_id == institution_id:
            return institution_id
        if not self.is_global_admin(institution_id):
            raise Unauthorized("only the global admin can manage another institution")
        return target_institution_id

    # ── Status ──────────────────────────────────────────────────

    def _full_access(self, **flags: Any) -> PermissionsStatus:
        return PermissionsStatus(
            enabled_pages=list(ALL_FEATURE_PATHS),
            enabled_actions=list(ALL_ACTION_KEYS),
            **flags,
        )

    async def resolve_status(
        self,
        institution_id: int,
        legacy_user_id: str,
        email: Optional[str] = None,
    ) -> PermissionsStatus:
        if self.is_global_admin(institution_id):
            return self._full_access(is_sysadmin=True, is_global_admin=True, user_id=0)

        resolution = await self.status_cache.get_or_load(
            f"{institution_id}:{legacy_user_id}",
            lambda: self._compute_status(institution_id, legacy_user_id, email),
            cache_if=lambda result: not result.degraded,
        )
        return resolution.status

    async def _user_context_or_none(
        self, institution_id: int, legacy_user_id: str, email: Optional[str]
    ) -> tuple[Optional[UserContext], bool]:
        """The caller's context, or None plus whether a backend failure caused it"""
        try:
            return await self.load_user_context(institution_id, legacy_user_id, email), False
        except UserNotFound:
            # A user missing from the permissions base still gets the institution pages
            return None, False
        except Exception as e:
            logger.warning(
                "User context unavailable, resolving as regular user",
                institution_id=institution_id,
                legacy_user_id=legacy_user_id,
                error=str(e),
            )
            return None, True

    async def _compute_status(
        self,
        institution_id: int,
        legacy_user_id: str,
        email: Optional[str],
    ) -> StatusResolution:
        enabled_pages, (context, degraded) = await asyncio.gather(
            self.features.get_enabled_pages(institution_id),
            self._user_context_or_none(institution_id, legacy_user_id, email),
        )

        if context is not None and context.is_sysadmin:
            return StatusResolution(
                self._full_access(
                    is_sysadmin=True,
                    is_office_admin=context.user.is_office_admin,
                    user_id=context.user.id,
                )
            )

        if context is not None and context.user.is_office_admin:
            return StatusResolution(self._full_access(is_office_admin=True, user_id=context.user.id))

        override_keys: set[str] = set()
        user_id = 0
        if context is not None:
            try:
                override_keys = await self.features.get_user_enabled_feature_keys(context.user.id, institution_id)
                user_id = context.user.id
            except Exception as e:
                degraded = True
                logger.warning(
                    "Feature overrides unavailable, hiding admin features",
                    institution_id=institution_id,
                    user_id=context.user.id,
                    error=str(e),
                )

        status = PermissionsStatus(
            user_id=user_id,
            enabled_pages=filter_pages_for_regular_user(enabled_pages, override_keys),
            enabled_actions=enabled_actions_for(override_keys),
        )
        return StatusResolution(status, degraded=degraded)

    # ── Overview ────────────────────────────────────────────────

    async def get_overview(
        self,
        institution_id: int,
        legacy_user_id: str,
        target_institution_id: Optional[int] = None,
        email: Optional[str] = None,
    ) -> PermissionsOverview:
        """
        Everything an administrator needs to manage an institution.

        Callers without sysadmin rights on the target get the empty shape,
        never an error, so the response does not reveal whether the
        institution exists.
        """
        global_admin = self.is_global_admin(institution_id)
        effective_id = institution_id if target_institution_id is None else target_institution_id
        denied = PermissionsOverview(target_institution_id=effective_id)

        if effective_id != institution_id and not global_admin:
            return denied
        if not global_admin and not await self.is_sysadmin(institution_id, legacy_user_id, email):
            return denied

        roles, permissions, menus, role_permissions, users, user_roles = await asyncio.gather(
            self.repository.list_roles(effective_id),
            self.repository.list_permissions(effective_id),
            self.repository.list_menus(effective_id),
            self.repository.list_role_permissions(effective_id),
            self.repository.list_users(effective_id),
            self.repository.list_user_roles(effective_id),
        )

        return PermissionsOverview(
            is_sysadmin=True,
            is_global_admin=global_admin,
            target_institution_id=effective_id,
            roles=[
                RoleView(
                    id=role.id,
                    name=role.name,
                    description=role.description,
                    is_system=role.is_system,
                    kind=SYSADMIN_ROLE_KIND if role.is_sysadmin_role else None,
                    permission_ids=[
                        link.permission_id
                        for link in role_permissions
                        if link.role_id == role.id and link.permission_id is not None
                    ],
                )
                for role in roles
            ],
            permissions=[PermissionView.model_validate(permission.model_dump()) for permission in permissions],
            menus=[MenuView.model_validate(menu.model_dump()) for menu in menus],
            users=[PublicUser.from_record(user) for user in users],
            user_roles=[
                UserRoleView(id=link.id, user_id=link.user_id, role_id=link.role_id)
                for link in user_roles
                if link.user_id is not None and link.role_id is not None
            ],
        )

    # ── Institution directory ───────────────────────────────────

    async def list_institutions(self, institution_id: int) -> list[InstitutionSummary]:
        """Institutions the global admin can target, one entry per id, sorted by id"""
        if not self.is_global_admin(institution_id):
            raise Unauthorized("only the global admin can list institutions")

        names: dict[int, str] = {}
        for config in await self.repository.list_institution_configs():
            if config.institution_id is None or config.institution_id in names:
                continue
            names[config.institution_id] = config.company_name or f"Instituição {config.institution_id}"

        return [
            InstitutionSummary(institution_id=listed_id, company_name=name)
            for listed_id, name in sorted(names.items())
        ]

    # ── Admin mutations ─────────────────────────────────────────

    async def _apply_link_diff(
        self,
        deletes: list[Callable[[], Awaitable[Any]]],
        inserts: list[Callable[[], Awaitable[Any]]],
    ) -> None:
        """Deletes run together, then inserts; links are never replaced wholesale"""
        if deletes:
            await asyncio.gather(*(delete() for delete in deletes))
        if inserts:
            await asyncio.gather(*(insert() for insert in inserts))

    async def _audit(
        self,
        institution_id: int,
        actor: Optional[UserRecord],
        target_type: str,
        target_id: Optional[int],
        summary: dict[str, Any],
    ) -> None:
        await self.repository.record_audit(
            institution_id,
            actor.id if actor is not None else None,
            target_type,
            target_id,
            json.dumps(summary, sort_keys=True),
        )

    async def update_role_permissions(
        self,
        institution_id: int,
        legacy_user_id: str,
        role_id: int,
        permission_ids: list[int],
        target_institution_id: Optional[int] = None,
        email: Optional[str] = None,
    ) -> dict[str, int]:
        actor = await self.assert_sysadmin(institution_id, legacy_user_id, email)
        effective_id = self._effective_institution(institution_id, target_institution_id)

        roles, links = await asyncio.gather(
            self.repository.list_roles(effective_id),
            self.repository.list_role_permissions(effective_id),
        )
        if not any(role.id == role_id for role in roles):
            raise NotFound("role not found in this institution")

        desired = list(dict.fromkeys(permission_ids))
        current = [link for link in links if link.role_id == role_id]
        current_ids = {link.permission_id for link in current}
        to_delete = [
            link for link in current if link.permission_id is not None and link.permission_id not in desired
        ]
        to_add = [permission_id for permission_id in desired if permission_id not in current_ids]

        await self._apply_link_diff(
            [partial(self.repository.delete_role_permission, link.id) for link in to_delete],
            [partial(self.repository.create_role_permission, effective_id, role_id, pid) for pid in to_add],
        )
        self.invalidate_status(effective_id)

        result = {"added": len(to_add), "removed": len(to_delete)}
        if to_add or to_delete:
            await self._audit(
                effective_id,
                actor,
                "role_permissions",
                role_id,
                {**result, "permission_ids": desired},
            )
            logger.info("Role permissions updated", institution_id=effective_id, role_id=role_id, **result)
        return result

    async def update_user_roles(
        self,
        institution_id: int,
        legacy_user_id: str,
        user_id: int,
        role_ids: list[int],
        target_institution_id: Optional[int] = None,
        email: Optional[str] = None,
    ) -> dict[str, int]:
        actor = await self.assert_sysadmin(institution_id, legacy_user_id, email)
        effective_id = self._effective_institution(institution_id, target_institution_id)

        user, links = await asyncio.gather(
            self.repository.get_user(effective_id, user_id),
            self.repository.list_user_roles(effective_id),
        )
        if user is None:
            raise UserNotFound()

        desired = list(dict.fromkeys(role_ids))
        current = [link for link in links if link.user_id == user_id]
        current_ids = {link.role_id for link in current}
        to_delete = [link for link in current if link.role_id is not None and link.role_id not in desired]
        to_add = [role_id for role_id in desired if role_id not in current_ids]

        await self._apply_link_diff(
            [partial(self.repository.delete_user_role, link.id) for link in to_delete],
            [partial(self.repository.create_user_role, effective_id, user_id, rid) for rid in to_add],
        )
        self.invalidate_status(effective_id)

        result = {"added": len(to_add), "removed": len(to_delete)}
        if to_add or to_delete:
            await self._audit(effective_id, actor, "user_roles", user_id, {**result, "role_ids": desired})
            logger.info("User roles updated", institution_id=effective_id, user_id=user_id, **result)
        return result

    async def list_institution_features(
        self,
        institution_id: int,
        target_institution_id: Optional[int] = None,
    ) -> list[InstitutionFeature]:
        effective_id = self._effective_institution(institution_id, target_institution_id)
        return await self.features.get_institution_features(effective_id)

    async def update_institution_features(
        self,
        institution_id: int,
        legacy_user_id: str,
        target_institution_id: Optional[int],
        features: dict[str, bool],
        email: Optional[str] = None,
    ) -> int:
        actor = await self.assert_sysadmin(institution_id, legacy_user_id, email)
        effective_id = self._effective_institution(institution_id, target_institution_id)

        changed = await self.features.apply_institution_features(effective_id, features)
        self.invalidate_status(effective_id)

        if changed:
            await self._audit(effective_id, actor, "institution_features", effective_id, {"features": features})
            logger.info("Institution features updated", institution_id=effective_id, changed=changed)
        return changed

    # ── Per-user feature settings ───────────────────────────────

    async def _target_user(self, institution_id: int, user_id: int) -> UserRecord:
        if self.is_global_admin(institution_id):
            # The global admin manages users of every institution
            users = await self.repository.list_all_users()
            user = next((candidate for candidate in users if candidate.id == user_id), None)
        else:
            user = await self.repository.get_user(institution_id, user_id)
        if user is None or user.institution_id is None:
            raise UserNotFound()
        return user

    async def get_user_feature_settings(
        self,
        institution_id: int,
        legacy_user_id: str,
        user_id: int,
        email: Optional[str] = None,
    ) -> list[UserFeatureSetting]:
        await self.assert_admin(institution_id, legacy_user_id, email)
        user = await self._target_user(institution_id, user_id)
        return await self.features.get_user_feature_settings(user.id, user.institution_id)

    async def update_user_feature_settings(
        self,
        institution_id: int,
        legacy_user_id: str,
        user_id: int,
        features: dict[str, bool],
        email: Optional[str] = None,
    ) -> list[UserFeatureSetting]:
        actor = await self.assert_admin(institution_id, legacy_user_id, email)
        user = await self._target_user(institution_id, user_id)
        settings = await self.features.update_user_features(user.id, user.institution_id, features)
        await self._audit(user.institution_id, actor, "user_features", user.id, {"features": features})
        return settings
