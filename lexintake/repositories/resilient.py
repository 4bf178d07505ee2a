"""
Resilient Repository
Tries the primary backend for a domain and falls back to the tabular API
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, Optional, TypeVar

import structlog

from lexintake.core.circuit_breaker import CircuitBreaker
from lexintake.core.exceptions import BackendUnavailable
from lexintake.repositories.base import PERMISSIONS_DOMAIN, PermissionsRepository
from lexintake.schemas.records import (
    FeatureOverrideRecord,
    InstitutionConfigRecord,
    MenuRecord,
    PermissionRecord,
    RoleRecord,
    RolePermissionLink,
    UserRecord,
    UserRoleLink,
)

logger = structlog.get_logger()

T = TypeVar("T")


class DomainSwitch:
    """Which logical domains are routed to the primary backend"""

    def __init__(self, use_direct_db: bool = False, domains: Iterable[str] = ()):
        self.use_direct_db = use_direct_db
        self.domains = {domain.strip().lower() for domain in domains if domain.strip()}

    @classmethod
    def from_settings(cls, settings) -> "DomainSwitch":
        return cls(use_direct_db=settings.USE_DIRECT_DB, domains=settings.direct_db_domains)

    def is_enabled(self, domain: str) -> bool:
        return self.use_direct_db or domain.lower() in self.domains


class ResilientRepository(PermissionsRepository):
    """
    Repository decorator: primary first, fallback on any primary problem.

    The primary is attempted only when the domain switch is on and the
    domain's circuit is not open. A primary call that raises or times out is
    recorded as a circuit failure and the same call is served by the
    fallback; an operation the primary does not support goes to the
    fallback without touching the circuit. The primary is never retried
    within a call, and a write only ever reaches one backend.
    """

    backend_name = "resilient"

    def __init__(
        self,
        primary: Optional[PermissionsRepository],
        fallback: PermissionsRepository,
        switch: DomainSwitch,
        breaker: Optional[CircuitBreaker] = None,
        domain: str = PERMISSIONS_DOMAIN,
        timeout: float = 30.0,
    ):
        self.primary = primary
        self.fallback = fallback
        self.switch = switch
        self.breaker = breaker or CircuitBreaker()
        self.domain = domain
        self.timeout = timeout

    async def try_primary(
        self,
        operation: str,
        call: Callable[[PermissionsRepository], Awaitable[T]],
        fallback_on_none: bool = False,
    ) -> T:
        if self.primary is not None and self.switch.is_enabled(self.domain):
            if await self.breaker.can_execute(self.domain):
                try:
                    result = await asyncio.wait_for(call(self.primary), timeout=self.timeout)
                except asyncio.TimeoutError:
                    await self._primary_failed(operation, f"timed out after {self.timeout}s")
                except NotImplementedError:
                    await self.breaker.release_probe(self.domain)
                    logger.info(
                        "Operation not supported by primary backend",
                        domain=self.domain,
                        operation=operation,
                    )
                except Exception as e:
                    await self._primary_failed(operation, str(e) or type(e).__name__)
                else:
                    await self.breaker.record_success(self.domain)
                    if result is not None or not fallback_on_none:
                        return result
                    logger.debug("Primary returned no result, trying fallback", operation=operation)

        return await call(self.fallback)

    async def _primary_failed(self, operation: str, reason: str) -> None:
        error = BackendUnavailable(self.domain, operation, reason)
        logger.warning(
            "Primary backend unavailable, using fallback",
            domain=error.domain,
            operation=error.operation,
            reason=error.reason,
        )
        await self.breaker.record_failure(self.domain, error_message=error.message)

    async def close(self) -> None:
        if self.primary is not None:
            await self.primary.close()
        await self.fallback.close()

    # Users

    async def list_users(self, institution_id: int) -> list[UserRecord]:
        return await self.try_primary("list_users", lambda repo: repo.list_users(institution_id))

    async def list_all_users(self) -> list[UserRecord]:
        return await self.try_primary("list_all_users", lambda repo: repo.list_all_users())

    async def get_user(self, institution_id: int, user_id: int) -> Optional[UserRecord]:
        return await self.try_primary(
            "get_user",
            lambda repo: repo.get_user(institution_id, user_id),
            fallback_on_none=True,
        )

    async def find_users_by_email(self, email: str, institution_id: Optional[int] = None) -> list[UserRecord]:
        return await self.try_primary(
            "find_users_by_email", lambda repo: repo.find_users_by_email(email, institution_id)
        )

    async def create_user(self, institution_id: int, values: dict[str, Any]) -> UserRecord:
        return await self.try_primary("create_user", lambda repo: repo.create_user(institution_id, values))

    async def update_user(self, user_id: int, values: dict[str, Any]) -> UserRecord:
        return await self.try_primary("update_user", lambda repo: repo.update_user(user_id, values))

    async def delete_user(self, user_id: int) -> None:
        return await self.try_primary("delete_user", lambda repo: repo.delete_user(user_id))

    # Roles and permissions

    async def list_roles(self, institution_id: int) -> list[RoleRecord]:
        return await self.try_primary("list_roles", lambda repo: repo.list_roles(institution_id))

    async def list_permissions(self, institution_id: int) -> list[PermissionRecord]:
        return await self.try_primary("list_permissions", lambda repo: repo.list_permissions(institution_id))

    async def list_role_permissions(self, institution_id: int) -> list[RolePermissionLink]:
        return await self.try_primary(
            "list_role_permissions", lambda repo: repo.list_role_permissions(institution_id)
        )

    async def create_role_permission(
        self, institution_id: int, role_id: int, permission_id: int
    ) -> RolePermissionLink:
        return await self.try_primary(
            "create_role_permission",
            lambda repo: repo.create_role_permission(institution_id, role_id, permission_id),
        )

    async def delete_role_permission(self, link_id: int) -> None:
        return await self.try_primary("delete_role_permission", lambda repo: repo.delete_role_permission(link_id))

    async def list_user_roles(self, institution_id: int) -> list[UserRoleLink]:
        return await self.try_primary("list_user_roles", lambda repo: repo.list_user_roles(institution_id))

    async def create_user_role(self, institution_id: int, user_id: int, role_id: int) -> UserRoleLink:
        return await self.try_primary(
            "create_user_role", lambda repo: repo.create_user_role(institution_id, user_id, role_id)
        )

    async def delete_user_role(self, link_id: int) -> None:
        return await self.try_primary("delete_user_role", lambda repo: repo.delete_user_role(link_id))

    # Menus

    async def list_menus(self, institution_id: int) -> list[MenuRecord]:
        return await self.try_primary("list_menus", lambda repo: repo.list_menus(institution_id))

    async def create_menus(self, institution_id: int, rows: list[dict[str, Any]]) -> list[MenuRecord]:
        return await self.try_primary("create_menus", lambda repo: repo.create_menus(institution_id, rows))

    async def set_menu_active(self, menu_id: int, is_active: bool) -> None:
        return await self.try_primary("set_menu_active", lambda repo: repo.set_menu_active(menu_id, is_active))

    # Per-user feature overrides

    async def list_feature_overrides(self, user_id: int, institution_id: int) -> list[FeatureOverrideRecord]:
        return await self.try_primary(
            "list_feature_overrides", lambda repo: repo.list_feature_overrides(user_id, institution_id)
        )

    async def create_feature_override(
        self, user_id: int, institution_id: int, feature_key: str, is_enabled: bool
    ) -> FeatureOverrideRecord:
        return await self.try_primary(
            "create_feature_override",
            lambda repo: repo.create_feature_override(user_id, institution_id, feature_key, is_enabled),
        )

    async def set_feature_override(self, override_id: int, is_enabled: bool) -> None:
        return await self.try_primary(
            "set_feature_override", lambda repo: repo.set_feature_override(override_id, is_enabled)
        )

    # Institution directory

    async def list_institution_configs(self) -> list[InstitutionConfigRecord]:
        return await self.try_primary("list_institution_configs", lambda repo: repo.list_institution_configs())

    # Audit

    async def record_audit(
        self,
        institution_id: int,
        acted_by_user_id: Optional[int],
        target_type: str,
        target_id: Optional[int],
        change_summary: str,
    ) -> None:
        return await self.try_primary(
            "record_audit",
            lambda repo: repo.record_audit(
                institution_id, acted_by_user_id, target_type, target_id, change_summary
            ),
        )
