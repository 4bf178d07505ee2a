"""
Permissions Repository Contract
Every backend implements the same institution-scoped operation set
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Optional

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

PERMISSIONS_DOMAIN = "permissions"


class OperationNotSupported(NotImplementedError):
    """Raised by a backend that cannot serve an operation for a domain"""


class PermissionsRepository(ABC):
    """
    Storage contract for users, RBAC entities, menus and feature overrides.

    Implementations must be behaviorally equivalent: same institution
    scoping, same case-insensitive email matching, and records coerced by
    the shared adapters. Lookups that find nothing return ``None`` or an
    empty list; backend failures raise.
    """

    backend_name: str = "unknown"

    # Users

    @abstractmethod
    async def list_users(self, institution_id: int) -> list[UserRecord]:
        ...

    @abstractmethod
    async def list_all_users(self) -> list[UserRecord]:
        ...

    @abstractmethod
    async def get_user(self, institution_id: int, user_id: int) -> Optional[UserRecord]:
        """The user, only when it belongs to the institution"""

    @abstractmethod
    async def find_users_by_email(self, email: str, institution_id: Optional[int] = None) -> list[UserRecord]:
        """Case-insensitive exact match, optionally restricted to one institution"""

    @abstractmethod
    async def create_user(self, institution_id: int, values: dict[str, Any]) -> UserRecord:
        ...

    @abstractmethod
    async def update_user(self, user_id: int, values: dict[str, Any]) -> UserRecord:
        ...

    @abstractmethod
    async def delete_user(self, user_id: int) -> None:
        ...

    # Roles and permissions

    @abstractmethod
    async def list_roles(self, institution_id: int) -> list[RoleRecord]:
        ...

    @abstractmethod
    async def list_permissions(self, institution_id: int) -> list[PermissionRecord]:
        ...

    @abstractmethod
    async def list_role_permissions(self, institution_id: int) -> list[RolePermissionLink]:
        ...

    @abstractmethod
    async def create_role_permission(
        self, institution_id: int, role_id: int, permission_id: int
    ) -> RolePermissionLink:
        ...

    @abstractmethod
    async def delete_role_permission(self, link_id: int) -> None:
        ...

    @abstractmethod
    async def list_user_roles(self, institution_id: int) -> list[UserRoleLink]:
        ...

    @abstractmethod
    async def create_user_role(self, institution_id: int, user_id: int, role_id: int) -> UserRoleLink:
        ...

    @abstractmethod
    async def delete_user_role(self, link_id: int) -> None:
        ...

    # Menus

    @abstractmethod
    async def list_menus(self, institution_id: int) -> list[MenuRecord]:
        ...

    @abstractmethod
    async def create_menus(self, institution_id: int, rows: list[dict[str, Any]]) -> list[MenuRecord]:
        """Create several menu rows in one call; results keep the input order"""

    @abstractmethod
    async def set_menu_active(self, menu_id: int, is_active: bool) -> None:
        ...

    # Per-user feature overrides

    @abstractmethod
    async def list_feature_overrides(self, user_id: int, institution_id: int) -> list[FeatureOverrideRecord]:
        ...

    @abstractmethod
    async def create_feature_override(
        self, user_id: int, institution_id: int, feature_key: str, is_enabled: bool
    ) -> FeatureOverrideRecord:
        ...

    @abstractmethod
    async def set_feature_override(self, override_id: int, is_enabled: bool) -> None:
        ...

    # Institution directory

    @abstractmethod
    async def list_institution_configs(self) -> list[InstitutionConfigRecord]:
        """Tenant configuration rows of every institution, in storage order"""

    # Audit

    @abstractmethod
    async def record_audit(
        self,
        institution_id: int,
        acted_by_user_id: Optional[int],
        target_type: str,
        target_id: Optional[int],
        change_summary: str,
    ) -> None:
        ...

    async def close(self) -> None:
        """Release connections held by the backend"""
        return None
