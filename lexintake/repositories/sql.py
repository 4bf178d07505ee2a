"""
Relational Permissions Repository
Primary backend: typed table access over an async SQLAlchemy session
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional, Type, TypeVar

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lexintake.core.database import Base
from lexintake.models import (
    InstitutionConfig,
    Menu,
    Permission,
    PermissionAudit,
    Role,
    RolePermission,
    User,
    UserFeatureOverride,
    UserRole,
)
from lexintake.repositories import adapters
from lexintake.repositories.base import PermissionsRepository
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

ModelType = TypeVar("ModelType", bound=Base)
RecordType = TypeVar("RecordType")

USER_COLUMNS = {
    "legacy_user_id",
    "name",
    "email",
    "phone",
    "oab",
    "password",
    "is_active",
    "is_office_admin",
    "receives_cases",
}


def _as_mapping(obj: Any) -> dict[str, Any]:
    return {column.name: getattr(obj, column.name) for column in obj.__table__.columns}


class SqlPermissionsRepository(PermissionsRepository):
    """
    Permissions repository backed by the relational database.

    Each operation opens its own session so calls can run concurrently
    from independent requests.
    """

    backend_name = "sql"

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def _list(
        self,
        model: Type[ModelType],
        adapter: Callable[[dict[str, Any]], RecordType],
        *conditions,
    ) -> list[RecordType]:
        try:
            async with self._session_factory() as session:
                query = select(model).where(*conditions).order_by(model.id)
                result = await session.execute(query)
                rows = result.scalars().all()
        except Exception as e:
            logger.error("Error listing records", model=model.__name__, error=str(e))
            raise

        logger.debug("Records retrieved", model=model.__name__, count=len(rows))
        return [adapter(_as_mapping(row)) for row in rows]

    async def _insert(self, obj: ModelType, adapter: Callable[[dict[str, Any]], RecordType]) -> RecordType:
        try:
            async with self._session_factory() as session:
                session.add(obj)
                await session.commit()
                await session.refresh(obj)
        except Exception as e:
            logger.error("Error creating record", model=type(obj).__name__, error=str(e))
            raise

        logger.debug("Record created", model=type(obj).__name__, id=obj.id)
        return adapter(_as_mapping(obj))

    async def _delete(self, model: Type[ModelType], row_id: int) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(delete(model).where(model.id == row_id))
                await session.commit()
        except Exception as e:
            logger.error("Error deleting record", model=model.__name__, id=row_id, error=str(e))
            raise

        logger.debug("Record deleted", model=model.__name__, id=row_id)

    async def _update(self, model: Type[ModelType], row_id: int, values: dict[str, Any]) -> None:
        try:
            async with self._session_factory() as session:
                await session.execute(update(model).where(model.id == row_id).values(**values))
                await session.commit()
        except Exception as e:
            logger.error("Error updating record", model=model.__name__, id=row_id, error=str(e))
            raise

    # Users

    async def list_users(self, institution_id: int) -> list[UserRecord]:
        return await self._list(User, adapters.user_from_row, User.institution_id == institution_id)

    async def list_all_users(self) -> list[UserRecord]:
        return await self._list(User, adapters.user_from_row)

    async def get_user(self, institution_id: int, user_id: int) -> Optional[UserRecord]:
        users = await self._list(
            User,
            adapters.user_from_row,
            User.id == user_id,
            User.institution_id == institution_id,
        )
        return users[0] if users else None

    async def find_users_by_email(self, email: str, institution_id: Optional[int] = None) -> list[UserRecord]:
        normalized = email.strip().lower()
        conditions = [func.lower(func.trim(User.email)) == normalized]
        if institution_id is not None:
            conditions.append(User.institution_id == institution_id)
        return await self._list(User, adapters.user_from_row, *conditions)

    async def create_user(self, institution_id: int, values: dict[str, Any]) -> UserRecord:
        fields = {key: value for key, value in values.items() if key in USER_COLUMNS}
        user = User(institution_id=institution_id, **fields)
        return await self._insert(user, adapters.user_from_row)

    async def update_user(self, user_id: int, values: dict[str, Any]) -> UserRecord:
        fields = {key: value for key, value in values.items() if key in USER_COLUMNS}
        fields["updated_at"] = datetime.now(timezone.utc)
        await self._update(User, user_id, fields)

        users = await self._list(User, adapters.user_from_row, User.id == user_id)
        if not users:
            raise LookupError(f"user {user_id} vanished during update")
        return users[0]

    async def delete_user(self, user_id: int) -> None:
        await self._delete(User, user_id)

    # Roles and permissions

    async def list_roles(self, institution_id: int) -> list[RoleRecord]:
        return await self._list(Role, adapters.role_from_row, Role.institution_id == institution_id)

    async def list_permissions(self, institution_id: int) -> list[PermissionRecord]:
        return await self._list(
            Permission, adapters.permission_from_row, Permission.institution_id == institution_id
        )

    async def list_role_permissions(self, institution_id: int) -> list[RolePermissionLink]:
        return await self._list(
            RolePermission,
            adapters.role_permission_from_row,
            RolePermission.institution_id == institution_id,
        )

    async def create_role_permission(
        self, institution_id: int, role_id: int, permission_id: int
    ) -> RolePermissionLink:
        link = RolePermission(institution_id=institution_id, role_id=role_id, permission_id=permission_id)
        return await self._insert(link, adapters.role_permission_from_row)

    async def delete_role_permission(self, link_id: int) -> None:
        await self._delete(RolePermission, link_id)

    async def list_user_roles(self, institution_id: int) -> list[UserRoleLink]:
        return await self._list(
            UserRole, adapters.user_role_from_row, UserRole.institution_id == institution_id
        )

    async def create_user_role(self, institution_id: int, user_id: int, role_id: int) -> UserRoleLink:
        link = UserRole(institution_id=institution_id, user_id=user_id, role_id=role_id)
        return await self._insert(link, adapters.user_role_from_row)

    async def delete_user_role(self, link_id: int) -> None:
        await self._delete(UserRole, link_id)

    # Menus

    async def list_menus(self, institution_id: int) -> list[MenuRecord]:
        return await self._list(Menu, adapters.menu_from_row, Menu.institution_id == institution_id)

    async def create_menus(self, institution_id: int, rows: list[dict[str, Any]]) -> list[MenuRecord]:
        if not rows:
            return []
        menus = [
            Menu(
                institution_id=institution_id,
                label=row.get("label"),
                path=row.get("path"),
                display_order=row.get("display_order"),
                is_active=row.get("is_active", True),
            )
            for row in rows
        ]
        try:
            async with self._session_factory() as session:
                session.add_all(menus)
                await session.commit()
                for menu in menus:
                    await session.refresh(menu)
        except Exception as e:
            logger.error("Error creating menu rows", institution_id=institution_id, error=str(e))
            raise

        logger.info("Menu rows created", institution_id=institution_id, count=len(menus))
        return [adapters.menu_from_row(_as_mapping(menu)) for menu in menus]

    async def set_menu_active(self, menu_id: int, is_active: bool) -> None:
        await self._update(Menu, menu_id, {"is_active": is_active})

    # Per-user feature overrides

    async def list_feature_overrides(self, user_id: int, institution_id: int) -> list[FeatureOverrideRecord]:
        return await self._list(
            UserFeatureOverride,
            adapters.feature_override_from_row,
            UserFeatureOverride.user_id == user_id,
            UserFeatureOverride.institution_id == institution_id,
        )

    async def create_feature_override(
        self, user_id: int, institution_id: int, feature_key: str, is_enabled: bool
    ) -> FeatureOverrideRecord:
        override = UserFeatureOverride(
            user_id=user_id,
            institution_id=institution_id,
            feature_key=feature_key,
            is_enabled=is_enabled,
        )
        return await self._insert(override, adapters.feature_override_from_row)

    async def set_feature_override(self, override_id: int, is_enabled: bool) -> None:
        await self._update(UserFeatureOverride, override_id, {"is_enabled": is_enabled})

    # Institution directory

    async def list_institution_configs(self) -> list[InstitutionConfigRecord]:
        return await self._list(InstitutionConfig, adapters.institution_config_from_row)

    # Audit

    async def record_audit(
        self,
        institution_id: int,
        acted_by_user_id: Optional[int],
        target_type: str,
        target_id: Optional[int],
        change_summary: str,
    ) -> None:
        entry = PermissionAudit(
            institution_id=institution_id,
            acted_by_user_id=acted_by_user_id,
            target_type=target_type,
            target_id=target_id,
            change_summary=change_summary,
        )
        await self._insert(entry, lambda row: row)
