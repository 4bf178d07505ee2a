"""
Tabular Permissions Repository
Fallback backend: row-level CRUD against the Baserow REST API
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Callable, Optional, TypeVar

import httpx
import structlog

from lexintake.core.config import TABLE_IDS, settings
from lexintake.core.exceptions import ConfigurationError
from lexintake.repositories import adapters
from lexintake.repositories.adapters import INSTITUTION_FIELD
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

RecordType = TypeVar("RecordType")

USER_FIELDS = {
    "legacy_user_id": "legacy_user_id",
    "name": "name",
    "email": "email",
    "phone": "phone",
    "oab": "OAB",
    "password": "password",
    "is_active": "is_active",
    "is_office_admin": "is_office_admin",
    "receives_cases": "receives_cases",
}


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class TabularPermissionsRepository(PermissionsRepository):
    """
    Permissions repository backed by Baserow tables.

    Link columns are written as ``[id]`` and read back as ``[{"id": ...}]``
    cells; the shared adapters turn both into typed records.
    """

    backend_name = "tabular"

    def __init__(
        self,
        base_url: Optional[str],
        api_key: Optional[str],
        table_ids: Optional[dict[str, int]] = None,
        timeout: float = 15.0,
        page_size: int = 200,
        client: Optional[httpx.AsyncClient] = None,
    ):
        if not base_url:
            raise ConfigurationError("BASEROW_API_URL is not configured")
        if not api_key:
            raise ConfigurationError("BASEROW_API_KEY is not configured")

        self._tables = dict(TABLE_IDS if table_ids is None else table_ids)
        self._page_size = page_size
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._base_url = base_url.rstrip("/")
        self._headers = {
            "Authorization": f"Token {api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    @classmethod
    def from_settings(cls) -> "TabularPermissionsRepository":
        return cls(
            base_url=settings.BASEROW_API_URL,
            api_key=settings.BASEROW_API_KEY,
            timeout=settings.TABULAR_TIMEOUT_SECONDS,
            page_size=settings.BASEROW_PAGE_SIZE,
        )

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # ── HTTP helpers ────────────────────────────────────────────

    def _rows_url(self, table: str, row_id: Optional[int] = None) -> str:
        url = f"{self._base_url}/database/rows/table/{self._tables[table]}/"
        if row_id is not None:
            url += f"{row_id}/"
        return url

    async def _request(self, method: str, url: str, **kwargs) -> httpx.Response:
        response = await self._client.request(method, url, headers=self._headers, **kwargs)
        if response.status_code >= 400:
            logger.warning(
                "Tabular API request failed",
                method=method,
                url=url,
                status_code=response.status_code,
            )
        response.raise_for_status()
        return response

    async def _fetch_rows(self, table: str, filters: Optional[dict[str, Any]] = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"user_field_names": "true", "size": self._page_size}
        for field, value in (filters or {}).items():
            params[f"filter__{field}"] = str(value)

        rows: list[dict[str, Any]] = []
        page = 1
        while True:
            response = await self._request("GET", self._rows_url(table), params={**params, "page": page})
            payload = response.json()
            rows.extend(payload.get("results") or [])
            if not payload.get("next"):
                break
            page += 1

        logger.debug("Tabular rows retrieved", table=table, count=len(rows))
        return rows

    async def _list(
        self,
        table: str,
        adapter: Callable[[dict[str, Any]], RecordType],
        institution_id: Optional[int] = None,
        **filters: Any,
    ) -> list[RecordType]:
        if institution_id is not None:
            filters[f"{INSTITUTION_FIELD}__equal"] = institution_id
        rows = await self._fetch_rows(table, filters)
        return [adapter(row) for row in rows]

    async def _create(self, table: str, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "POST", self._rows_url(table), params={"user_field_names": "true"}, json=payload
        )
        return response.json()

    async def _patch(self, table: str, row_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        response = await self._request(
            "PATCH", self._rows_url(table, row_id), params={"user_field_names": "true"}, json=payload
        )
        return response.json()

    async def _delete(self, table: str, row_id: int) -> None:
        await self._request("DELETE", self._rows_url(table, row_id))

    # ── Users ───────────────────────────────────────────────────

    def _user_payload(self, values: dict[str, Any]) -> dict[str, Any]:
        return {USER_FIELDS[key]: value for key, value in values.items() if key in USER_FIELDS}

    async def list_users(self, institution_id: int) -> list[UserRecord]:
        return await self._list("users", adapters.user_from_row, institution_id)

    async def list_all_users(self) -> list[UserRecord]:
        return await self._list("users", adapters.user_from_row)

    async def get_user(self, institution_id: int, user_id: int) -> Optional[UserRecord]:
        response = await self._client.get(
            self._rows_url("users", user_id),
            headers=self._headers,
            params={"user_field_names": "true"},
        )
        if response.status_code == 404:
            return None
        response.raise_for_status()

        user = adapters.user_from_row(response.json())
        return user if user.institution_id == institution_id else None

    async def find_users_by_email(self, email: str, institution_id: Optional[int] = None) -> list[UserRecord]:
        normalized = email.strip().lower()
        # "contains" is case-insensitive on the API side; equality is checked here
        users = await self._list("users", adapters.user_from_row, institution_id, email__contains=normalized)
        return [user for user in users if user.email.lower() == normalized]

    async def create_user(self, institution_id: int, values: dict[str, Any]) -> UserRecord:
        now = _now_iso()
        payload = {
            INSTITUTION_FIELD: institution_id,
            **self._user_payload(values),
            "created_at": now,
            "updated_at": now,
        }
        row = await self._create("users", payload)
        return adapters.user_from_row(row)

    async def update_user(self, user_id: int, values: dict[str, Any]) -> UserRecord:
        payload = {**self._user_payload(values), "updated_at": _now_iso()}
        row = await self._patch("users", user_id, payload)
        return adapters.user_from_row(row)

    async def delete_user(self, user_id: int) -> None:
        await self._delete("users", user_id)

    # ── Roles and permissions ───────────────────────────────────

    async def list_roles(self, institution_id: int) -> list[RoleRecord]:
        return await self._list("roles", adapters.role_from_row, institution_id)

    async def list_permissions(self, institution_id: int) -> list[PermissionRecord]:
        return await self._list("permissions", adapters.permission_from_row, institution_id)

    async def list_role_permissions(self, institution_id: int) -> list[RolePermissionLink]:
        return await self._list("role_permissions", adapters.role_permission_from_row, institution_id)

    async def create_role_permission(
        self, institution_id: int, role_id: int, permission_id: int
    ) -> RolePermissionLink:
        row = await self._create(
            "role_permissions",
            {"role_id": [role_id], "permission_id": [permission_id], INSTITUTION_FIELD: institution_id},
        )
        return adapters.role_permission_from_row(row)

    async def delete_role_permission(self, link_id: int) -> None:
        await self._delete("role_permissions", link_id)

    async def list_user_roles(self, institution_id: int) -> list[UserRoleLink]:
        return await self._list("user_roles", adapters.user_role_from_row, institution_id)

    async def create_user_role(self, institution_id: int, user_id: int, role_id: int) -> UserRoleLink:
        row = await self._create(
            "user_roles",
            {"user_id": [user_id], "role_id": [role_id], INSTITUTION_FIELD: institution_id},
        )
        return adapters.user_role_from_row(row)

    async def delete_user_role(self, link_id: int) -> None:
        await self._delete("user_roles", link_id)

    # ── Menus ───────────────────────────────────────────────────

    async def list_menus(self, institution_id: int) -> list[MenuRecord]:
        return await self._list("menus", adapters.menu_from_row, institution_id)

    async def create_menus(self, institution_id: int, rows: list[dict[str, Any]]) -> list[MenuRecord]:
        if not rows:
            return []
        items = [
            {
                "label": row.get("label"),
                "path": row.get("path"),
                "display_order": row.get("display_order"),
                "is_active": row.get("is_active", True),
                INSTITUTION_FIELD: institution_id,
            }
            for row in rows
        ]
        response = await self._request(
            "POST",
            f"{self._rows_url('menus')}batch/",
            params={"user_field_names": "true"},
            json={"items": items},
        )
        created = response.json().get("items") or []
        logger.info("Menu rows created", institution_id=institution_id, count=len(created))
        return [adapters.menu_from_row(row) for row in created]

    async def set_menu_active(self, menu_id: int, is_active: bool) -> None:
        await self._patch("menus", menu_id, {"is_active": is_active})

    # ── Per-user feature overrides ──────────────────────────────

    async def list_feature_overrides(self, user_id: int, institution_id: int) -> list[FeatureOverrideRecord]:
        return await self._list(
            "user_features",
            adapters.feature_override_from_row,
            institution_id,
            user_id__equal=user_id,
        )

    async def create_feature_override(
        self, user_id: int, institution_id: int, feature_key: str, is_enabled: bool
    ) -> FeatureOverrideRecord:
        row = await self._create(
            "user_features",
            {
                "user_id": user_id,
                INSTITUTION_FIELD: institution_id,
                "feature_key": feature_key,
                "is_enabled": is_enabled,
            },
        )
        return adapters.feature_override_from_row(row)

    async def set_feature_override(self, override_id: int, is_enabled: bool) -> None:
        await self._patch("user_features", override_id, {"is_enabled": is_enabled})

    # ── Institution directory ───────────────────────────────────

    async def list_institution_configs(self) -> list[InstitutionConfigRecord]:
        return await self._list("institution_configs", adapters.institution_config_from_row)

    # ── Audit ───────────────────────────────────────────────────

    async def record_audit(
        self,
        institution_id: int,
        acted_by_user_id: Optional[int],
        target_type: str,
        target_id: Optional[int],
        change_summary: str,
    ) -> None:
        await self._create(
            "audit",
            {
                INSTITUTION_FIELD: institution_id,
                "acted_by_user_id": acted_by_user_id,
                "target_type": target_type,
                "target_id": target_id,
                "change_summary": change_summary,
                "created_at": _now_iso(),
            },
        )
