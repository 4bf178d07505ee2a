"""
Row adapters.

Both backends hand rows to these functions as plain mappings: the tabular
API returns loosely typed JSON (string booleans, link cells shaped as
``[{"id": 3, "value": "..."}]``) and the relational backend returns column
values. Each entity has exactly one adapter so coercion rules live in one
place.
"""

from __future__ import annotations

from typing import Any, Mapping, Optional

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

INSTITUTION_FIELD = "institution_id"

# Tenant configuration rows keep their settings under dotted field names
CONFIG_INSTITUTION_FIELD = "body.auth.institutionId"
CONFIG_COMPANY_FIELD = "body.tenant.companyName"


def coerce_active(value: Any) -> bool:
    """Truthiness of loosely typed "active" flags"""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() not in ("false", "0", "")
    return value is not None and value is not False and value != 0


def coerce_enabled(value: Any) -> bool:
    """Override flags are only on when explicitly true"""
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() == "true"


def coerce_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number


def coerce_positive_int(value: Any) -> Optional[int]:
    number = coerce_int(value)
    return number if number is not None and number > 0 else None


def coerce_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def extract_link_ids(value: Any) -> list[int]:
    """Ids out of a link cell; plain ints are accepted as single links"""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        value = [value]
    ids = []
    for entry in value:
        if isinstance(entry, Mapping):
            entry = entry.get("id")
        if isinstance(entry, int) and not isinstance(entry, bool):
            ids.append(entry)
    return ids


def first_link_id(value: Any) -> Optional[int]:
    ids = extract_link_ids(value)
    return ids[0] if ids else None


def user_from_row(row: Mapping[str, Any]) -> UserRecord:
    legacy = row.get("legacy_user_id")
    is_active = row.get("is_active")
    return UserRecord(
        id=int(row["id"]),
        institution_id=coerce_positive_int(row.get(INSTITUTION_FIELD)),
        legacy_user_id=str(legacy).strip() if legacy not in (None, "") else None,
        name=coerce_text(row.get("name")),
        email=coerce_text(row.get("email")),
        phone=coerce_text(row.get("phone")),
        oab=coerce_text(row.get("oab", row.get("OAB"))),
        password=row.get("password") or None,
        is_active=True if is_active is None else coerce_active(is_active),
        is_office_admin=coerce_enabled(row.get("is_office_admin")),
        receives_cases=coerce_enabled(row.get("receives_cases")),
    )


def role_from_row(row: Mapping[str, Any]) -> RoleRecord:
    role_id = int(row["id"])
    name = row.get("name")
    return RoleRecord(
        id=role_id,
        institution_id=coerce_positive_int(row.get(INSTITUTION_FIELD)),
        name=coerce_text(name) if name else f"Role #{role_id}",
        description=row.get("description") or None,
        is_system=coerce_enabled(row.get("is_system")),
    )


def permission_from_row(row: Mapping[str, Any]) -> PermissionRecord:
    permission_id = int(row["id"])
    code = row.get("code")
    return PermissionRecord(
        id=permission_id,
        institution_id=coerce_positive_int(row.get(INSTITUTION_FIELD)),
        code=coerce_text(code) if code else f"perm_{permission_id}",
        description=row.get("description") or None,
        menu_id=first_link_id(row.get("menu_id")),
    )


def menu_from_row(row: Mapping[str, Any]) -> MenuRecord:
    menu_id = int(row["id"])
    label = row.get("label")
    path = row.get("path")
    return MenuRecord(
        id=menu_id,
        institution_id=coerce_positive_int(row.get(INSTITUTION_FIELD)),
        label=coerce_text(label) if label else f"Menu #{menu_id}",
        path=coerce_text(path) or None,
        parent_id=first_link_id(row.get("parent_id")),
        display_order=coerce_int(row.get("display_order")),
        is_active=coerce_active(row.get("is_active")),
    )


def role_permission_from_row(row: Mapping[str, Any]) -> RolePermissionLink:
    return RolePermissionLink(
        id=int(row["id"]),
        role_id=first_link_id(row.get("role_id")),
        permission_id=first_link_id(row.get("permission_id")),
    )


def user_role_from_row(row: Mapping[str, Any]) -> UserRoleLink:
    return UserRoleLink(
        id=int(row["id"]),
        user_id=first_link_id(row.get("user_id")),
        role_id=first_link_id(row.get("role_id")),
    )


def feature_override_from_row(row: Mapping[str, Any]) -> FeatureOverrideRecord:
    return FeatureOverrideRecord(
        id=int(row["id"]),
        user_id=coerce_int(row.get("user_id")) or 0,
        institution_id=coerce_int(row.get(INSTITUTION_FIELD)) or 0,
        feature_key=coerce_text(row.get("feature_key")),
        is_enabled=coerce_enabled(row.get("is_enabled")),
    )


def institution_config_from_row(row: Mapping[str, Any]) -> InstitutionConfigRecord:
    institution_id = row.get(CONFIG_INSTITUTION_FIELD, row.get(INSTITUTION_FIELD))
    company_name = row.get(CONFIG_COMPANY_FIELD, row.get("company_name"))
    return InstitutionConfigRecord(
        id=int(row["id"]),
        institution_id=coerce_positive_int(institution_id),
        company_name=company_name.strip() if isinstance(company_name, str) else "",
    )
