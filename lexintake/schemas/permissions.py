"""
Permission resolution and administration schemas.

Field names are snake_case in Python and camelCase on the wire; the admin
flags keep the ``isSysAdmin`` spelling the web client already reads.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from lexintake.schemas.base import CamelSchema
from lexintake.schemas.users import PublicUser


class PermissionsStatus(CamelSchema):
    is_sysadmin: bool = Field(False, alias="isSysAdmin")
    is_global_admin: bool = False
    is_office_admin: bool = False
    user_id: int = 0
    enabled_pages: list[str] = Field(default_factory=list)
    enabled_actions: list[str] = Field(default_factory=list)


class RoleView(CamelSchema):
    id: int
    name: str
    description: Optional[str] = None
    is_system: bool = False
    # "sysadmin" for the escalation role, so clients need not match on name
    kind: Optional[str] = None
    permission_ids: list[int] = Field(default_factory=list)


class PermissionView(CamelSchema):
    id: int
    code: str
    description: Optional[str] = None
    menu_id: Optional[int] = None


class MenuView(CamelSchema):
    id: int
    label: str
    path: Optional[str] = None
    parent_id: Optional[int] = None
    display_order: Optional[int] = None
    is_active: bool = True


class UserRoleView(CamelSchema):
    id: int
    user_id: Optional[int] = None
    role_id: Optional[int] = None


class PermissionsOverview(CamelSchema):
    is_sysadmin: bool = Field(False, alias="isSysAdmin")
    is_global_admin: bool = False
    target_institution_id: Optional[int] = None
    roles: list[RoleView] = Field(default_factory=list)
    permissions: list[PermissionView] = Field(default_factory=list)
    menus: list[MenuView] = Field(default_factory=list)
    users: list[PublicUser] = Field(default_factory=list)
    user_roles: list[UserRoleView] = Field(default_factory=list)


class InstitutionFeature(CamelSchema):
    key: str
    path: str
    label: str
    is_enabled: bool = True
    menu_row_id: Optional[int] = None


class InstitutionSummary(CamelSchema):
    institution_id: int
    company_name: str


class UserFeatureSetting(CamelSchema):
    key: str
    label: str
    path: Optional[str] = None
    kind: str = "page"
    is_enabled: bool = False


# Requests


class RolePermissionsUpdate(CamelSchema):
    permission_ids: list[int] = Field(default_factory=list)
    target_institution_id: Optional[int] = None


class UserRolesUpdate(CamelSchema):
    role_ids: list[int] = Field(default_factory=list)
    target_institution_id: Optional[int] = None


class InstitutionFeaturesUpdate(CamelSchema):
    target_institution_id: Optional[int] = None
    features: dict[str, bool] = Field(default_factory=dict)


class UserFeaturesUpdate(CamelSchema):
    features: dict[str, bool] = Field(default_factory=dict)


# Responses


class InstitutionFeatureList(CamelSchema):
    features: list[InstitutionFeature] = Field(default_factory=list)


class UserFeatureSettingList(CamelSchema):
    user_id: int
    features: list[UserFeatureSetting] = Field(default_factory=list)


class InstitutionList(CamelSchema):
    institutions: list[InstitutionSummary] = Field(default_factory=list)
