"""
Typed records returned by every repository implementation.

Services only ever see these; raw backend rows are converted by
``lexintake.repositories.adapters``.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field

from lexintake.schemas.base import BaseSchema


class UserRecord(BaseSchema):
    id: int
    institution_id: Optional[int] = None
    legacy_user_id: Optional[str] = None
    name: str = ""
    email: str = ""
    phone: str = ""
    oab: str = ""
    password: Optional[str] = Field(default=None, repr=False)
    is_active: bool = True
    is_office_admin: bool = False
    receives_cases: bool = False


class RoleRecord(BaseSchema):
    id: int
    institution_id: Optional[int] = None
    name: str = ""
    description: Optional[str] = None
    is_system: bool = False

    @property
    def is_sysadmin_role(self) -> bool:
        return self.name.strip().lower() == "sysadmin"


class PermissionRecord(BaseSchema):
    id: int
    institution_id: Optional[int] = None
    code: str = ""
    description: Optional[str] = None
    menu_id: Optional[int] = None


class MenuRecord(BaseSchema):
    id: int
    institution_id: Optional[int] = None
    label: str = ""
    path: Optional[str] = None
    parent_id: Optional[int] = None
    display_order: Optional[int] = None
    is_active: bool = True


class RolePermissionLink(BaseSchema):
    id: int
    role_id: Optional[int] = None
    permission_id: Optional[int] = None


class UserRoleLink(BaseSchema):
    id: int
    user_id: Optional[int] = None
    role_id: Optional[int] = None


class FeatureOverrideRecord(BaseSchema):
    id: int
    user_id: int
    institution_id: int
    feature_key: str
    is_enabled: bool = False


class InstitutionConfigRecord(BaseSchema):
    id: int
    institution_id: Optional[int] = None
    company_name: str = ""
