"""
Institution user schemas for CRUD operations.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator

from lexintake.schemas.base import CamelSchema
from lexintake.schemas.records import UserRecord


def _normalize_email(value: Optional[str]) -> Optional[str]:
    if value is None:
        return value
    value = value.strip().lower()
    if not value:
        raise ValueError("Email is required")
    return value


class PublicUser(CamelSchema):
    """User projection safe to return to clients; never carries the password"""
    id: int
    institution_id: Optional[int] = None
    legacy_user_id: Optional[str] = None
    name: str = ""
    email: str = ""
    phone: str = ""
    oab: str = ""
    is_active: bool = True
    is_office_admin: bool = False
    receives_cases: bool = False

    @classmethod
    def from_record(cls, user: UserRecord) -> "PublicUser":
        return cls.model_validate(user.model_dump(exclude={"password"}))


class UserCreateRequest(CamelSchema):
    name: str = Field(..., min_length=1, max_length=200)
    email: str = Field(..., description="Unique within the institution")
    password: Optional[str] = Field(default=None, min_length=6, repr=False)
    phone: str = ""
    oab: str = ""
    legacy_user_id: Optional[str] = None
    is_active: bool = True
    is_office_admin: bool = False
    receives_cases: bool = False

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: str) -> str:
        return _normalize_email(value)


class UserUpdateRequest(CamelSchema):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    email: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6, repr=False)
    phone: Optional[str] = None
    oab: Optional[str] = None
    is_active: Optional[bool] = None
    is_office_admin: Optional[bool] = None
    receives_cases: Optional[bool] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, value: Optional[str]) -> Optional[str]:
        return _normalize_email(value)


class UserSyncRequest(CamelSchema):
    legacy_user_id: str = Field(..., min_length=1)
    name: str = ""
    email: str = ""
    phone: str = ""
    oab: str = ""
    is_active: Optional[bool] = None
    is_office_admin: Optional[bool] = None
    receives_cases: Optional[bool] = None


class UserSyncResult(CamelSchema):
    created: bool
    user: PublicUser


class BackfillResult(CamelSchema):
    updated: int = 0
    skipped: int = 0


class UserList(CamelSchema):
    users: list[PublicUser] = Field(default_factory=list)
