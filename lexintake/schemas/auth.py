"""
Authentication schemas
"""

from typing import Optional

from pydantic import Field, field_validator

from lexintake.schemas.base import CamelSchema
from lexintake.schemas.users import UserSyncRequest


class LoginRequest(CamelSchema):
    email: str
    password: str = Field(..., min_length=1, repr=False)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class TokenResponse(CamelSchema):
    access_token: str
    token_type: str = "bearer"
    institution_id: int
    user_id: int
    legacy_user_id: str


class SyncUserRequest(UserSyncRequest):
    institution_id: Optional[int] = Field(default=None, gt=0)
