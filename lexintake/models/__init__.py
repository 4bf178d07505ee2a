"""
Database Models
SQLAlchemy models for the relational permissions backend
"""

from lexintake.models.base import BaseModel, InstitutionScopedModel, TimestampMixin
from lexintake.models.user import User
from lexintake.models.rbac import Menu, Permission, Role, RolePermission, UserRole
from lexintake.models.feature import UserFeatureOverride
from lexintake.models.audit import PermissionAudit
from lexintake.models.institution import InstitutionConfig

__all__ = [
    "BaseModel",
    "InstitutionScopedModel",
    "TimestampMixin",
    "User",
    "Role",
    "Permission",
    "Menu",
    "RolePermission",
    "UserRole",
    "UserFeatureOverride",
    "PermissionAudit",
    "InstitutionConfig",
]
