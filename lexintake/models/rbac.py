"""
RBAC Models
Roles, permissions, menus and the join rows linking them
"""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, Text

from lexintake.models.base import InstitutionScopedModel, TimestampMixin


class Role(InstitutionScopedModel, TimestampMixin):
    """Named permission bundle; the role called "sysadmin" grants full access"""
    __tablename__ = "roles"

    name = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    is_system = Column(Boolean, default=False, nullable=True)

    def __repr__(self):
        return f"<Role(id={self.id}, name='{self.name}')>"


class Menu(InstitutionScopedModel):
    """Per-institution enable flag for one static feature path"""
    __tablename__ = "menus"

    label = Column(String(100), nullable=True)
    path = Column(String(255), nullable=True, index=True)
    parent_id = Column(Integer, ForeignKey("menus.id", ondelete="SET NULL"), nullable=True)
    display_order = Column(Integer, nullable=True)
    is_active = Column(Boolean, default=True, nullable=True)

    def __repr__(self):
        return f"<Menu(id={self.id}, path='{self.path}', is_active={self.is_active})>"


class Permission(InstitutionScopedModel):
    """Atomic grantable capability"""
    __tablename__ = "permissions"

    code = Column(String(100), nullable=True)
    description = Column(Text, nullable=True)
    menu_id = Column(Integer, ForeignKey("menus.id", ondelete="SET NULL"), nullable=True)

    def __repr__(self):
        return f"<Permission(id={self.id}, code='{self.code}')>"


class RolePermission(InstitutionScopedModel):
    """Role <-> Permission link; duplicates are resolved by diffing, not constraints"""
    __tablename__ = "role_permissions"

    role_id = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False)


class UserRole(InstitutionScopedModel):
    """User <-> Role link"""
    __tablename__ = "user_roles"

    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    role_id = Column(Integer, ForeignKey("roles.id", ondelete="CASCADE"), nullable=False)
