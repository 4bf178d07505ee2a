"""
User Model
Login-capable people of an institution
"""

from sqlalchemy import Boolean, Column, Index, String

from lexintake.models.base import InstitutionScopedModel, TimestampMixin


class User(InstitutionScopedModel, TimestampMixin):
    """User row; email is unique per institution, not globally"""
    __tablename__ = "users"

    legacy_user_id = Column(String(255), nullable=True, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(254), nullable=True)
    phone = Column(String(50), nullable=True)
    oab = Column(String(50), nullable=True)
    password = Column(String(255), nullable=True)

    is_active = Column(Boolean, default=True, nullable=True)
    is_office_admin = Column(Boolean, default=False, nullable=True)
    receives_cases = Column(Boolean, default=False, nullable=True)

    __table_args__ = (
        Index("ix_users_institution_email", "institution_id", "email"),
        Index("ix_users_institution_legacy", "institution_id", "legacy_user_id"),
    )

    def __repr__(self):
        return f"<User(id={self.id}, institution_id={self.institution_id}, email='{self.email}')>"
