"""
Base Model Classes
Common fields for the permissions schema
"""

from sqlalchemy import Column, DateTime, Integer
from sqlalchemy.sql import func

from lexintake.core.database import Base


class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at = Column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


class IntegerIdMixin:
    """Mixin for serial primary key, matching the tabular API row ids"""
    id = Column(Integer, primary_key=True, autoincrement=True)


class BaseModel(Base, IntegerIdMixin):
    """Base model with an integer id"""
    __abstract__ = True


class InstitutionScopedModel(BaseModel):
    """Base model for rows owned by one institution"""
    __abstract__ = True

    institution_id = Column(Integer, nullable=False, index=True)
