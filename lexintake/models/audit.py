"""
Permission Audit Model
Append-only trail of admin mutations
"""

from sqlalchemy import Column, DateTime, Integer, String, Text
from sqlalchemy.sql import func

from lexintake.models.base import InstitutionScopedModel


class PermissionAudit(InstitutionScopedModel):
    __tablename__ = "permission_audit"

    acted_by_user_id = Column(Integer, nullable=True)
    target_type = Column(String(50), nullable=False)
    target_id = Column(Integer, nullable=True)
    change_summary = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
