"""
User Feature Override Model
"""

from sqlalchemy import Boolean, Column, Index, Integer, String

from lexintake.models.base import BaseModel


class UserFeatureOverride(BaseModel):
    """Per-(user, institution) toggle of one configurable feature key"""
    __tablename__ = "user_features"

    user_id = Column(Integer, nullable=False)
    institution_id = Column(Integer, nullable=False)
    feature_key = Column(String(100), nullable=False)
    is_enabled = Column(Boolean, default=False, nullable=True)

    __table_args__ = (
        Index("ix_user_features_user_institution", "user_id", "institution_id"),
    )

    def __repr__(self):
        return f"<UserFeatureOverride(user_id={self.user_id}, key='{self.feature_key}', enabled={self.is_enabled})>"
