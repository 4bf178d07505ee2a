"""
Institution Configuration Model
"""

from sqlalchemy import Column, Integer, String

from lexintake.models.base import BaseModel


class InstitutionConfig(BaseModel):
    """Tenant configuration row; only the directory fields are mapped"""
    __tablename__ = "institution_configs"

    institution_id = Column(Integer, nullable=True, index=True)
    company_name = Column(String(255), nullable=True)

    def __repr__(self):
        return f"<InstitutionConfig(institution_id={self.institution_id}, company_name='{self.company_name}')>"
