"""User model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, String
from backend.database import Base


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    hashed_password = Column(String)
    role = Column(String)  # patient/doctor/center/admin/super_admin
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=True)
