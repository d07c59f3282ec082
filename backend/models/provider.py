"""Provider and resource model definitions."""

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String
from backend.database import Base


class Provider(Base):
    """A doctor or lab test service that publishes weekly availability."""
    __tablename__ = "providers"

    id = Column(Integer, primary_key=True)
    kind = Column(String(20), nullable=False, default="appointment")
    name = Column(String, nullable=False)
    default_fee = Column(Numeric(10, 2), nullable=True)


class Resource(Base):
    """A physical center where bookings take place."""
    __tablename__ = "resources"

    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)


class ProviderResource(Base):
    """Records that a provider operates at a resource."""
    __tablename__ = "provider_resources"

    provider_id = Column(Integer, ForeignKey("providers.id"), primary_key=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), primary_key=True)
