"""Availability model definitions."""

from sqlalchemy import Boolean, Column, Date, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship
from backend.database import Base


class AvailabilityTemplate(Base):
    """Weekly availability of a provider at a resource for one day of the week.

    A template either lists explicit slots or describes a range
    (start_time, end_time, slot_duration_minutes) that is cut into slots.
    """
    __tablename__ = "availability_templates"
    __table_args__ = (
        UniqueConstraint('kind', 'provider_id', 'resource_id', 'day_of_week', name='uq_availability_template_day'),
    )

    id = Column(Integer, primary_key=True)
    kind = Column(String(20), nullable=False, default='appointment')
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=True)
    day_of_week = Column(Integer, nullable=False)  # 0 = Sunday
    is_available = Column(Boolean, nullable=False, default=True)
    start_time = Column(String(8), nullable=True)
    end_time = Column(String(8), nullable=True)
    slot_duration_minutes = Column(Integer, nullable=True)
    fee = Column(Numeric(10, 2), nullable=True)

    slots = relationship(
        "AvailabilityTemplateSlot",
        order_by="AvailabilityTemplateSlot.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class AvailabilityTemplateSlot(Base):
    """An explicit slot start within a template."""
    __tablename__ = "availability_template_slots"

    id = Column(Integer, primary_key=True)
    template_id = Column(Integer, ForeignKey("availability_templates.id", ondelete="CASCADE"), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    start_time = Column(String(8), nullable=False)
    duration_minutes = Column(Integer, nullable=True)
    fee = Column(Numeric(10, 2), nullable=True)


class ProviderVacation(Base):
    """A date range (inclusive) during which a provider takes no bookings."""
    __tablename__ = "provider_vacations"

    id = Column(Integer, primary_key=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    reason = Column(String, nullable=True)
