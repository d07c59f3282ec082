"""Booking model definitions."""

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, Numeric, String, func, text
from backend.database import ACTIVE_STATUS_PREDICATE, Base

KIND_APPOINTMENT = 'appointment'
KIND_LAB_TEST = 'lab_test'
BOOKING_KINDS = (KIND_APPOINTMENT, KIND_LAB_TEST)
# Kinds whose providers share a resource without overlapping, e.g. lab test services in one center.
EXCLUSIVE_RESOURCE_KINDS = (KIND_LAB_TEST,)

STATUS_SCHEDULED = 'scheduled'
STATUS_CONFIRMED = 'confirmed'
STATUS_COMPLETED = 'completed'
STATUS_CANCELLED = 'cancelled'
ACTIVE_STATUSES = (STATUS_SCHEDULED, STATUS_CONFIRMED)
ABSENT_REASON = 'absent'

_active = text(ACTIVE_STATUS_PREDICATE)
_active_unscoped = text(f'resource_id IS NULL AND {ACTIVE_STATUS_PREDICATE}')


class Booking(Base):
    """An appointment with a doctor or a lab test booking at a center."""
    __tablename__ = "bookings"
    __table_args__ = (
        Index(
            'uq_bookings_active_slot',
            'kind', 'provider_id', 'resource_id', 'booking_date', 'booking_time',
            unique=True,
            postgresql_where=_active,
            sqlite_where=_active,
        ),
        # Null resources never collide in the index above.
        Index(
            'uq_bookings_active_unscoped_slot',
            'kind', 'provider_id', 'booking_date', 'booking_time',
            unique=True,
            postgresql_where=_active_unscoped,
            sqlite_where=_active_unscoped,
        ),
        Index('idx_bookings_provider_date', 'provider_id', 'booking_date'),
    )

    id = Column(Integer, primary_key=True)
    kind = Column(String(20), nullable=False, default='appointment')
    subject_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    provider_id = Column(Integer, ForeignKey("providers.id"), nullable=False)
    resource_id = Column(Integer, ForeignKey("resources.id"), nullable=True)
    booking_date = Column(Date, nullable=False)
    booking_time = Column(String(8), nullable=False)
    status = Column(String(20), nullable=False, default=STATUS_SCHEDULED)
    cancellation_reason = Column(String, nullable=True)
    fee = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(String, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
