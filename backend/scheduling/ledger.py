from datetime import date, datetime

from sqlalchemy import or_, update
from sqlalchemy.orm import Session

from backend.models.booking import ACTIVE_STATUSES, Booking, STATUS_CANCELLED
from backend.models.provider import Provider
from backend.scheduling.times import normalize_time


def occupies(booking_resource_id: int | None, requested_resource_id: int | None) -> bool:
    """Whether an active booking blocks the requested resource at its time.

    A booking without a resource predates resource scheduling and is treated
    as blocking every resource of its provider. A request without a resource
    is provider-only scheduling, which any booking of the provider blocks.
    """
    if booking_resource_id is None or requested_resource_id is None:
        return True
    return booking_resource_id == requested_resource_id


class BookingLedger:
    """Queryable view over persisted bookings for one session."""

    def __init__(self, session: Session):
        self.session = session

    def get(self, booking_id: int) -> Booking | None:
        return self.session.get(Booking, booking_id)

    def active_bookings(self, kind: str, provider_id: int, booking_date: date) -> list[Booking]:
        return self.session.query(Booking).filter(
            Booking.kind == kind,
            Booking.provider_id == provider_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(ACTIVE_STATUSES),
        ).all()

    def find_conflict(
        self,
        kind: str,
        provider_id: int,
        resource_id: int | None,
        booking_date: date,
        booking_time: str,
        exclude_booking_id: int | None = None,
    ) -> Booking | None:
        wanted = normalize_time(booking_time)
        query = self.session.query(Booking).filter(
            Booking.kind == kind,
            Booking.provider_id == provider_id,
            Booking.booking_date == booking_date,
            Booking.status.in_(ACTIVE_STATUSES),
        )
        if resource_id is not None:
            query = query.filter(or_(Booking.resource_id == resource_id, Booking.resource_id.is_(None)))
        if exclude_booking_id is not None:
            query = query.filter(Booking.id != exclude_booking_id)

        for booking in query.order_by(Booking.id.asc()).all():
            try:
                same_time = normalize_time(booking.booking_time) == wanted
            except ValueError:
                continue
            if same_time and occupies(booking.resource_id, resource_id):
                return booking
        return None

    def list_for_subject(self, subject_id: int, kind: str | None = None) -> list[Booking]:
        query = self.session.query(Booking).filter(Booking.subject_id == subject_id)
        if kind is not None:
            query = query.filter(Booking.kind == kind)
        return query.order_by(Booking.booking_date.asc(), Booking.booking_time.asc()).all()

    def list_for_provider(
        self,
        provider_id: int,
        kind: str | None = None,
        resource_id: int | None = None,
    ) -> list[Booking]:
        query = self.session.query(Booking).filter(Booking.provider_id == provider_id)
        if kind is not None:
            query = query.filter(Booking.kind == kind)
        if resource_id is not None:
            query = query.filter(Booking.resource_id == resource_id)
        return query.order_by(Booking.booking_date.asc(), Booking.booking_time.asc()).all()

    def sweep_candidates(
        self,
        on_or_before: date,
        kind: str | None = None,
        provider_id: int | None = None,
        subject_id: int | None = None,
    ) -> list[Booking]:
        query = self.session.query(Booking).filter(
            Booking.status.in_(ACTIVE_STATUSES),
            Booking.booking_date <= on_or_before,
        )
        if kind is not None:
            query = query.filter(Booking.kind == kind)
        if provider_id is not None:
            query = query.filter(Booking.provider_id == provider_id)
        if subject_id is not None:
            query = query.filter(Booking.subject_id == subject_id)
        return query.all()

    def cancel_many(self, booking_ids: list[int], reason: str, at: datetime) -> int:
        if not booking_ids:
            return 0
        result = self.session.execute(
            update(Booking)
            .where(Booking.id.in_(booking_ids), Booking.status.in_(ACTIVE_STATUSES))
            .values(status=STATUS_CANCELLED, cancellation_reason=reason, updated_at=at)
            .execution_options(synchronize_session='fetch')
        )
        self.session.commit()
        return result.rowcount or 0

    def lock_provider(self, provider_id: int) -> None:
        """Hold the provider row until the transaction ends so its writers queue up.

        SQLite ignores FOR UPDATE; its single writer lock already serializes
        transactions once one of them has flushed.
        """
        self.session.query(Provider).filter(Provider.id == provider_id).with_for_update().first()

    def add(self, booking: Booking) -> Booking:
        self.session.add(booking)
        self.session.flush()
        return booking

    def flush(self) -> None:
        self.session.flush()

    def commit(self) -> None:
        self.session.commit()

    def refresh(self, booking: Booking) -> None:
        self.session.refresh(booking)

    def rollback(self) -> None:
        self.session.rollback()
