"""Who may confirm, cancel or move a booking, and when.

Rules run in a fixed order: ownership, terminal status, then the notice
window. Providers and elevated roles skip the notice window so they can
correct records after the fact.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime, time

from sqlalchemy.exc import IntegrityError

from backend.core import config
from backend.models.booking import (
    Booking,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_CONFIRMED,
    STATUS_SCHEDULED,
)
from backend.scheduling.ledger import BookingLedger
from backend.scheduling.outcomes import (
    BookingError,
    ErrorKind,
    Outcome,
    conflict,
    forbidden,
    not_found,
    validation_error,
)
from backend.scheduling.resolver import check_availability
from backend.scheduling.store import AvailabilityStore
from backend.scheduling.times import current_time, normalize_time, parse_date, scheduled_moment
from backend.scheduling.writer import slot_taken

logger = logging.getLogger(__name__)

ACTION_CANCEL = 'cancel'
ACTION_RESCHEDULE = 'reschedule'

_ACTION_VERBS = {ACTION_CANCEL: 'cancel', ACTION_RESCHEDULE: 'reschedule'}


@dataclass(frozen=True)
class Actor:
    user_id: int
    role: str
    provider_id: int | None = None
    resource_id: int | None = None

    @property
    def is_elevated(self) -> bool:
        return self.role in config.ELEVATED_ROLES

    def is_provider_for(self, booking: Booking) -> bool:
        if self.provider_id is not None and self.provider_id == booking.provider_id:
            return True
        return (
            self.role == 'center'
            and self.resource_id is not None
            and self.resource_id == booking.resource_id
        )

    def is_subject_of(self, booking: Booking) -> bool:
        return self.user_id == booking.subject_id

    def default_cancellation_reason(self, booking: Booking) -> str:
        if self.is_elevated:
            return 'Cancelled by administrator'
        if self.is_provider_for(booking):
            return 'Cancelled by provider'
        return 'Cancelled by patient'


def hours_until(booking: Booking, now: datetime) -> float:
    moment = scheduled_moment(booking.booking_date, booking.booking_time)
    return (moment - now).total_seconds() / 3600


def evaluate_change(booking: Booking, actor: Actor, action: str, now: datetime) -> BookingError | None:
    verb = _ACTION_VERBS[action]
    privileged = actor.is_elevated or actor.is_provider_for(booking)

    if not privileged and not actor.is_subject_of(booking):
        return BookingError(ErrorKind.FORBIDDEN, 'FORBIDDEN', f'You are not allowed to {verb} this booking.')

    if booking.status == STATUS_CANCELLED:
        if action == ACTION_CANCEL:
            return BookingError(ErrorKind.CONFLICT, 'ALREADY_CANCELLED', 'This booking is already cancelled.')
        return BookingError(ErrorKind.CONFLICT, 'BOOKING_CANCELLED', 'Cannot reschedule a cancelled booking.')

    if booking.status == STATUS_COMPLETED:
        return BookingError(ErrorKind.CONFLICT, 'BOOKING_COMPLETED', f'Cannot {verb} a completed booking.')

    if privileged:
        return None

    remaining = hours_until(booking, now)
    if remaining <= 0:
        return BookingError(
            ErrorKind.CONFLICT,
            'BOOKING_IN_PAST',
            f'Cannot {verb} a past booking.',
            {'hours_remaining': round(remaining, 2)},
        )

    window = config.CANCELLATION_WINDOW_HOURS
    if remaining < window:
        return BookingError(
            ErrorKind.CONFLICT,
            'CHANGE_WINDOW_CLOSED',
            (
                f'Cannot {verb} within {window} hours of the scheduled time. '
                f'Your booking is in {remaining:.1f} hours. Please contact the provider for assistance.'
            ),
            {'hours_remaining': round(remaining, 2), 'window_hours': window},
        )

    return None


def cancel_booking(
    ledger: BookingLedger,
    booking_id: int,
    actor: Actor,
    reason: str | None = None,
    now: datetime | None = None,
) -> Outcome[Booking]:
    booking = ledger.get(booking_id)
    if booking is None:
        return not_found('BOOKING_NOT_FOUND', 'Booking not found.')

    now = now or current_time()
    error = evaluate_change(booking, actor, ACTION_CANCEL, now)
    if error is not None:
        logger.info('Refused cancellation of booking %s by user %s: %s', booking_id, actor.user_id, error.code)
        return Outcome(error=error)

    reason = reason.strip() if reason else ''
    booking.status = STATUS_CANCELLED
    booking.cancellation_reason = reason or actor.default_cancellation_reason(booking)
    booking.updated_at = now
    ledger.commit()
    ledger.refresh(booking)

    logger.info('Booking %s cancelled by user %s', booking_id, actor.user_id)
    return Outcome.success(booking)


def confirm_booking(
    ledger: BookingLedger,
    booking_id: int,
    actor: Actor,
    now: datetime | None = None,
) -> Outcome[Booking]:
    booking = ledger.get(booking_id)
    if booking is None:
        return not_found('BOOKING_NOT_FOUND', 'Booking not found.')

    if not actor.is_elevated and not actor.is_provider_for(booking):
        return forbidden('Only the provider can confirm this booking.')

    if booking.status != STATUS_SCHEDULED:
        return conflict(
            'BOOKING_NOT_PENDING',
            f'Cannot confirm a booking with status: {booking.status}.',
            status=booking.status,
        )

    booking.status = STATUS_CONFIRMED
    booking.updated_at = now or current_time()
    ledger.commit()
    ledger.refresh(booking)

    logger.info('Booking %s confirmed by user %s', booking_id, actor.user_id)
    return Outcome.success(booking)


def reschedule_booking(
    store: AvailabilityStore,
    ledger: BookingLedger,
    booking_id: int,
    actor: Actor,
    new_date: date | str | None,
    new_time: str | time | None,
    now: datetime | None = None,
) -> Outcome[Booking]:
    booking = ledger.get(booking_id)
    if booking is None:
        return not_found('BOOKING_NOT_FOUND', 'Booking not found.')

    now = now or current_time()
    error = evaluate_change(booking, actor, ACTION_RESCHEDULE, now)
    if error is not None:
        logger.info('Refused reschedule of booking %s by user %s: %s', booking_id, actor.user_id, error.code)
        return Outcome(error=error)

    if not new_date or not new_time:
        return validation_error('MISSING_FIELD', 'New date and time are required.')
    try:
        new_date = parse_date(new_date)
    except ValueError as exc:
        return validation_error('INVALID_DATE', str(exc))
    try:
        new_time = normalize_time(new_time)
    except ValueError as exc:
        return validation_error('INVALID_TIME', str(exc))

    privileged = actor.is_elevated or actor.is_provider_for(booking)
    if not privileged and scheduled_moment(new_date, new_time) <= now:
        return validation_error('BOOKING_IN_PAST', 'Bookings must be scheduled in the future.')

    day = check_availability(
        store,
        ledger,
        booking.kind,
        booking.provider_id,
        booking.resource_id,
        new_date,
        exclude_booking_id=booking.id,
        now=now,
    )
    if not day.is_available_day:
        return validation_error(
            'PROVIDER_UNAVAILABLE',
            f'The provider is {day.reason} ({new_date.isoformat()}).',
            reason=day.reason,
        )

    slot = day.find(new_time)
    if slot is None:
        return validation_error(
            'SLOT_NOT_OFFERED',
            f'{new_time} is not an offered time slot on {new_date.isoformat()}.',
        )
    if slot.is_booked:
        return slot_taken(new_date, new_time)

    existing = ledger.find_conflict(
        booking.kind,
        booking.provider_id,
        booking.resource_id,
        new_date,
        new_time,
        exclude_booking_id=booking.id,
    )
    if existing is not None:
        return slot_taken(new_date, new_time)

    previous = (booking.booking_date, booking.booking_time)
    scope = (booking.kind, booking.provider_id, booking.resource_id)
    try:
        ledger.lock_provider(booking.provider_id)
        booking.booking_date = new_date
        booking.booking_time = new_time
        booking.status = STATUS_SCHEDULED
        booking.updated_at = now
        ledger.flush()
        if ledger.find_conflict(*scope, new_date, new_time, exclude_booking_id=booking_id) is not None:
            ledger.rollback()
            logger.warning('Concurrent booking took %s %s before booking %s could move', new_date, new_time, booking_id)
            return slot_taken(new_date, new_time)
        ledger.commit()
    except IntegrityError:
        ledger.rollback()
        if ledger.find_conflict(*scope, new_date, new_time, exclude_booking_id=booking_id) is None:
            raise
        logger.warning('Store rejected reschedule of booking %s to %s %s', booking_id, new_date, new_time)
        return slot_taken(new_date, new_time)

    ledger.refresh(booking)
    logger.info(
        'Booking %s moved from %s %s to %s %s by user %s',
        booking_id,
        previous[0],
        previous[1],
        new_date,
        new_time,
        actor.user_id,
    )
    return Outcome.success(booking)
