import logging
from datetime import date, datetime, time
from decimal import Decimal

from sqlalchemy.exc import IntegrityError

from backend.models.booking import Booking, STATUS_SCHEDULED
from backend.scheduling.ledger import BookingLedger
from backend.scheduling.outcomes import Outcome, conflict, forbidden, not_found, validation_error
from backend.scheduling.resolver import check_availability
from backend.scheduling.store import AvailabilityStore
from backend.scheduling.times import current_time, normalize_time, parse_date, scheduled_moment

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = 'This time slot is already booked. Please choose another time.'


def resolve_fee(explicit_fee, slot_fee, provider_default_fee) -> Decimal:
    for candidate in (explicit_fee, slot_fee, provider_default_fee):
        if candidate is not None:
            return Decimal(str(candidate))
    return Decimal('0')


def slot_taken(booking_date: date, booking_time: str, **details) -> Outcome:
    return conflict(
        'SLOT_ALREADY_BOOKED',
        SLOT_TAKEN_MESSAGE,
        date=booking_date.isoformat(),
        time=booking_time,
        **details,
    )


def check_provider_at_resource(store: AvailabilityStore, kind: str, provider_id: int, resource_id: int | None):
    """Return ``(provider, None)``, or ``(None, failure)`` when the pairing is unusable."""
    provider = store.get_provider(provider_id)
    if provider is None or provider.kind != kind:
        return None, not_found('PROVIDER_NOT_FOUND', 'Provider not found.')

    if resource_id is not None:
        if store.get_resource(resource_id) is None:
            return None, not_found('RESOURCE_NOT_FOUND', 'Center not found.')
        if not store.is_associated(provider_id, resource_id):
            return None, forbidden(
                'This provider does not take bookings at the selected center.',
                code='PROVIDER_NOT_AT_RESOURCE',
            )

    return provider, None


def create_booking(
    store: AvailabilityStore,
    ledger: BookingLedger,
    *,
    kind: str,
    subject_id: int | None,
    provider_id: int | None,
    resource_id: int | None,
    booking_date: date | str | None,
    booking_time: str | time | None,
    fee: Decimal | float | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Outcome[Booking]:
    missing = [
        name
        for name, value in (
            ('subject_id', subject_id),
            ('provider_id', provider_id),
            ('date', booking_date),
            ('time', booking_time),
        )
        if value is None or value == ''
    ]
    if missing:
        return validation_error('MISSING_FIELD', f"Missing required field(s): {', '.join(missing)}.", fields=missing)

    try:
        booking_date = parse_date(booking_date)
    except ValueError as exc:
        return validation_error('INVALID_DATE', str(exc))
    try:
        booking_time = normalize_time(booking_time)
    except ValueError as exc:
        return validation_error('INVALID_TIME', str(exc))

    provider, failure = check_provider_at_resource(store, kind, provider_id, resource_id)
    if failure is not None:
        return failure

    now = now or current_time()
    if scheduled_moment(booking_date, booking_time) <= now:
        return validation_error('BOOKING_IN_PAST', 'Bookings must be scheduled in the future.')

    day = check_availability(store, ledger, kind, provider_id, resource_id, booking_date, now=now)
    if not day.is_available_day:
        return validation_error(
            'PROVIDER_UNAVAILABLE',
            f'The provider is {day.reason} ({booking_date.isoformat()}).',
            reason=day.reason,
        )

    slot = day.find(booking_time)
    if slot is None:
        return validation_error(
            'SLOT_NOT_OFFERED',
            f'{booking_time} is not an offered time slot on {booking_date.isoformat()}.',
        )

    # Fast path only; the provider lock, the re-read and the unique indexes settle races.
    existing = ledger.find_conflict(kind, provider_id, resource_id, booking_date, booking_time)
    if existing is not None:
        logger.info('Rejected booking for provider %s at %s %s: slot taken', provider_id, booking_date, booking_time)
        return slot_taken(booking_date, booking_time)

    booking = Booking(
        kind=kind,
        subject_id=subject_id,
        provider_id=provider_id,
        resource_id=resource_id,
        booking_date=booking_date,
        booking_time=booking_time,
        status=STATUS_SCHEDULED,
        fee=resolve_fee(fee, slot.fee, provider.default_fee),
        notes=notes,
    )

    try:
        ledger.lock_provider(provider_id)
        ledger.add(booking)
        # The unique indexes cannot see a null resource colliding with a set one.
        clash = ledger.find_conflict(
            kind,
            provider_id,
            resource_id,
            booking_date,
            booking_time,
            exclude_booking_id=booking.id,
        )
        if clash is not None:
            clash_id = clash.id
            ledger.rollback()
            logger.warning(
                'Booking %s already holds provider %s at %s %s; rejecting concurrent booking',
                clash_id,
                provider_id,
                booking_date,
                booking_time,
            )
            return slot_taken(booking_date, booking_time)
        ledger.commit()
    except IntegrityError:
        ledger.rollback()
        if ledger.find_conflict(kind, provider_id, resource_id, booking_date, booking_time) is None:
            raise
        logger.warning(
            'Store rejected concurrent booking for provider %s at %s %s',
            provider_id,
            booking_date,
            booking_time,
        )
        return slot_taken(booking_date, booking_time)

    ledger.refresh(booking)
    logger.info('Created %s booking %s for subject %s', kind, booking.id, subject_id)
    return Outcome.success(booking)
