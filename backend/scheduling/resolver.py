import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal

from backend.core import config
from backend.scheduling.ledger import BookingLedger, occupies
from backend.scheduling.slots import Slot, generate_slots, template_slots
from backend.scheduling.store import AvailabilityStore
from backend.scheduling.times import (
    current_time,
    day_of_week,
    iterate_dates,
    normalize_time,
    parse_date,
    scheduled_moment,
)

logger = logging.getLogger(__name__)

NOT_AVAILABLE_REASON = 'not available this day'
VACATION_REASON = 'on vacation'


@dataclass(frozen=True)
class SlotAvailability:
    time: str
    end_time: str
    duration_minutes: int
    fee: Decimal | None
    is_booked: bool
    is_past: bool = False

    @property
    def is_available(self) -> bool:
        return not self.is_booked and not self.is_past


@dataclass(frozen=True)
class DayAvailability:
    date: date
    day_of_week: int
    is_available_day: bool
    reason: str | None = None
    slots: list[SlotAvailability] = field(default_factory=list)

    @property
    def available_slots(self) -> list[SlotAvailability]:
        return [slot for slot in self.slots if slot.is_available]

    def find(self, slot_time: str) -> SlotAvailability | None:
        wanted = normalize_time(slot_time)
        for slot in self.slots:
            if slot.time == wanted:
                return slot
        return None


def taken_times(bookings, resource_id: int | None, exclude_booking_id: int | None = None) -> set[str]:
    taken: set[str] = set()
    for booking in bookings:
        if exclude_booking_id is not None and booking.id == exclude_booking_id:
            continue
        if not occupies(booking.resource_id, resource_id):
            continue
        try:
            taken.add(normalize_time(booking.booking_time))
        except ValueError:
            logger.warning('Skipping booking %s with unreadable time %r', booking.id, booking.booking_time)
    return taken


def resolve_slots(
    slots: list[Slot],
    bookings,
    resource_id: int | None,
    exclude_booking_id: int | None = None,
    now: datetime | None = None,
    target_date: date | None = None,
) -> list[SlotAvailability]:
    taken = taken_times(bookings, resource_id, exclude_booking_id)
    resolved: list[SlotAvailability] = []
    for slot in slots:
        is_past = False
        if now is not None and target_date is not None:
            is_past = scheduled_moment(target_date, slot.time) <= now
        resolved.append(
            SlotAvailability(
                time=slot.time,
                end_time=slot.end_time,
                duration_minutes=slot.duration_minutes,
                fee=slot.fee,
                is_booked=slot.time in taken,
                is_past=is_past,
            )
        )
    return resolved


def check_availability(
    store: AvailabilityStore,
    ledger: BookingLedger,
    kind: str,
    provider_id: int,
    resource_id: int | None,
    target_date: date | str,
    exclude_booking_id: int | None = None,
    now: datetime | None = None,
) -> DayAvailability:
    """Annotate every slot a provider offers on a date as booked or free.

    Raises ValueError for a malformed date before touching the store. A day
    without a template, marked unavailable, or inside a vacation yields an
    empty slot list rather than an error.
    """
    target_date = parse_date(target_date)
    weekday = day_of_week(target_date)

    if store.vacation_for(provider_id, target_date) is not None:
        return DayAvailability(date=target_date, day_of_week=weekday, is_available_day=False, reason=VACATION_REASON)

    template = store.get_template(kind, provider_id, resource_id, weekday)
    slots = generate_slots(template, target_date)
    if not slots:
        return DayAvailability(
            date=target_date,
            day_of_week=weekday,
            is_available_day=False,
            reason=NOT_AVAILABLE_REASON,
        )

    bookings = ledger.active_bookings(kind, provider_id, target_date)
    return DayAvailability(
        date=target_date,
        day_of_week=weekday,
        is_available_day=True,
        slots=resolve_slots(
            slots,
            bookings,
            resource_id,
            exclude_booking_id=exclude_booking_id,
            now=now or current_time(),
            target_date=target_date,
        ),
    )


def list_available_dates(
    store: AvailabilityStore,
    kind: str,
    provider_id: int,
    resource_id: int | None,
    start_date: date | str,
    end_date: date | str,
) -> list[date]:
    start_date = parse_date(start_date)
    end_date = parse_date(end_date)
    if end_date < start_date:
        raise ValueError('end_date must not be before start_date.')
    if (end_date - start_date).days > config.AVAILABLE_DATES_MAX_RANGE_DAYS:
        raise ValueError(f'Date range cannot exceed {config.AVAILABLE_DATES_MAX_RANGE_DAYS} days.')

    working_days = {
        template.day_of_week
        for template in store.list_templates(kind, provider_id, resource_id)
        if template_slots(template)
    }
    vacations = store.vacations_between(provider_id, start_date, end_date)

    return [
        current
        for current in iterate_dates(start_date, end_date)
        if day_of_week(current) in working_days
        and not any(vacation.start_date <= current <= vacation.end_date for vacation in vacations)
    ]
