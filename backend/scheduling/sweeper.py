import logging
from datetime import datetime

from backend.models.booking import ABSENT_REASON
from backend.scheduling.ledger import BookingLedger
from backend.scheduling.times import current_time, scheduled_moment

logger = logging.getLogger(__name__)


def mark_past_bookings_absent(
    ledger: BookingLedger,
    *,
    kind: str | None = None,
    provider_id: int | None = None,
    subject_id: int | None = None,
    now: datetime | None = None,
) -> list[int]:
    """Cancel active bookings whose moment has passed, with reason ``absent``.

    Runs lazily before booking lists are read. The update is guarded by the
    active-status predicate, so repeated or overlapping runs are harmless.
    """
    now = now or current_time()
    candidates = ledger.sweep_candidates(now.date(), kind=kind, provider_id=provider_id, subject_id=subject_id)

    past_ids: list[int] = []
    for booking in candidates:
        try:
            moment = scheduled_moment(booking.booking_date, booking.booking_time)
        except ValueError:
            logger.warning('Skipping booking %s with unreadable time %r', booking.id, booking.booking_time)
            continue
        if moment < now:
            past_ids.append(booking.id)

    if not past_ids:
        return []

    updated = ledger.cancel_many(past_ids, ABSENT_REASON, now)
    logger.info('Marked %s past booking(s) absent (provider=%s, subject=%s)', updated, provider_id, subject_id)
    return past_ids
