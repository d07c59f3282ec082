from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from backend.core import config
from backend.scheduling.times import MINUTES_PER_DAY, day_of_week, from_minutes, to_minutes


@dataclass(frozen=True)
class Slot:
    time: str
    duration_minutes: int
    fee: Decimal | None = None

    @property
    def start_minutes(self) -> int:
        return to_minutes(self.time)

    @property
    def end_minutes(self) -> int:
        return self.start_minutes + self.duration_minutes

    @property
    def end_time(self) -> str:
        return from_minutes(self.end_minutes % MINUTES_PER_DAY)


def _default_duration(template) -> int:
    duration = template.slot_duration_minutes
    if duration and duration > 0:
        return duration
    return config.DEFAULT_SLOT_DURATION_MINUTES


def _explicit_slots(template) -> list[Slot]:
    seen: dict[str, Slot] = {}
    for entry in template.slots:
        normalized = from_minutes(to_minutes(entry.start_time))
        if normalized in seen:
            continue
        duration = entry.duration_minutes if entry.duration_minutes and entry.duration_minutes > 0 else None
        seen[normalized] = Slot(
            time=normalized,
            duration_minutes=duration or _default_duration(template),
            fee=entry.fee if entry.fee is not None else template.fee,
        )
    return sorted(seen.values(), key=lambda slot: slot.start_minutes)


def _range_slots(template) -> list[Slot]:
    if not template.start_time or not template.end_time:
        return []

    duration = template.slot_duration_minutes
    if not duration or duration <= 0:
        return []

    start = to_minutes(template.start_time)
    end = to_minutes(template.end_time)
    slots: list[Slot] = []
    current = start
    # Only whole slots; a trailing partial interval would overrun the window.
    while current + duration <= end:
        slots.append(Slot(time=from_minutes(current), duration_minutes=duration, fee=template.fee))
        current += duration
    return slots


def template_slots(template) -> list[Slot]:
    """Slots a template offers on any day it applies to, ascending by start."""
    if template is None or not template.is_available:
        return []
    if template.slots:
        return _explicit_slots(template)
    return _range_slots(template)


def generate_slots(template, target_date: date) -> list[Slot]:
    if template is None or template.day_of_week != day_of_week(target_date):
        return []
    return template_slots(template)
