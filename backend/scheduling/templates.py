import logging

from backend.models.availability import AvailabilityTemplate, AvailabilityTemplateSlot
from backend.models.booking import EXCLUSIVE_RESOURCE_KINDS
from backend.scheduling.outcomes import Outcome, conflict, forbidden, validation_error
from backend.scheduling.policy import Actor
from backend.scheduling.slots import template_slots
from backend.scheduling.store import AvailabilityStore
from backend.scheduling.times import normalize_time
from backend.scheduling.writer import check_provider_at_resource

logger = logging.getLogger(__name__)

DAY_NAMES = ['Sunday', 'Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday']


def build_template(kind: str, provider_id: int, resource_id: int | None, day) -> AvailabilityTemplate:
    template = AvailabilityTemplate(
        kind=kind,
        provider_id=provider_id,
        resource_id=resource_id,
        day_of_week=day.day_of_week,
        is_available=day.is_available,
        start_time=normalize_time(day.start_time) if day.start_time else None,
        end_time=normalize_time(day.end_time) if day.end_time else None,
        slot_duration_minutes=day.slot_duration_minutes,
        fee=day.fee,
    )
    for position, entry in enumerate(day.slots or []):
        template.slots.append(
            AvailabilityTemplateSlot(
                position=position,
                start_time=normalize_time(entry.start_time),
                duration_minutes=entry.duration_minutes,
                fee=entry.fee,
            )
        )
    return template


def validate_day(template: AvailabilityTemplate) -> str | None:
    day_name = DAY_NAMES[template.day_of_week]
    if not template.is_available or template.slots:
        return None
    if not template.start_time or not template.end_time:
        return f'{day_name}: start_time and end_time are required when no explicit slots are given.'
    if not template.slot_duration_minutes or template.slot_duration_minutes <= 0:
        return f'{day_name}: slot_duration_minutes must be positive.'
    if normalize_time(template.end_time) <= normalize_time(template.start_time):
        return f'{day_name}: end_time must be after start_time.'
    if not template_slots(template):
        return f'{day_name}: the range is shorter than one slot.'
    return None


def find_overlaps(templates: list[AvailabilityTemplate], others: list[AvailabilityTemplate]) -> list[str]:
    conflicts: list[str] = []
    for template in templates:
        day_name = DAY_NAMES[template.day_of_week]
        for other in others:
            if other.day_of_week != template.day_of_week:
                continue
            for slot in template_slots(template):
                for existing in template_slots(other):
                    if slot.start_minutes < existing.end_minutes and slot.end_minutes > existing.start_minutes:
                        conflicts.append(
                            f'{day_name} at {slot.time} conflicts with provider {other.provider_id} at {existing.time}'
                        )
    return conflicts


def can_publish(actor: Actor, provider_id: int, resource_id: int | None) -> bool:
    if actor.is_elevated or actor.provider_id == provider_id:
        return True
    return actor.role == 'center' and resource_id is not None and actor.resource_id == resource_id


def replace_weekly_template(
    store: AvailabilityStore,
    *,
    kind: str,
    provider_id: int,
    resource_id: int | None,
    days: list,
    actor: Actor,
) -> Outcome[list[AvailabilityTemplate]]:
    """Replace every template of a provider at a resource in one commit."""
    if not can_publish(actor, provider_id, resource_id):
        return forbidden("You are not allowed to change this provider's schedule.")

    _, failure = check_provider_at_resource(store, kind, provider_id, resource_id)
    if failure is not None:
        return failure

    seen_days = [day.day_of_week for day in days]
    duplicates = sorted({day for day in seen_days if seen_days.count(day) > 1})
    if duplicates:
        return validation_error(
            'INVALID_TEMPLATE',
            'Each day of the week may appear only once.',
            days=duplicates,
        )
    if any(not 0 <= day <= 6 for day in seen_days):
        return validation_error('INVALID_TEMPLATE', 'day_of_week must be between 0 (Sunday) and 6 (Saturday).')

    try:
        templates = [build_template(kind, provider_id, resource_id, day) for day in days]
    except ValueError as exc:
        return validation_error('INVALID_TIME', str(exc))

    problems = [problem for problem in (validate_day(template) for template in templates) if problem]
    if problems:
        return validation_error('INVALID_TEMPLATE', problems[0], problems=problems)

    if kind in EXCLUSIVE_RESOURCE_KINDS and resource_id is not None:
        others = store.list_resource_templates(kind, resource_id, exclude_provider_id=provider_id)
        conflicts = find_overlaps([template for template in templates if template.is_available], others)
        if conflicts:
            return conflict(
                'TEMPLATE_OVERLAP',
                'Time slots cannot overlap another service at the same center on the same day.',
                conflicts=conflicts,
            )

    saved = store.replace_templates(kind, provider_id, resource_id, templates)
    logger.info(
        'Replaced %s %s template day(s) for provider %s at resource %s',
        len(saved),
        kind,
        provider_id,
        resource_id,
    )
    return Outcome.success(saved)
