from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError

from backend.auth.dependencies import get_current_actor
from backend.routes.common import (
    BookingKind,
    bad_request,
    database_failure,
    ensure_database_ready,
    forbidden,
    get_availability_store,
    get_booking_ledger,
    not_found,
    raise_for_error,
)
from backend.scheduling.ledger import BookingLedger
from backend.scheduling.policy import Actor
from backend.scheduling.resolver import DayAvailability, check_availability, list_available_dates
from backend.scheduling.store import AvailabilityStore
from backend.scheduling.templates import can_publish, replace_weekly_template
from backend.scheduling.times import normalize_time, parse_date

router = APIRouter(tags=['availability'])

MAX_VACATION_REASON_LENGTH = 300


def _normalize_optional_time(value: str | None) -> str | None:
    if value is None or not value.strip():
        return None
    return normalize_time(value)


class TemplateSlotRequest(BaseModel):
    start_time: str
    duration_minutes: int | None = Field(default=None, gt=0)
    fee: Decimal | None = Field(default=None, ge=0)

    @field_validator('start_time')
    @classmethod
    def validate_start_time(cls, value: str) -> str:
        return normalize_time(value)


class DayTemplateRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    is_available: bool = True
    start_time: str | None = None
    end_time: str | None = None
    slot_duration_minutes: int | None = Field(default=None, gt=0)
    slots: list[TemplateSlotRequest] = Field(default_factory=list)
    fee: Decimal | None = Field(default=None, ge=0)

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str | None) -> str | None:
        return _normalize_optional_time(value)

    @model_validator(mode='after')
    def validate_shape(self) -> 'DayTemplateRequest':
        if self.is_available and not self.slots:
            if not (self.start_time and self.end_time and self.slot_duration_minutes):
                raise ValueError('Provide either explicit slots or start_time, end_time and slot_duration_minutes.')
        return self


class ReplaceTemplateRequest(BaseModel):
    resource_id: int | None = None
    days: list[DayTemplateRequest]


class TemplateSlotResponse(BaseModel):
    start_time: str
    duration_minutes: int | None = None
    fee: Decimal | None = None

    class Config:
        from_attributes = True


class DayTemplateResponse(BaseModel):
    id: int
    kind: str
    provider_id: int
    resource_id: int | None = None
    day_of_week: int
    is_available: bool
    start_time: str | None = None
    end_time: str | None = None
    slot_duration_minutes: int | None = None
    fee: Decimal | None = None
    slots: list[TemplateSlotResponse] = []

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    time: str
    end_time: str
    duration_minutes: int
    fee: Decimal | None = None
    is_booked: bool
    is_past: bool
    is_available: bool


class DayAvailabilityResponse(BaseModel):
    kind: str
    provider_id: int
    resource_id: int | None = None
    date: date
    day_of_week: int
    is_available_day: bool
    reason: str | None = None
    slots: list[SlotResponse]
    available_slots: list[str]
    booked_slots: list[str]


class AvailableDatesResponse(BaseModel):
    kind: str
    provider_id: int
    resource_id: int | None = None
    start_date: date
    end_date: date
    available_dates: list[date]


class CreateVacationRequest(BaseModel):
    start_date: date
    end_date: date
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_VACATION_REASON_LENGTH:
            raise ValueError(f'Reason must be {MAX_VACATION_REASON_LENGTH} characters or fewer.')

        return normalized

    @model_validator(mode='after')
    def validate_range(self) -> 'CreateVacationRequest':
        if self.end_date < self.start_date:
            raise ValueError('end_date must not be before start_date.')
        return self


class VacationResponse(BaseModel):
    id: int
    provider_id: int
    start_date: date
    end_date: date
    reason: str | None = None

    class Config:
        from_attributes = True


def build_day_response(
    kind: str,
    provider_id: int,
    resource_id: int | None,
    day: DayAvailability,
) -> DayAvailabilityResponse:
    return DayAvailabilityResponse(
        kind=kind,
        provider_id=provider_id,
        resource_id=resource_id,
        date=day.date,
        day_of_week=day.day_of_week,
        is_available_day=day.is_available_day,
        reason=day.reason,
        slots=[
            SlotResponse(
                time=slot.time,
                end_time=slot.end_time,
                duration_minutes=slot.duration_minutes,
                fee=slot.fee,
                is_booked=slot.is_booked,
                is_past=slot.is_past,
                is_available=slot.is_available,
            )
            for slot in day.slots
        ],
        available_slots=[slot.time for slot in day.available_slots],
        booked_slots=[slot.time for slot in day.slots if slot.is_booked],
    )


@router.get('/{kind}/providers/{provider_id}/slots', response_model=DayAvailabilityResponse)
def get_available_slots(
    kind: BookingKind,
    provider_id: int,
    date: str = Query(..., description='YYYY-MM-DD'),
    resource_id: int | None = Query(default=None),
    exclude_booking_id: int | None = Query(default=None),
    store: AvailabilityStore = Depends(get_availability_store),
    ledger: BookingLedger = Depends(get_booking_ledger),
):
    try:
        target_date = parse_date(date)
    except ValueError as exc:
        raise bad_request('INVALID_DATE', str(exc)) from exc

    ensure_database_ready()

    try:
        day = check_availability(
            store,
            ledger,
            kind.value,
            provider_id,
            resource_id,
            target_date,
            exclude_booking_id=exclude_booking_id,
        )
        return build_day_response(kind.value, provider_id, resource_id, day)
    except SQLAlchemyError as exc:
        raise database_failure(exc, store.session, 'resolving slots') from exc


@router.get('/{kind}/providers/{provider_id}/dates', response_model=AvailableDatesResponse)
def get_available_dates(
    kind: BookingKind,
    provider_id: int,
    start_date: str = Query(...),
    end_date: str = Query(...),
    resource_id: int | None = Query(default=None),
    store: AvailabilityStore = Depends(get_availability_store),
):
    try:
        first = parse_date(start_date)
        last = parse_date(end_date)
    except ValueError as exc:
        raise bad_request('INVALID_DATE', str(exc)) from exc

    ensure_database_ready()

    try:
        available = list_available_dates(store, kind.value, provider_id, resource_id, first, last)
    except ValueError as exc:
        raise bad_request('INVALID_RANGE', str(exc)) from exc
    except SQLAlchemyError as exc:
        raise database_failure(exc, store.session, 'listing available dates') from exc

    return AvailableDatesResponse(
        kind=kind.value,
        provider_id=provider_id,
        resource_id=resource_id,
        start_date=first,
        end_date=last,
        available_dates=available,
    )


@router.get('/{kind}/providers/{provider_id}/templates', response_model=list[DayTemplateResponse])
def get_weekly_template(
    kind: BookingKind,
    provider_id: int,
    resource_id: int | None = Query(default=None),
    store: AvailabilityStore = Depends(get_availability_store),
):
    ensure_database_ready()

    try:
        return store.list_templates(kind.value, provider_id, resource_id)
    except SQLAlchemyError as exc:
        raise database_failure(exc, store.session, 'reading templates') from exc


@router.put('/{kind}/providers/{provider_id}/templates', response_model=list[DayTemplateResponse])
def put_weekly_template(
    kind: BookingKind,
    provider_id: int,
    data: ReplaceTemplateRequest,
    actor: Actor = Depends(get_current_actor),
    store: AvailabilityStore = Depends(get_availability_store),
):
    ensure_database_ready()

    try:
        outcome = replace_weekly_template(
            store,
            kind=kind.value,
            provider_id=provider_id,
            resource_id=data.resource_id,
            days=data.days,
            actor=actor,
        )
    except SQLAlchemyError as exc:
        raise database_failure(exc, store.session, 'replacing templates') from exc

    if not outcome.ok:
        raise_for_error(outcome.error)
    return outcome.value


@router.post(
    '/providers/{provider_id}/vacations',
    response_model=VacationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_vacation(
    provider_id: int,
    data: CreateVacationRequest,
    actor: Actor = Depends(get_current_actor),
    store: AvailabilityStore = Depends(get_availability_store),
):
    if not can_publish(actor, provider_id, None):
        raise forbidden("Only the provider or an administrator can change this provider's vacations.")

    ensure_database_ready()

    try:
        if store.get_provider(provider_id) is None:
            raise not_found('PROVIDER_NOT_FOUND', 'Provider not found.')
        return store.add_vacation(provider_id, data.start_date, data.end_date, data.reason)
    except SQLAlchemyError as exc:
        raise database_failure(exc, store.session, 'adding a vacation') from exc
