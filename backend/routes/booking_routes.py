from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError

from backend.auth.dependencies import get_current_actor
from backend.routes.common import (
    BookingKind,
    database_failure,
    ensure_database_ready,
    forbidden,
    get_availability_store,
    get_booking_ledger,
    raise_for_error,
)
from backend.scheduling.ledger import BookingLedger
from backend.scheduling.policy import Actor, cancel_booking, confirm_booking, reschedule_booking
from backend.scheduling.store import AvailabilityStore
from backend.scheduling.sweeper import mark_past_bookings_absent
from backend.scheduling.writer import create_booking

router = APIRouter(tags=['bookings'])

MAX_BOOKING_NOTES_LENGTH = 600
MAX_CANCELLATION_REASON_LENGTH = 500


def _strip_or_none(value: str | None, max_length: int, label: str) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > max_length:
        raise ValueError(f'{label} must be {max_length} characters or fewer.')

    return normalized


class CreateBookingRequest(BaseModel):
    kind: BookingKind = BookingKind.appointment
    provider_id: int
    resource_id: int | None = None
    date: str
    time: str
    fee: Decimal | None = Field(default=None, ge=0)
    notes: str | None = None
    subject_id: int | None = None

    @field_validator('date', 'time')
    @classmethod
    def strip_value(cls, value: str) -> str:
        return value.strip()

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _strip_or_none(value, MAX_BOOKING_NOTES_LENGTH, 'Notes')


class CancelBookingRequest(BaseModel):
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        return _strip_or_none(value, MAX_CANCELLATION_REASON_LENGTH, 'Reason')


class RescheduleBookingRequest(BaseModel):
    date: str
    time: str

    @field_validator('date', 'time')
    @classmethod
    def strip_value(cls, value: str) -> str:
        return value.strip()


class BookingResponse(BaseModel):
    id: int
    kind: str
    subject_id: int
    provider_id: int
    resource_id: int | None = None
    booking_date: date
    booking_time: str
    status: str
    cancellation_reason: str | None = None
    fee: Decimal
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class SweepResponse(BaseModel):
    updated_count: int
    updated_ids: list[int]


@router.post('', response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
def create_new_booking(
    data: CreateBookingRequest,
    actor: Actor = Depends(get_current_actor),
    store: AvailabilityStore = Depends(get_availability_store),
    ledger: BookingLedger = Depends(get_booking_ledger),
):
    subject_id = actor.user_id
    if data.subject_id is not None and data.subject_id != actor.user_id:
        if not actor.is_elevated:
            raise forbidden('Only administrators can book on behalf of another patient.')
        subject_id = data.subject_id

    ensure_database_ready()

    try:
        outcome = create_booking(
            store,
            ledger,
            kind=data.kind.value,
            subject_id=subject_id,
            provider_id=data.provider_id,
            resource_id=data.resource_id,
            booking_date=data.date,
            booking_time=data.time,
            fee=data.fee,
            notes=data.notes,
        )
    except SQLAlchemyError as exc:
        raise database_failure(exc, ledger.session, 'creating a booking') from exc

    if not outcome.ok:
        raise_for_error(outcome.error)
    return outcome.value


@router.get('/me', response_model=list[BookingResponse])
def list_my_bookings(
    kind: BookingKind | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    ledger: BookingLedger = Depends(get_booking_ledger),
):
    ensure_database_ready()

    try:
        mark_past_bookings_absent(ledger, subject_id=actor.user_id)
        return ledger.list_for_subject(actor.user_id, kind=kind.value if kind else None)
    except SQLAlchemyError as exc:
        raise database_failure(exc, ledger.session, 'listing subject bookings') from exc


@router.get('/providers/{provider_id}', response_model=list[BookingResponse])
def list_provider_bookings(
    provider_id: int,
    kind: BookingKind | None = Query(default=None),
    actor: Actor = Depends(get_current_actor),
    ledger: BookingLedger = Depends(get_booking_ledger),
):
    resource_id = None
    if not actor.is_elevated and actor.provider_id != provider_id:
        if actor.role != 'center' or actor.resource_id is None:
            raise forbidden("Only the provider, its center or an administrator can view these bookings.")
        resource_id = actor.resource_id

    ensure_database_ready()

    try:
        mark_past_bookings_absent(ledger, provider_id=provider_id)
        return ledger.list_for_provider(
            provider_id,
            kind=kind.value if kind else None,
            resource_id=resource_id,
        )
    except SQLAlchemyError as exc:
        raise database_failure(exc, ledger.session, 'listing provider bookings') from exc


@router.put('/{booking_id}/confirm', response_model=BookingResponse)
def confirm_existing_booking(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    ledger: BookingLedger = Depends(get_booking_ledger),
):
    ensure_database_ready()

    try:
        outcome = confirm_booking(ledger, booking_id, actor)
    except SQLAlchemyError as exc:
        raise database_failure(exc, ledger.session, 'confirming a booking') from exc

    if not outcome.ok:
        raise_for_error(outcome.error)
    return outcome.value


@router.put('/{booking_id}/cancel', response_model=BookingResponse)
def cancel_existing_booking(
    booking_id: int,
    data: CancelBookingRequest,
    actor: Actor = Depends(get_current_actor),
    ledger: BookingLedger = Depends(get_booking_ledger),
):
    ensure_database_ready()

    try:
        outcome = cancel_booking(ledger, booking_id, actor, reason=data.reason)
    except SQLAlchemyError as exc:
        raise database_failure(exc, ledger.session, 'cancelling a booking') from exc

    if not outcome.ok:
        raise_for_error(outcome.error)
    return outcome.value


@router.put('/{booking_id}/reschedule', response_model=BookingResponse)
def reschedule_existing_booking(
    booking_id: int,
    data: RescheduleBookingRequest,
    actor: Actor = Depends(get_current_actor),
    store: AvailabilityStore = Depends(get_availability_store),
    ledger: BookingLedger = Depends(get_booking_ledger),
):
    ensure_database_ready()

    try:
        outcome = reschedule_booking(store, ledger, booking_id, actor, data.date, data.time)
    except SQLAlchemyError as exc:
        raise database_failure(exc, ledger.session, 'rescheduling a booking') from exc

    if not outcome.ok:
        raise_for_error(outcome.error)
    return outcome.value


@router.post('/sweep', response_model=SweepResponse)
def sweep_past_bookings(
    actor: Actor = Depends(get_current_actor),
    ledger: BookingLedger = Depends(get_booking_ledger),
):
    if not actor.is_elevated:
        raise forbidden('Only administrators can run the absence sweep.')

    ensure_database_ready()

    try:
        updated_ids = mark_past_bookings_absent(ledger)
    except SQLAlchemyError as exc:
        raise database_failure(exc, ledger.session, 'sweeping past bookings') from exc

    return SweepResponse(updated_count=len(updated_ids), updated_ids=updated_ids)
