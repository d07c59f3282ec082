from datetime import date

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient
from pydantic import ValidationError

from backend.auth.dependencies import get_current_actor
from backend.routes.booking_routes import (
    CancelBookingRequest,
    CreateBookingRequest,
    RescheduleBookingRequest,
    cancel_existing_booking,
    confirm_existing_booking,
    create_new_booking,
    list_my_bookings,
    list_provider_bookings,
    reschedule_existing_booking,
    sweep_past_bookings,
)
from backend.routes.common import BookingKind, get_db
from backend.scheduling.policy import Actor

FUTURE_MONDAY = date(2099, 1, 5)


@pytest.fixture(autouse=True)
def database_ready(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr('backend.routes.booking_routes.ensure_database_ready', lambda: None)
    monkeypatch.setattr('backend.routes.availability_routes.ensure_database_ready', lambda: None)


def _actor(user) -> Actor:
    return Actor(user_id=user.id, role=user.role, provider_id=user.provider_id, resource_id=user.resource_id)


def _request(clinic, time='09:00', **overrides) -> CreateBookingRequest:
    params = dict(provider_id=clinic.doctor.id, resource_id=clinic.center.id, date='2099-01-05', time=time)
    params.update(overrides)
    return CreateBookingRequest(**params)


def _create(clinic, store, ledger, actor, **overrides):
    return create_new_booking(data=_request(clinic, **overrides), actor=actor, store=store, ledger=ledger)


def test_create_booking_request_strips_notes() -> None:
    request = CreateBookingRequest(provider_id=1, date=' 2099-01-05 ', time='09:00', notes='   ')

    assert request.date == '2099-01-05'
    assert request.notes is None
    assert request.kind is BookingKind.appointment


def test_cancel_booking_request_limits_reason_length() -> None:
    with pytest.raises(ValidationError):
        CancelBookingRequest(reason='x' * 501)


def test_create_new_booking_books_for_current_user(clinic, store, ledger) -> None:
    booking = _create(clinic, store, ledger, _actor(clinic.patient), notes=' Checkup ')

    assert booking.subject_id == clinic.patient.id
    assert booking.booking_time == '09:00'
    assert booking.notes == 'Checkup'
    assert booking.status == 'scheduled'


def test_create_new_booking_maps_conflict_to_409(clinic, store, ledger) -> None:
    _create(clinic, store, ledger, _actor(clinic.patient))

    with pytest.raises(HTTPException) as exception_info:
        _create(clinic, store, ledger, _actor(clinic.other_patient))

    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'SLOT_ALREADY_BOOKED'
    assert exception_info.value.detail['time'] == '09:00'


@pytest.mark.parametrize(
    ('overrides', 'status_code', 'code'),
    [
        ({'time': '09:10'}, 400, 'SLOT_NOT_OFFERED'),
        ({'date': 'tomorrow'}, 400, 'INVALID_DATE'),
        ({'provider_id': 999}, 404, 'PROVIDER_NOT_FOUND'),
        ({'kind': 'lab_test'}, 404, 'PROVIDER_NOT_FOUND'),
    ],
)
def test_create_new_booking_maps_rejections(clinic, store, ledger, overrides, status_code, code) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _create(clinic, store, ledger, _actor(clinic.patient), **overrides)

    assert exception_info.value.status_code == status_code
    assert exception_info.value.detail['code'] == code


def test_only_administrators_book_for_someone_else(clinic, store, ledger) -> None:
    with pytest.raises(HTTPException) as exception_info:
        _create(clinic, store, ledger, _actor(clinic.patient), subject_id=clinic.other_patient.id)
    assert exception_info.value.status_code == 403

    booking = _create(clinic, store, ledger, _actor(clinic.admin), subject_id=clinic.other_patient.id)
    assert booking.subject_id == clinic.other_patient.id


def test_list_my_bookings_sweeps_missed_bookings(clinic, ledger, make_booking) -> None:
    missed = make_booking(clinic.patient, clinic.doctor, date(2020, 1, 6), '09:00', resource=clinic.center)
    upcoming = make_booking(clinic.patient, clinic.doctor, FUTURE_MONDAY, '09:00', resource=clinic.center)
    make_booking(clinic.other_patient, clinic.doctor, FUTURE_MONDAY, '09:30', resource=clinic.center)

    bookings = list_my_bookings(kind=None, actor=_actor(clinic.patient), ledger=ledger)

    assert [booking.id for booking in bookings] == [missed.id, upcoming.id]
    assert (bookings[0].status, bookings[0].cancellation_reason) == ('cancelled', 'absent')
    assert bookings[1].status == 'scheduled'


def test_list_provider_bookings_requires_provider_center_or_admin(clinic, ledger) -> None:
    with pytest.raises(HTTPException) as exception_info:
        list_provider_bookings(
            provider_id=clinic.doctor.id,
            kind=None,
            actor=_actor(clinic.patient),
            ledger=ledger,
        )

    assert exception_info.value.status_code == 403


def test_list_provider_bookings_scopes_center_staff(clinic, ledger, make_resource, make_user, make_booking) -> None:
    annex = make_resource('Annex')
    at_center = make_booking(clinic.patient, clinic.doctor, FUTURE_MONDAY, '09:00', resource=clinic.center)
    at_annex = make_booking(clinic.patient, clinic.doctor, FUTURE_MONDAY, '09:00', resource=annex)
    staff = make_user('staff@example.com', role='center', resource_id=annex.id)

    doctor_view = list_provider_bookings(
        provider_id=clinic.doctor.id,
        kind=None,
        actor=_actor(clinic.doctor_user),
        ledger=ledger,
    )
    staff_view = list_provider_bookings(provider_id=clinic.doctor.id, kind=None, actor=_actor(staff), ledger=ledger)

    assert {booking.id for booking in doctor_view} == {at_center.id, at_annex.id}
    assert [booking.id for booking in staff_view] == [at_annex.id]


def test_cancel_existing_booking_then_again_conflicts(clinic, ledger, make_booking) -> None:
    booking = make_booking(clinic.patient, clinic.doctor, FUTURE_MONDAY, '09:00', resource=clinic.center)

    cancelled = cancel_existing_booking(
        booking_id=booking.id,
        data=CancelBookingRequest(reason='Travelling'),
        actor=_actor(clinic.patient),
        ledger=ledger,
    )
    assert cancelled.cancellation_reason == 'Travelling'

    with pytest.raises(HTTPException) as exception_info:
        cancel_existing_booking(
            booking_id=booking.id,
            data=CancelBookingRequest(),
            actor=_actor(clinic.patient),
            ledger=ledger,
        )
    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'ALREADY_CANCELLED'


def test_confirm_existing_booking_by_provider(clinic, ledger, make_booking) -> None:
    booking = make_booking(clinic.patient, clinic.doctor, FUTURE_MONDAY, '09:00', resource=clinic.center)

    with pytest.raises(HTTPException) as exception_info:
        confirm_existing_booking(booking_id=booking.id, actor=_actor(clinic.patient), ledger=ledger)
    assert exception_info.value.status_code == 403

    confirmed = confirm_existing_booking(booking_id=booking.id, actor=_actor(clinic.doctor_user), ledger=ledger)
    assert confirmed.status == 'confirmed'

    with pytest.raises(HTTPException) as exception_info:
        confirm_existing_booking(booking_id=booking.id, actor=_actor(clinic.doctor_user), ledger=ledger)
    assert exception_info.value.status_code == 409
    assert exception_info.value.detail['code'] == 'BOOKING_NOT_PENDING'


def test_cancel_existing_booking_not_found(clinic, ledger) -> None:
    with pytest.raises(HTTPException) as exception_info:
        cancel_existing_booking(booking_id=404, data=CancelBookingRequest(), actor=_actor(clinic.admin), ledger=ledger)

    assert exception_info.value.status_code == 404


def test_reschedule_existing_booking(clinic, store, ledger, make_booking) -> None:
    booking = make_booking(clinic.patient, clinic.doctor, FUTURE_MONDAY, '09:00', resource=clinic.center)

    moved = reschedule_existing_booking(
        booking_id=booking.id,
        data=RescheduleBookingRequest(date='2099-01-12', time='11:30'),
        actor=_actor(clinic.patient),
        store=store,
        ledger=ledger,
    )

    assert (moved.booking_date, moved.booking_time) == (date(2099, 1, 12), '11:30')


def test_reschedule_existing_booking_forbidden_for_stranger(clinic, store, ledger, make_booking) -> None:
    booking = make_booking(clinic.patient, clinic.doctor, FUTURE_MONDAY, '09:00', resource=clinic.center)

    with pytest.raises(HTTPException) as exception_info:
        reschedule_existing_booking(
            booking_id=booking.id,
            data=RescheduleBookingRequest(date='2099-01-12', time='11:30'),
            actor=_actor(clinic.other_patient),
            store=store,
            ledger=ledger,
        )

    assert exception_info.value.status_code == 403


def test_sweep_past_bookings_is_admin_only(clinic, ledger, make_booking) -> None:
    missed = make_booking(clinic.patient, clinic.doctor, date(2020, 1, 6), '09:00', resource=clinic.center)

    with pytest.raises(HTTPException) as exception_info:
        sweep_past_bookings(actor=_actor(clinic.patient), ledger=ledger)
    assert exception_info.value.status_code == 403

    response = sweep_past_bookings(actor=_actor(clinic.admin), ledger=ledger)
    assert response.updated_count == 1
    assert response.updated_ids == [missed.id]


def test_booking_round_trip_over_http(clinic, db) -> None:
    from backend.main import app

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = lambda: _actor(clinic.patient)
    try:
        client = TestClient(app)
        created = client.post(
            '/bookings',
            json={
                'provider_id': clinic.doctor.id,
                'resource_id': clinic.center.id,
                'date': '2099-01-05',
                'time': '10:00',
            },
        )
        duplicate = client.post(
            '/bookings',
            json={
                'provider_id': clinic.doctor.id,
                'resource_id': clinic.center.id,
                'date': '2099-01-05',
                'time': '10:00',
            },
        )
        slots = client.get(
            f'/availability/appointment/providers/{clinic.doctor.id}/slots',
            params={'date': '2099-01-05', 'resource_id': clinic.center.id},
        )
    finally:
        app.dependency_overrides.clear()

    assert created.status_code == 201
    assert created.json()['booking_time'] == '10:00'
    assert duplicate.status_code == 409
    assert duplicate.json()['detail']['code'] == 'SLOT_ALREADY_BOOKED'
    assert slots.status_code == 200
    assert slots.json()['booked_slots'] == ['10:00']
