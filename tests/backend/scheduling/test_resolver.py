from datetime import date, datetime
from types import SimpleNamespace

import pytest

from backend.core import config
from backend.scheduling.ledger import occupies
from backend.scheduling.resolver import (
    NOT_AVAILABLE_REASON,
    VACATION_REASON,
    check_availability,
    list_available_dates,
    resolve_slots,
    taken_times,
)
from backend.scheduling.slots import Slot

MONDAY = date(2026, 1, 5)
NOW = datetime(2026, 1, 1, 8, 0)


def _row(booking_id, booking_time, resource_id=1):
    return SimpleNamespace(id=booking_id, booking_time=booking_time, resource_id=resource_id)


@pytest.mark.parametrize(
    ('booking_resource', 'requested_resource', 'expected'),
    [
        (1, 1, True),
        (1, 2, False),
        (None, 2, True),
        (3, None, True),
        (None, None, True),
    ],
)
def test_occupies_applies_conservative_null_resource_rule(booking_resource, requested_resource, expected) -> None:
    assert occupies(booking_resource, requested_resource) is expected


def test_taken_times_normalizes_stored_times() -> None:
    rows = [_row(1, '09:00:00'), _row(2, '9:30'), _row(3, '10:00:00.000000')]

    assert taken_times(rows, resource_id=1) == {'09:00', '09:30', '10:00'}


def test_taken_times_skips_other_resources_but_not_legacy_rows() -> None:
    rows = [_row(1, '09:00', resource_id=2), _row(2, '10:00', resource_id=None)]

    assert taken_times(rows, resource_id=1) == {'10:00'}


def test_taken_times_excludes_the_given_booking() -> None:
    rows = [_row(1, '09:00'), _row(2, '10:00')]

    assert taken_times(rows, resource_id=1, exclude_booking_id=1) == {'10:00'}


def test_taken_times_skips_unreadable_times() -> None:
    assert taken_times([_row(1, 'garbage'), _row(2, '11:00')], resource_id=1) == {'11:00'}


def test_resolve_slots_marks_booked_and_past_slots_in_slot_order() -> None:
    slots = [Slot('09:00', 30), Slot('09:30', 30), Slot('10:00', 30)]
    resolved = resolve_slots(
        slots,
        [_row(7, '09:30:00')],
        resource_id=1,
        now=datetime(2026, 1, 5, 9, 0),
        target_date=MONDAY,
    )

    assert [slot.time for slot in resolved] == ['09:00', '09:30', '10:00']
    assert [slot.is_booked for slot in resolved] == [False, True, False]
    assert [slot.is_past for slot in resolved] == [True, False, False]
    assert [slot.is_available for slot in resolved] == [False, False, True]


@pytest.mark.parametrize(
    ('booked_times', 'booking_resource'),
    [
        ([], 1),
        (['09:00'], 1),
        (['09:00', '11:30'], 1),
        (['10:00'], 2),
        (['10:00'], None),
        (['13:00'], 1),
    ],
)
def test_slot_is_booked_iff_an_occupying_booking_shares_its_time(booked_times, booking_resource) -> None:
    slots = [Slot(f'{hour:02d}:{minute:02d}', 30) for hour in (9, 10, 11) for minute in (0, 30)]
    rows = [_row(index, booked, booking_resource) for index, booked in enumerate(booked_times)]

    resolved = resolve_slots(slots, rows, resource_id=1)

    for slot in resolved:
        expected = slot.time in booked_times and occupies(booking_resource, 1)
        assert slot.is_booked is expected


def test_check_availability_annotates_bookings(clinic, store, ledger, make_booking) -> None:
    make_booking(clinic.patient, clinic.doctor, MONDAY, '10:00:00', resource=clinic.center)

    day = check_availability(store, ledger, 'appointment', clinic.doctor.id, clinic.center.id, MONDAY, now=NOW)

    assert day.is_available_day is True
    assert day.reason is None
    assert len(day.slots) == 6
    assert day.find('10:00').is_booked is True
    assert [slot.time for slot in day.available_slots] == ['09:00', '09:30', '10:30', '11:00', '11:30']


def test_check_availability_ignores_cancelled_and_completed_bookings(clinic, store, ledger, make_booking) -> None:
    make_booking(clinic.patient, clinic.doctor, MONDAY, '09:00', resource=clinic.center, status='cancelled')
    make_booking(clinic.patient, clinic.doctor, MONDAY, '09:30', resource=clinic.center, status='completed')

    day = check_availability(store, ledger, 'appointment', clinic.doctor.id, clinic.center.id, MONDAY, now=NOW)

    assert all(not slot.is_booked for slot in day.slots)


def test_check_availability_treats_legacy_null_resource_booking_as_taken(clinic, store, ledger, make_booking) -> None:
    make_booking(clinic.patient, clinic.doctor, MONDAY, '11:00', resource=None)

    day = check_availability(store, ledger, 'appointment', clinic.doctor.id, clinic.center.id, MONDAY, now=NOW)

    assert day.find('11:00').is_booked is True


def test_check_availability_excluded_booking_keeps_its_slot_open(clinic, store, ledger, make_booking) -> None:
    booking = make_booking(clinic.patient, clinic.doctor, MONDAY, '09:00', resource=clinic.center)

    day = check_availability(
        store,
        ledger,
        'appointment',
        clinic.doctor.id,
        clinic.center.id,
        MONDAY,
        exclude_booking_id=booking.id,
        now=NOW,
    )

    assert day.find('09:00').is_available is True


def test_check_availability_reports_day_without_template(clinic, store, ledger) -> None:
    day = check_availability(store, ledger, 'appointment', clinic.doctor.id, clinic.center.id, '2026-01-06', now=NOW)

    assert day.is_available_day is False
    assert day.reason == NOT_AVAILABLE_REASON
    assert day.slots == []


def test_check_availability_reports_vacation(clinic, store, ledger) -> None:
    store.add_vacation(clinic.doctor.id, date(2026, 1, 3), date(2026, 1, 7), 'Conference')

    day = check_availability(store, ledger, 'appointment', clinic.doctor.id, clinic.center.id, MONDAY, now=NOW)

    assert day.is_available_day is False
    assert day.reason == VACATION_REASON


def test_check_availability_rejects_malformed_date_before_lookup(ledger) -> None:
    class ExplodingStore:
        def __getattr__(self, name):
            raise AssertionError('store should not be consulted')

    with pytest.raises(ValueError):
        check_availability(ExplodingStore(), ledger, 'appointment', 1, 1, '2026-99-01')


def test_check_availability_keeps_kinds_separate(clinic, store, ledger, make_booking) -> None:
    make_booking(clinic.patient, clinic.doctor, MONDAY, '09:00', resource=clinic.center, kind='lab_test')

    day = check_availability(store, ledger, 'appointment', clinic.doctor.id, clinic.center.id, MONDAY, now=NOW)

    assert day.find('09:00').is_booked is False


def test_list_available_dates_returns_working_days_outside_vacations(clinic, store, make_template) -> None:
    make_template(clinic.doctor, clinic.center, day_of_week=3, start_time='13:00', end_time='15:00')
    make_template(clinic.doctor, clinic.center, day_of_week=5, is_available=False)
    store.add_vacation(clinic.doctor.id, date(2026, 1, 12), date(2026, 1, 12))

    dates = list_available_dates(store, 'appointment', clinic.doctor.id, clinic.center.id, '2026-01-04', '2026-01-18')

    assert dates == [date(2026, 1, 5), date(2026, 1, 7), date(2026, 1, 14)]


def test_list_available_dates_rejects_reversed_range(clinic, store) -> None:
    with pytest.raises(ValueError):
        list_available_dates(store, 'appointment', clinic.doctor.id, clinic.center.id, '2026-01-10', '2026-01-01')


def test_list_available_dates_rejects_oversized_range(clinic, store, monkeypatch) -> None:
    monkeypatch.setattr(config, 'AVAILABLE_DATES_MAX_RANGE_DAYS', 7)

    with pytest.raises(ValueError):
        list_available_dates(store, 'appointment', clinic.doctor.id, clinic.center.id, '2026-01-01', '2026-01-31')
