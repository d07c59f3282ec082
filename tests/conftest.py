import os
from datetime import date
from types import SimpleNamespace

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.database import Base  # noqa: E402
from backend.models.availability import AvailabilityTemplate, AvailabilityTemplateSlot  # noqa: E402
from backend.models.booking import Booking  # noqa: E402
from backend.models.provider import Provider, ProviderResource, Resource  # noqa: E402
from backend.models.user import User  # noqa: E402
from backend.scheduling.ledger import BookingLedger  # noqa: E402
from backend.scheduling.store import AvailabilityStore  # noqa: E402


@pytest.fixture
def engine():
    engine = create_engine('sqlite://', connect_args={'check_same_thread': False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(engine):
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = testing_session_local()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db) -> AvailabilityStore:
    return AvailabilityStore(db)


@pytest.fixture
def ledger(db) -> BookingLedger:
    return BookingLedger(db)


@pytest.fixture
def make_resource(db):
    def _make(name: str = 'Downtown Center', address: str | None = None) -> Resource:
        resource = Resource(name=name, address=address)
        db.add(resource)
        db.commit()
        db.refresh(resource)
        return resource

    return _make


@pytest.fixture
def make_provider(db):
    def _make(name: str = 'Dr. Rivera', kind: str = 'appointment', default_fee=None, resources=()) -> Provider:
        provider = Provider(name=name, kind=kind, default_fee=default_fee)
        db.add(provider)
        db.commit()
        db.refresh(provider)
        for resource in resources:
            db.add(ProviderResource(provider_id=provider.id, resource_id=resource.id))
        db.commit()
        return provider

    return _make


@pytest.fixture
def make_user(db):
    def _make(email: str, role: str = 'patient', provider_id: int | None = None, resource_id: int | None = None) -> User:
        user = User(email=email, hashed_password='', role=role, provider_id=provider_id, resource_id=resource_id)
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make


@pytest.fixture
def make_template(db):
    def _make(
        provider: Provider,
        resource: Resource | None = None,
        day_of_week: int = 1,
        start_time: str | None = '09:00',
        end_time: str | None = '12:00',
        slot_duration_minutes: int | None = 30,
        fee=None,
        slots=(),
        is_available: bool = True,
        kind: str | None = None,
    ) -> AvailabilityTemplate:
        template = AvailabilityTemplate(
            kind=kind or provider.kind,
            provider_id=provider.id,
            resource_id=resource.id if resource is not None else None,
            day_of_week=day_of_week,
            is_available=is_available,
            start_time=start_time,
            end_time=end_time,
            slot_duration_minutes=slot_duration_minutes,
            fee=fee,
        )
        for position, entry in enumerate(slots):
            slot_time, duration = entry if isinstance(entry, tuple) else (entry, None)
            template.slots.append(
                AvailabilityTemplateSlot(position=position, start_time=slot_time, duration_minutes=duration)
            )
        db.add(template)
        db.commit()
        db.refresh(template)
        return template

    return _make


@pytest.fixture
def make_booking(db):
    def _make(
        subject: User,
        provider: Provider,
        booking_date: date,
        booking_time: str,
        resource: Resource | None = None,
        status: str = 'scheduled',
        kind: str | None = None,
        fee=0,
    ) -> Booking:
        booking = Booking(
            kind=kind or provider.kind,
            subject_id=subject.id,
            provider_id=provider.id,
            resource_id=resource.id if resource is not None else None,
            booking_date=booking_date,
            booking_time=booking_time,
            status=status,
            fee=fee,
        )
        db.add(booking)
        db.commit()
        db.refresh(booking)
        return booking

    return _make


@pytest.fixture
def clinic(make_resource, make_provider, make_user, make_template):
    """A doctor at one center working Mondays 09:00-12:00 in 30 minute slots."""
    center = make_resource()
    doctor = make_provider(default_fee=50, resources=[center])
    template = make_template(doctor, center, day_of_week=1)
    return SimpleNamespace(
        center=center,
        doctor=doctor,
        template=template,
        patient=make_user('patient@example.com'),
        other_patient=make_user('other@example.com'),
        doctor_user=make_user('doctor@example.com', role='doctor', provider_id=doctor.id),
        admin=make_user('admin@example.com', role='admin'),
    )
