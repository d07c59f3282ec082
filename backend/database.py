import logging
from threading import Lock

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.orm import declarative_base, sessionmaker

from backend.core import config
from backend.scheduling.times import normalize_time

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    if url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {"pool_pre_ping": True}


engine = create_engine(config.DATABASE_URL, echo=config.SQL_ECHO, **_engine_options(config.DATABASE_URL))

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)

Base = declarative_base()

_schema_lock = Lock()
_booking_schema_checked = False
_availability_schema_checked = False

ACTIVE_STATUS_PREDICATE = "status IN ('scheduled', 'confirmed')"
DUPLICATE_BOOKING_REASON = 'duplicate legacy booking'


def ensure_availability_schema(bind=None) -> None:
    global _availability_schema_checked

    if _availability_schema_checked:
        return

    with _schema_lock:
        if _availability_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)

        if 'availability_templates' not in inspector.get_table_names():
            _availability_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('availability_templates')}
        migration_steps = [
            ('kind', "ALTER TABLE availability_templates ADD COLUMN kind VARCHAR(20) DEFAULT 'appointment'"),
            ('resource_id', 'ALTER TABLE availability_templates ADD COLUMN resource_id INTEGER'),
            ('fee', 'ALTER TABLE availability_templates ADD COLUMN fee NUMERIC(10, 2)'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            connection.execute(
                text(
                    'CREATE INDEX IF NOT EXISTS idx_availability_templates_lookup '
                    'ON availability_templates(kind, provider_id, resource_id, day_of_week)'
                )
            )

        _availability_schema_checked = True


def ensure_booking_schema(bind=None) -> None:
    """Bring a legacy bookings table up to the current contract.

    Older rows may lack a resource column, carry times like ``9:00:00``, or
    double-book a slot. Times are normalized and all but the oldest active
    row of each slot are cancelled before the active-slot unique indexes are
    created.
    """
    global _booking_schema_checked

    if _booking_schema_checked:
        return

    with _schema_lock:
        if _booking_schema_checked:
            return

        bind = bind or engine
        inspector = inspect(bind)

        if 'bookings' not in inspector.get_table_names():
            _booking_schema_checked = True
            return

        existing_columns = {column['name'] for column in inspector.get_columns('bookings')}
        migration_steps = [
            ('kind', "ALTER TABLE bookings ADD COLUMN kind VARCHAR(20) DEFAULT 'appointment'"),
            ('resource_id', 'ALTER TABLE bookings ADD COLUMN resource_id INTEGER'),
            ('cancellation_reason', 'ALTER TABLE bookings ADD COLUMN cancellation_reason VARCHAR'),
            ('fee', 'ALTER TABLE bookings ADD COLUMN fee NUMERIC(10, 2)'),
            ('notes', 'ALTER TABLE bookings ADD COLUMN notes VARCHAR'),
        ]

        with bind.begin() as connection:
            for column_name, statement in migration_steps:
                if column_name not in existing_columns:
                    connection.execute(text(statement))
            _normalize_booking_times(connection)
            _cancel_duplicate_active_bookings(connection)
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_active_slot '
                    'ON bookings(kind, provider_id, resource_id, booking_date, booking_time) '
                    f'WHERE {ACTIVE_STATUS_PREDICATE}'
                )
            )
            connection.execute(
                text(
                    'CREATE UNIQUE INDEX IF NOT EXISTS uq_bookings_active_unscoped_slot '
                    'ON bookings(kind, provider_id, booking_date, booking_time) '
                    f'WHERE resource_id IS NULL AND {ACTIVE_STATUS_PREDICATE}'
                )
            )
            connection.execute(
                text('CREATE INDEX IF NOT EXISTS idx_bookings_provider_date ON bookings(provider_id, booking_date)')
            )

        _booking_schema_checked = True


def _normalize_booking_times(connection) -> None:
    rows = connection.execute(text('SELECT id, booking_time FROM bookings')).all()
    for booking_id, booking_time in rows:
        try:
            normalized = normalize_time(booking_time)
        except ValueError:
            logger.warning('Leaving booking %s with unreadable time %r', booking_id, booking_time)
            continue
        if normalized != booking_time:
            connection.execute(
                text('UPDATE bookings SET booking_time = :booking_time WHERE id = :id'),
                {'booking_time': normalized, 'id': booking_id},
            )


def _cancel_duplicate_active_bookings(connection) -> None:
    rows = connection.execute(
        text(
            'SELECT id, kind, provider_id, resource_id, booking_date, booking_time FROM bookings '
            f'WHERE {ACTIVE_STATUS_PREDICATE} ORDER BY id'
        )
    ).all()

    kept: dict[tuple, int] = {}
    for booking_id, *slot in rows:
        slot = tuple(slot)
        if slot not in kept:
            kept[slot] = booking_id
            continue
        logger.warning(
            'Cancelling legacy booking %s: booking %s already holds the same slot',
            booking_id,
            kept[slot],
        )
        connection.execute(
            text("UPDATE bookings SET status = 'cancelled', cancellation_reason = :reason WHERE id = :id"),
            {'reason': DUPLICATE_BOOKING_REASON, 'id': booking_id},
        )
