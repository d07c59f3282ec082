import logging
from enum import Enum

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.database import SessionLocal, ensure_availability_schema, ensure_booking_schema
from backend.models.booking import KIND_APPOINTMENT, KIND_LAB_TEST
from backend.scheduling.ledger import BookingLedger
from backend.scheduling.outcomes import BookingError, ErrorKind
from backend.scheduling.store import AvailabilityStore

logger = logging.getLogger(__name__)

STATUS_BY_ERROR_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.CONFLICT: status.HTTP_409_CONFLICT,
}


class BookingKind(str, Enum):
    appointment = KIND_APPOINTMENT
    lab_test = KIND_LAB_TEST


def ensure_database_ready() -> None:
    try:
        ensure_availability_schema()
        ensure_booking_schema()
    except SQLAlchemyError as exc:
        logger.exception('Database schema check failed.')
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_availability_store(db: Session = Depends(get_db)) -> AvailabilityStore:
    return AvailabilityStore(db)


def get_booking_ledger(db: Session = Depends(get_db)) -> BookingLedger:
    return BookingLedger(db)


def raise_for_error(error: BookingError) -> None:
    detail = {'code': error.code, 'message': error.message}
    detail.update(error.details)
    raise HTTPException(status_code=STATUS_BY_ERROR_KIND[error.kind], detail=detail)


def bad_request(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={'code': code, 'message': message},
    )


def forbidden(message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={'code': 'FORBIDDEN', 'message': message},
    )


def database_failure(exc: SQLAlchemyError, session: Session, action: str) -> HTTPException:
    session.rollback()
    logger.error('Database failure while %s', action, exc_info=exc)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={'code': 'STORE_FAILURE', 'message': 'Something went wrong. Please try again later.'},
    )


def not_found(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail={'code': code, 'message': message},
    )
