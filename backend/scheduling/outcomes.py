from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar('T')


class ErrorKind(str, Enum):
    VALIDATION = 'validation'
    FORBIDDEN = 'forbidden'
    NOT_FOUND = 'not_found'
    CONFLICT = 'conflict'


@dataclass(frozen=True)
class BookingError:
    kind: ErrorKind
    code: str
    message: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a value or an expected, caller-correctable error."""

    value: T | None = None
    error: BookingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> 'Outcome[T]':
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, code: str, message: str, **details: Any) -> 'Outcome[T]':
        return cls(error=BookingError(kind=kind, code=code, message=message, details=details))


def validation_error(code: str, message: str, **details: Any) -> Outcome:
    return Outcome.failure(ErrorKind.VALIDATION, code, message, **details)


def forbidden(message: str, code: str = 'FORBIDDEN', **details: Any) -> Outcome:
    return Outcome.failure(ErrorKind.FORBIDDEN, code, message, **details)


def not_found(code: str, message: str) -> Outcome:
    return Outcome.failure(ErrorKind.NOT_FOUND, code, message)


def conflict(code: str, message: str, **details: Any) -> Outcome:
    return Outcome.failure(ErrorKind.CONFLICT, code, message, **details)
