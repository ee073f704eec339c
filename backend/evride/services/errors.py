from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ErrorKind(str, enum.Enum):
    not_found = "not_found"
    forbidden = "forbidden"
    invalid_state = "invalid_state"
    validation_error = "validation_error"
    insufficient_battery = "insufficient_battery"
    insufficient_funds = "insufficient_funds"
    conflicting_reservation = "conflicting_reservation"
    already_rated = "already_rated"


@dataclass(frozen=True)
class ServiceError:
    kind: ErrorKind
    message: str


@dataclass
class Outcome(Generic[T]):
    """Either a value or a business error; never both."""

    value: Optional[T] = None
    error: Optional[ServiceError] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Outcome[T]":
        return cls(error=ServiceError(kind=kind, message=message))
