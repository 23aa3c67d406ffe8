"""Typed outcomes for business operations.

Business-rule failures (no credit left, slot taken, illegal transition,
provider not bookable, missing entity) are expected results, not errors.
Services return an ``Outcome`` carrying either a value or a ``Failure``;
only infrastructure problems raise.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class FailureKind(str, Enum):
    """Stable, machine-readable failure kinds exposed to clients."""

    OUT_OF_CREDIT = "out_of_credit"  # recoverable by purchasing credits
    SLOT_CONFLICT = "slot_conflict"  # recoverable by picking another slot
    INVALID_TRANSITION = "invalid_transition"  # caller error, not retried
    PROVIDER_UNAVAILABLE = "provider_unavailable"  # recoverable once provider opts in
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class Failure:
    kind: FailureKind
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, **self.details}


@dataclass(frozen=True)
class Outcome(Generic[T]):
    """Either a successful value or a typed failure."""

    value: T | None = None
    failure: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.failure is None

    @classmethod
    def success(cls, value: T) -> "Outcome[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, kind: FailureKind, message: str, **details: Any) -> "Outcome[T]":
        return cls(failure=Failure(kind=kind, message=message, details=details))

    @classmethod
    def from_failure(cls, failure: Failure) -> "Outcome[T]":
        return cls(failure=failure)

    def unwrap(self) -> T:
        """Return the value; raise if this outcome is a failure."""
        if self.failure is not None:
            raise RuntimeError(f"{self.failure.kind.value}: {self.failure.message}")
        return self.value  # type: ignore[return-value]


def not_found(entity: str, entity_id: Any) -> Outcome[Any]:
    return Outcome.fail(FailureKind.NOT_FOUND, f"{entity} not found", id=str(entity_id))


def invalid_transition(entity: str, current: str, action: str) -> Outcome[Any]:
    return Outcome.fail(
        FailureKind.INVALID_TRANSITION,
        f"Cannot {action} {entity} with status {current}",
        current_status=current,
        action=action,
    )
