from __future__ import annotations

from datetime import datetime, time
from enum import Enum
from typing import Any, Sequence


class ConflictKind(str, Enum):
    ROOM = "ROOM"
    TEACHER = "TEACHER"


class SchedulingError(Exception):
    """Base class for domain failures raised by the scheduling core."""

    kind = "scheduling_error"

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.kind, "message": str(self)}


class NotFoundError(SchedulingError):
    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} not found")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "entity": self.entity, "id": self.entity_id}


class InactiveEntityError(SchedulingError):
    kind = "inactive_entity"

    def __init__(self, entity: str, entity_id: Any) -> None:
        super().__init__(f"{entity} inactive")
        self.entity = entity
        self.entity_id = entity_id

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "entity": self.entity, "id": self.entity_id}


class ValidationError(SchedulingError):
    kind = "validation_error"

    def __init__(self, field: str, reason: str) -> None:
        super().__init__(reason)
        self.field = field
        self.reason = reason

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "field": self.field}


class ConflictError(SchedulingError):
    """Raised when an interval overlaps active reservations of a room or teacher.

    ``conflicts`` holds the overlapping reservations in start order.
    """

    kind = "conflict"

    def __init__(self, conflict_kind: ConflictKind, conflicts: Sequence[Any]) -> None:
        super().__init__(f"{conflict_kind.value.lower()} conflict")
        self.conflict_kind = conflict_kind
        self.conflicts = list(conflicts)

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "conflict_kind": self.conflict_kind.value,
            "conflicts": [conflict.to_dict() for conflict in self.conflicts],
        }


class InvalidTransitionError(SchedulingError):
    kind = "invalid_transition"

    def __init__(self, from_state: Any, to_state: Any) -> None:
        from_code = getattr(from_state, "value", from_state)
        to_code = getattr(to_state, "value", to_state)
        super().__init__(f"cannot move reservation from {from_code} to {to_code}")
        self.from_state = from_state
        self.to_state = to_state

    def to_dict(self) -> dict[str, Any]:
        return {
            **super().to_dict(),
            "from": getattr(self.from_state, "value", self.from_state),
            "to": getattr(self.to_state, "value", self.to_state),
        }


class ImmutableHistoricalRecordError(SchedulingError):
    kind = "immutable_historical_record"

    def __init__(self, reservation_id: str) -> None:
        super().__init__("reservation already finished")
        self.reservation_id = reservation_id

    def to_dict(self) -> dict[str, Any]:
        return {**super().to_dict(), "id": self.reservation_id}


class OutsideOperatingHoursError(SchedulingError):
    kind = "outside_operating_hours"

    def __init__(
        self,
        start: datetime,
        end: datetime,
        opens_at: time,
        closes_at: time,
        reason: str | None = None,
    ) -> None:
        window = f"{opens_at.strftime('%H:%M')}-{closes_at.strftime('%H:%M')}"
        super().__init__(reason or f"reservation must be within operating hours ({window})")
        self.start = start
        self.end = end
        self.opens_at = opens_at
        self.closes_at = closes_at


class ReservationStorageError(RuntimeError):
    pass
