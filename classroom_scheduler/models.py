from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum, IntEnum
from typing import Any, Iterable, Mapping

from .errors import ConflictKind, ValidationError


class ReservationState(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    REJECTED = "REJECTED"
    CANCELED = "CANCELED"
    COMPLETED = "COMPLETED"

    @classmethod
    def from_code(cls, code: str) -> "ReservationState":
        try:
            return cls(str(code).strip().upper())
        except ValueError:
            raise ValidationError("state_code", f"unknown reservation state: {code}") from None


ACTIVE_STATES = frozenset({ReservationState.PENDING, ReservationState.CONFIRMED})
TERMINAL_STATES = frozenset({ReservationState.REJECTED, ReservationState.CANCELED, ReservationState.COMPLETED})


class Weekday(IntEnum):
    MON = 0
    TUE = 1
    WED = 2
    THU = 3
    FRI = 4
    SAT = 5
    SUN = 6

    @classmethod
    def parse(cls, value: Any) -> "Weekday":
        if isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                raise ValidationError("days_of_week", f"invalid weekday: {value}") from None

        text = str(value).strip().upper()
        if text.isdigit():
            return cls.parse(int(text))
        for member in cls:
            if text == member.name or (len(text) > 3 and _FULL_DAY_NAMES[member] == text):
                return member
        raise ValidationError("days_of_week", f"invalid weekday: {value}")


_FULL_DAY_NAMES = {
    Weekday.MON: "MONDAY",
    Weekday.TUE: "TUESDAY",
    Weekday.WED: "WEDNESDAY",
    Weekday.THU: "THURSDAY",
    Weekday.FRI: "FRIDAY",
    Weekday.SAT: "SATURDAY",
    Weekday.SUN: "SUNDAY",
}


class RecurrenceType(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"


@dataclass(frozen=True)
class RecurrenceRule:
    type: RecurrenceType
    interval: int = 1
    days_of_week: frozenset[Weekday] = frozenset()
    until: date | datetime | None = None
    max_occurrences: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": getattr(self.type, "value", self.type),
            "interval": self.interval,
            "days_of_week": [day.name for day in sorted(self.days_of_week)],
            "until": self.until.isoformat() if self.until is not None else None,
            "max_occurrences": self.max_occurrences,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "RecurrenceRule":
        raw_type = str(data.get("type", "")).strip().upper()
        try:
            rule_type = RecurrenceType(raw_type)
        except ValueError:
            raise ValidationError("type", f"unknown recurrence type: {raw_type or None}") from None

        try:
            interval = int(data.get("interval", 1))
        except (TypeError, ValueError):
            raise ValidationError("interval", "interval must be an integer") from None

        until_value = data.get("until")
        until: date | datetime | None = None
        if until_value not in (None, ""):
            until = _parse_date_or_datetime(until_value, "until")

        max_value = data.get("max_occurrences")
        max_occurrences: int | None = None
        if max_value not in (None, ""):
            try:
                max_occurrences = int(max_value)
            except (TypeError, ValueError):
                raise ValidationError("max_occurrences", "max_occurrences must be an integer") from None

        return RecurrenceRule(
            type=rule_type,
            interval=interval,
            days_of_week=frozenset(Weekday.parse(day) for day in (data.get("days_of_week") or [])),
            until=until,
            max_occurrences=max_occurrences,
        )


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    room_id: str
    teacher_id: str
    start: datetime
    end: datetime
    state_code: str
    activity_id: str | None = None
    observations: str | None = None
    approved_by: str | None = None
    canceled_by: str | None = None
    rejected_by: str | None = None
    cancel_reason: str | None = None
    reject_reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def state(self) -> ReservationState:
        return ReservationState.from_code(self.state_code)

    @property
    def active(self) -> bool:
        return self.state_code in {state.value for state in ACTIVE_STATES}

    def to_dict(self) -> dict[str, Any]:
        return {
            "reservation_id": self.reservation_id,
            "room_id": self.room_id,
            "teacher_id": self.teacher_id,
            "activity_id": self.activity_id,
            "start": self.start.isoformat(timespec="seconds"),
            "end": self.end.isoformat(timespec="seconds"),
            "state_code": self.state_code,
            "observations": self.observations,
            "approved_by": self.approved_by,
            "canceled_by": self.canceled_by,
            "rejected_by": self.rejected_by,
            "cancel_reason": self.cancel_reason,
            "reject_reason": self.reject_reason,
            "created_at": self.created_at.isoformat(timespec="seconds") if self.created_at else None,
            "updated_at": self.updated_at.isoformat(timespec="seconds") if self.updated_at else None,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Reservation":
        return Reservation(
            reservation_id=str(data["reservation_id"]),
            room_id=str(data["room_id"]),
            teacher_id=str(data["teacher_id"]),
            activity_id=_optional_str(data.get("activity_id")),
            start=datetime.fromisoformat(str(data["start"])),
            end=datetime.fromisoformat(str(data["end"])),
            state_code=str(data["state_code"]),
            observations=_optional_str(data.get("observations")),
            approved_by=_optional_str(data.get("approved_by")),
            canceled_by=_optional_str(data.get("canceled_by")),
            rejected_by=_optional_str(data.get("rejected_by")),
            cancel_reason=_optional_str(data.get("cancel_reason")),
            reject_reason=_optional_str(data.get("reject_reason")),
            created_at=datetime.fromisoformat(str(data["created_at"])) if data.get("created_at") else None,
            updated_at=datetime.fromisoformat(str(data["updated_at"])) if data.get("updated_at") else None,
        )


@dataclass(frozen=True)
class StateRecord:
    code: str
    name: str
    active: bool = True
    order: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code, "name": self.name, "active": self.active, "order": self.order}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "StateRecord":
        return StateRecord(
            code=str(data["code"]).strip().upper(),
            name=str(data.get("name") or data["code"]),
            active=bool(data.get("active", True)),
            order=int(data.get("order", 0)),
        )


@dataclass(frozen=True)
class RoomRecord:
    id: str
    active: bool
    name: str | None = None
    opens_at: time | None = None
    closes_at: time | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "active": self.active,
            "name": self.name,
            "opens_at": self.opens_at.strftime("%H:%M") if self.opens_at else None,
            "closes_at": self.closes_at.strftime("%H:%M") if self.closes_at else None,
        }

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "RoomRecord":
        return RoomRecord(
            id=str(data["id"]),
            active=bool(data.get("active", True)),
            name=_optional_str(data.get("name")),
            opens_at=parse_time(data.get("opens_at")),
            closes_at=parse_time(data.get("closes_at")),
        )


TEACHER_ROLE = "TEACHER"


@dataclass(frozen=True)
class PersonRecord:
    id: str
    active: bool
    name: str | None = None
    roles: frozenset[str] = frozenset()

    @property
    def is_teacher(self) -> bool:
        return TEACHER_ROLE in self.roles

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "active": self.active, "name": self.name, "roles": sorted(self.roles)}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "PersonRecord":
        return PersonRecord(
            id=str(data["id"]),
            active=bool(data.get("active", True)),
            name=_optional_str(data.get("name")),
            roles=frozenset(str(role).strip().upper() for role in (data.get("roles") or [])),
        )


@dataclass(frozen=True)
class ActivityRecord:
    id: str
    active: bool
    name: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "active": self.active, "name": self.name}

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "ActivityRecord":
        return ActivityRecord(
            id=str(data["id"]),
            active=bool(data.get("active", True)),
            name=_optional_str(data.get("name")),
        )


@dataclass(frozen=True)
class ReservationRequest:
    room_id: str
    teacher_id: str
    start: datetime
    end: datetime
    activity_id: str | None = None
    observations: str | None = None
    state_code: str | None = None

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "ReservationRequest":
        return ReservationRequest(
            room_id=_required_str(data, "room_id"),
            teacher_id=_required_str(data, "teacher_id"),
            start=_parse_datetime(data.get("start"), "start"),
            end=_parse_datetime(data.get("end"), "end"),
            activity_id=_optional_str(data.get("activity_id")),
            observations=_optional_str(data.get("observations")),
            state_code=_optional_str(data.get("state_code")),
        )


@dataclass(frozen=True)
class RecurringReservationRequest:
    request: ReservationRequest
    recurrence: RecurrenceRule

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "RecurringReservationRequest":
        recurrence = data.get("recurrence")
        if not isinstance(recurrence, Mapping):
            raise ValidationError("recurrence", "recurrence rule is required")
        return RecurringReservationRequest(
            request=ReservationRequest.from_dict(data),
            recurrence=RecurrenceRule.from_dict(recurrence),
        )


@dataclass(frozen=True)
class ConflictQuery:
    room_id: str
    start: datetime
    end: datetime
    teacher_id: str | None = None
    exclude_reservation_id: str | None = None
    recurrence: RecurrenceRule | None = None


@dataclass(frozen=True)
class ReservationQuery:
    room_id: str | None = None
    teacher_id: str | None = None
    activity_id: str | None = None
    state_code: str | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    only_active: bool = True
    include_past: bool = False
    page: int = 1
    limit: int = 10


SEARCH_FIELDS = ("room", "teacher", "activity", "observations", "all")


@dataclass(frozen=True)
class ReservationSearch:
    text: str
    search_by: str = "all"
    date_from: datetime | None = None
    date_to: datetime | None = None
    include_past: bool = False


STATISTICS_GROUPS = ("room", "teacher", "activity", "state", "day", "month", "total")


@dataclass(frozen=True)
class StatisticsQuery:
    date_from: datetime
    date_to: datetime
    group_by: str = "room"


@dataclass(frozen=True)
class BulkItemError:
    index: int
    reason: str

    def to_dict(self) -> dict[str, Any]:
        return {"index": self.index, "reason": self.reason}


@dataclass(frozen=True)
class BulkCreateResult:
    created: list[Reservation] = field(default_factory=list)
    errors: list[BulkItemError] = field(default_factory=list)
    planned: int = 0

    @property
    def created_count(self) -> int:
        return len(self.created)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created_count": self.created_count,
            "planned": self.planned,
            "errors": [error.to_dict() for error in self.errors],
            "created": [reservation.to_dict() for reservation in self.created],
        }


@dataclass(frozen=True)
class RecurrentConflict:
    occurrence_index: int
    start: datetime
    end: datetime
    kind: ConflictKind
    reservation: Reservation

    def to_dict(self) -> dict[str, Any]:
        return {
            "occurrence_index": self.occurrence_index,
            "start": self.start.isoformat(timespec="seconds"),
            "end": self.end.isoformat(timespec="seconds"),
            "kind": self.kind.value,
            "reservation": self.reservation.to_dict(),
        }


@dataclass(frozen=True)
class ConflictReport:
    punctual: list[Reservation]
    recurrent: list[RecurrentConflict]

    @property
    def total(self) -> int:
        return len(self.punctual) + len(self.recurrent)

    def to_dict(self) -> dict[str, Any]:
        return {
            "punctual": [reservation.to_dict() for reservation in self.punctual],
            "recurrent": [conflict.to_dict() for conflict in self.recurrent],
            "total": self.total,
        }


@dataclass(frozen=True)
class AvailabilityReport:
    room_conflicts: list[Reservation]
    teacher_conflicts: list[Reservation]

    @property
    def available(self) -> bool:
        return not self.room_conflicts and not self.teacher_conflicts

    def to_dict(self) -> dict[str, Any]:
        return {
            "available": self.available,
            "room_conflicts": [reservation.to_dict() for reservation in self.room_conflicts],
            "teacher_conflicts": [reservation.to_dict() for reservation in self.teacher_conflicts],
        }


@dataclass(frozen=True)
class ReservationPage:
    items: list[Reservation]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit > 0 else 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "items": [reservation.to_dict() for reservation in self.items],
            "total": self.total,
            "page": self.page,
            "pages": self.pages,
        }


@dataclass(frozen=True)
class Dashboard:
    """Snapshot of what is happening now, what comes next and the last week's load per room."""

    generated_at: datetime
    upcoming: list[Reservation]
    current: list[Reservation]
    weekly_statistics: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "upcoming": [reservation.to_dict() for reservation in self.upcoming],
            "current": [reservation.to_dict() for reservation in self.current],
            "weekly_statistics": self.weekly_statistics,
            "upcoming_count": len(self.upcoming),
            "current_count": len(self.current),
            "generated_at": self.generated_at.isoformat(),
        }


def sort_by_start(reservations: Iterable[Reservation]) -> list[Reservation]:
    return sorted(reservations, key=lambda reservation: (reservation.start, reservation.reservation_id))


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _required_str(data: Mapping[str, Any], key: str) -> str:
    value = _optional_str(data.get(key))
    if value is None:
        raise ValidationError(key, f"{key} is required")
    return value


def _parse_datetime(value: Any, field_name: str) -> datetime:
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except (TypeError, ValueError):
        raise ValidationError(field_name, f"invalid datetime: {value}") from None


def _parse_date_or_datetime(value: Any, field_name: str) -> date | datetime:
    if isinstance(value, (date, datetime)):
        return value
    text = str(value)
    try:
        return date.fromisoformat(text) if len(text) == 10 else datetime.fromisoformat(text)
    except ValueError:
        raise ValidationError(field_name, f"invalid date: {value}") from None


def parse_time(value: Any) -> time | None:
    if value in (None, ""):
        return None
    if isinstance(value, time):
        return value
    if isinstance(value, int) and not isinstance(value, bool):
        # unquoted HH:MM in YAML 1.1 loads as a base-60 integer
        return time(value // 60, value % 60)
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        raise ValidationError("time", f"invalid time: {value}") from None
