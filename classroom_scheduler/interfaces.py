"""Collaborator contracts consumed by the scheduling core.

Catalog lookups return narrow records carrying only what validation needs.
The store performs persistence and is the final authority on overlap: a
write that would double-book a room or teacher raises ``ConflictError``.
"""

from __future__ import annotations

from typing import Any, Protocol, Sequence

from .models import (
    ActivityRecord,
    PersonRecord,
    Reservation,
    ReservationQuery,
    ReservationSearch,
    RoomRecord,
    StateRecord,
    StatisticsQuery,
)


class RoomCatalog(Protocol):
    def find_by_id(self, room_id: str) -> RoomRecord | None: ...


class TeacherDirectory(Protocol):
    def find_by_id(self, person_id: str) -> PersonRecord | None: ...
    def has_teaching_capability(self, person_id: str) -> bool: ...


class ActivityCatalog(Protocol):
    def find_by_id(self, activity_id: str) -> ActivityRecord | None: ...


class ReservationStateCatalog(Protocol):
    def get_initial_state(self) -> StateRecord: ...
    def find_by_code(self, code: str) -> StateRecord | None: ...


class ReservationStore(Protocol):
    def create(self, reservation: Reservation) -> Reservation: ...
    def update(self, reservation: Reservation) -> Reservation: ...
    def delete(self, reservation_id: str) -> Reservation: ...
    def find_by_id(self, reservation_id: str) -> Reservation | None: ...
    def find_by_room(self, room_id: str, include_past: bool = False) -> list[Reservation]: ...
    def find_by_teacher(self, teacher_id: str, include_past: bool = False) -> list[Reservation]: ...
    def find_by_activity(self, activity_id: str, include_past: bool = False) -> list[Reservation]: ...
    def find_all(self, query: ReservationQuery) -> tuple[list[Reservation], int]: ...
    def create_bulk(self, reservations: Sequence[Reservation]) -> list[Reservation]: ...
    def delete_bulk(self, reservation_ids: Sequence[str]) -> int: ...
    def search(self, search: ReservationSearch) -> list[Reservation]: ...
    def get_statistics(self, query: StatisticsQuery) -> list[dict[str, Any]]: ...
    def get_upcoming(self, limit: int = 10) -> list[Reservation]: ...
    def get_current(self) -> list[Reservation]: ...
