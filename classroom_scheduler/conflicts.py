from __future__ import annotations

from datetime import datetime
from typing import Iterable, Sequence

from .errors import ConflictKind
from .intervals import overlaps
from .interfaces import ReservationStore
from .models import ConflictQuery, ConflictReport, RecurrentConflict, Reservation, sort_by_start
from .recurrence import Occurrence, expand


class ConflictDetector:
    """Read-only overlap checks against the reservation store.

    Only PENDING and CONFIRMED reservations take part. ``pending`` lets a
    caller add reservations that were accepted earlier in the same batch but
    are not persisted yet.
    """

    def __init__(self, store: ReservationStore) -> None:
        self.store = store

    def detect_room_conflicts(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: str | None = None,
        pending: Iterable[Reservation] = (),
    ) -> list[Reservation]:
        existing = self.store.find_by_room(room_id, include_past=True)
        candidates = list(existing) + [row for row in pending if row.room_id == room_id]
        return _overlapping(candidates, start, end, exclude_reservation_id)

    def detect_teacher_conflicts(
        self,
        teacher_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: str | None = None,
        pending: Iterable[Reservation] = (),
    ) -> list[Reservation]:
        existing = self.store.find_by_teacher(teacher_id, include_past=True)
        candidates = list(existing) + [row for row in pending if row.teacher_id == teacher_id]
        return _overlapping(candidates, start, end, exclude_reservation_id)

    def detect_recurrent_conflicts(
        self,
        occurrences: Sequence[Occurrence],
        room_id: str,
        teacher_id: str | None,
        exclude_reservation_id: str | None = None,
    ) -> list[RecurrentConflict]:
        room_rows = self.store.find_by_room(room_id, include_past=True)
        teacher_rows = self.store.find_by_teacher(teacher_id, include_past=True) if teacher_id else []

        conflicts: list[RecurrentConflict] = []
        for index, (start, end) in enumerate(occurrences):
            for kind, rows in ((ConflictKind.ROOM, room_rows), (ConflictKind.TEACHER, teacher_rows)):
                for reservation in _overlapping(rows, start, end, exclude_reservation_id):
                    conflicts.append(
                        RecurrentConflict(
                            occurrence_index=index,
                            start=start,
                            end=end,
                            kind=kind,
                            reservation=reservation,
                        )
                    )
        return conflicts

    def detect_all(self, query: ConflictQuery) -> ConflictReport:
        punctual = self.detect_room_conflicts(
            query.room_id,
            query.start,
            query.end,
            query.exclude_reservation_id,
        )
        if query.teacher_id:
            seen = {reservation.reservation_id for reservation in punctual}
            teacher_conflicts = self.detect_teacher_conflicts(
                query.teacher_id,
                query.start,
                query.end,
                query.exclude_reservation_id,
            )
            punctual = sort_by_start(
                punctual + [row for row in teacher_conflicts if row.reservation_id not in seen]
            )

        recurrent: list[RecurrentConflict] = []
        if query.recurrence is not None:
            occurrences = [
                occurrence
                for occurrence in expand(query.start, query.end, query.recurrence)
                if occurrence != (query.start, query.end)
            ]
            recurrent = self.detect_recurrent_conflicts(
                occurrences,
                query.room_id,
                query.teacher_id,
                query.exclude_reservation_id,
            )

        return ConflictReport(punctual=punctual, recurrent=recurrent)


def _overlapping(
    rows: Iterable[Reservation],
    start: datetime,
    end: datetime,
    exclude_reservation_id: str | None,
) -> list[Reservation]:
    return sort_by_start(
        row
        for row in rows
        if row.active
        and row.reservation_id != exclude_reservation_id
        and overlaps(start, end, row.start, row.end)
    )
