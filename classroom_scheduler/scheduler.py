from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Iterable, Sequence
from uuid import uuid4

import holidays as pyholidays

from .catalog import YamlActivityCatalog, YamlPeopleDirectory, YamlRoomCatalog, YamlStateCatalog
from .config import SchedulerConfig
from .conflicts import ConflictDetector
from .errors import (
    ConflictError,
    ConflictKind,
    ImmutableHistoricalRecordError,
    InactiveEntityError,
    NotFoundError,
    OutsideOperatingHoursError,
    SchedulingError,
    ValidationError,
)
from .interfaces import ActivityCatalog, ReservationStateCatalog, ReservationStore, RoomCatalog, TeacherDirectory
from .logger import get_logger
from .models import (
    ACTIVE_STATES,
    AvailabilityReport,
    BulkCreateResult,
    BulkItemError,
    ConflictQuery,
    ConflictReport,
    Dashboard,
    RecurringReservationRequest,
    Reservation,
    ReservationPage,
    ReservationQuery,
    ReservationRequest,
    ReservationSearch,
    ReservationState,
    RoomRecord,
    StatisticsQuery,
)
from .recurrence import expand
from .state_machine import ReservationStateMachine
from .yaml_store import ReservationYamlRepository

logger = get_logger(__name__)

MAX_OBSERVATIONS_LENGTH = 500
DASHBOARD_UPCOMING_LIMIT = 5
_HOLIDAY_CACHE: dict[tuple[str, int], set[date]] = {}


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


class ReservationScheduler:
    """Validates, conflict-checks and persists reservations.

    Single operations fail fast with the first violated rule. Bulk creation is
    best-effort: failing items are reported by index and the rest are stored
    in one call. Bulk deletion is all-or-nothing.
    """

    def __init__(
        self,
        store: ReservationStore,
        rooms: RoomCatalog,
        teachers: TeacherDirectory,
        activities: ActivityCatalog,
        states: ReservationStateCatalog,
        config: SchedulerConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.rooms = rooms
        self.teachers = teachers
        self.activities = activities
        self.states = states
        self.config = config or SchedulerConfig()
        self.clock: Callable[[], datetime] = clock or datetime.now
        self.detector = ConflictDetector(store)
        self.state_machine = ReservationStateMachine(states, teachers, self.clock)

    # ------------------------------------------------------------------
    # single reservations

    def create_reservation(self, request: ReservationRequest) -> Reservation:
        reservation = self._build_reservation(request)
        created = self.store.create(reservation)
        logger.info(
            "Reservation created: room=%s teacher=%s %s-%s (id=%s)",
            created.room_id,
            created.teacher_id,
            created.start.isoformat(timespec="minutes"),
            created.end.isoformat(timespec="minutes"),
            created.reservation_id,
        )
        return created

    def update_reservation(
        self,
        reservation_id: str,
        *,
        room_id: str | None = None,
        teacher_id: str | None = None,
        activity_id: str | None = UNSET,
        start: datetime | None = None,
        end: datetime | None = None,
        observations: str | None = UNSET,
    ) -> Reservation:
        existing = self.get_reservation(reservation_id)

        new_room = room_id or existing.room_id
        new_teacher = teacher_id or existing.teacher_id
        new_activity = existing.activity_id if activity_id is UNSET else activity_id
        new_start = start or existing.start
        new_end = end or existing.end
        new_observations = existing.observations if observations is UNSET else observations

        _validate_interval(new_start, new_end)
        _validate_observations(new_observations)

        if new_room != existing.room_id:
            self._require_room(new_room)
        if new_teacher != existing.teacher_id:
            self._require_teacher(new_teacher)
        if new_activity and new_activity != existing.activity_id:
            self._require_activity(new_activity)

        schedule_changed = (
            new_start != existing.start or new_end != existing.end or new_room != existing.room_id
        )
        if schedule_changed:
            self.validate_operating_hours(new_room, new_start, new_end)
        if existing.active and (schedule_changed or new_teacher != existing.teacher_id):
            self._ensure_free(new_room, new_teacher, new_start, new_end, exclude_reservation_id=reservation_id)

        updated = replace(
            existing,
            room_id=new_room,
            teacher_id=new_teacher,
            activity_id=new_activity,
            start=new_start,
            end=new_end,
            observations=new_observations,
            updated_at=self.clock(),
        )
        saved = self.store.update(updated)
        logger.info("Reservation updated: id=%s", reservation_id)
        return saved

    def delete_reservation(self, reservation_id: str) -> Reservation:
        existing = self.get_reservation(reservation_id)
        if existing.end < self.clock():
            raise ImmutableHistoricalRecordError(reservation_id)

        deleted = self.store.delete(reservation_id)
        logger.info(
            "Reservation deleted: room=%s %s (id=%s)",
            deleted.room_id,
            deleted.start.isoformat(timespec="minutes"),
            reservation_id,
        )
        return deleted

    # ------------------------------------------------------------------
    # batches

    def create_bulk_reservations(self, requests: Sequence[ReservationRequest]) -> BulkCreateResult:
        accepted: list[Reservation] = []
        errors: list[BulkItemError] = []

        for index, request in enumerate(requests):
            try:
                accepted.append(self._build_reservation(request, pending=accepted))
            except SchedulingError as error:
                logger.warning("Bulk item %d rejected: %s", index, error)
                errors.append(BulkItemError(index=index, reason=str(error)))

        created = self.store.create_bulk(accepted) if accepted else []
        logger.info("Bulk reservation create: %d created, %d errors", len(created), len(errors))
        return BulkCreateResult(created=created, errors=errors, planned=len(requests))

    def create_recurring_reservation(self, recurring: RecurringReservationRequest) -> BulkCreateResult:
        base = recurring.request
        occurrences = expand(base.start, base.end, recurring.recurrence, hard_cap=self.config.max_occurrences)
        items = [replace(base, start=occurrence.start, end=occurrence.end) for occurrence in occurrences]

        result = self.create_bulk_reservations(items)
        logger.info(
            "Recurring reservations created: %d of %d planned",
            result.created_count,
            len(items),
        )
        return result

    def delete_bulk_reservations(self, reservation_ids: Iterable[str]) -> int:
        ids = list(dict.fromkeys(str(reservation_id) for reservation_id in reservation_ids))
        if not ids:
            raise ValidationError("ids", "at least one reservation id is required")

        now = self.clock()
        for reservation_id in ids:
            existing = self.store.find_by_id(reservation_id)
            if existing is None:
                raise NotFoundError("reservation", reservation_id)
            if existing.end < now:
                raise ImmutableHistoricalRecordError(reservation_id)

        deleted = self.store.delete_bulk(ids)
        logger.info("Bulk reservation delete: %d deleted", deleted)
        return deleted

    # ------------------------------------------------------------------
    # lifecycle

    def approve_reservation(self, reservation_id: str, approver_id: str, observations: str | None = None) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        saved = self.store.update(self.state_machine.approve(reservation, approver_id, observations))
        logger.info("Reservation %s approved by %s", reservation_id, approver_id)
        return saved

    def reject_reservation(self, reservation_id: str, rejecter_id: str, reason: str | None = None) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        saved = self.store.update(self.state_machine.reject(reservation, rejecter_id, reason))
        logger.info("Reservation %s rejected by %s. Reason: %s", reservation_id, rejecter_id, reason)
        return saved

    def cancel_reservation(self, reservation_id: str, canceler_id: str, reason: str | None = None) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        saved = self.store.update(self.state_machine.cancel(reservation, canceler_id, reason))
        logger.info("Reservation %s canceled by %s. Reason: %s", reservation_id, canceler_id, reason)
        return saved

    def complete_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.get_reservation(reservation_id)
        saved = self.store.update(self.state_machine.complete(reservation))
        logger.info("Reservation %s completed", reservation_id)
        return saved

    # ------------------------------------------------------------------
    # rules

    def validate_operating_hours(self, room_id: str, start: datetime, end: datetime) -> None:
        room = self.rooms.find_by_id(room_id)
        if room is None:
            raise NotFoundError("room", room_id)

        opens_at, closes_at = self.operating_window(room)
        if start.date() != end.date() or start.time() < opens_at or end.time() > closes_at:
            raise OutsideOperatingHoursError(start, end, opens_at, closes_at)

        country = self.config.holiday_country
        if country and _is_public_holiday(country, start.date()):
            raise OutsideOperatingHoursError(
                start,
                end,
                opens_at,
                closes_at,
                reason=f"rooms are closed on public holidays ({start.date().isoformat()})",
            )

    def operating_window(self, room: RoomRecord) -> tuple[time, time]:
        return room.opens_at or self.config.opens_at, room.closes_at or self.config.closes_at

    # ------------------------------------------------------------------
    # queries

    def get_reservation(self, reservation_id: str) -> Reservation:
        reservation = self.store.find_by_id(reservation_id)
        if reservation is None:
            raise NotFoundError("reservation", reservation_id)
        return reservation

    def list_reservations(self, query: ReservationQuery) -> ReservationPage:
        items, total = self.store.find_all(query)
        return ReservationPage(items=items, total=total, page=query.page, limit=query.limit)

    def reservations_by_room(self, room_id: str, include_past: bool = False) -> list[Reservation]:
        if self.rooms.find_by_id(room_id) is None:
            raise NotFoundError("room", room_id)
        return self.store.find_by_room(room_id, include_past)

    def reservations_by_teacher(self, teacher_id: str, include_past: bool = False) -> list[Reservation]:
        if self.teachers.find_by_id(teacher_id) is None:
            raise NotFoundError("teacher", teacher_id)
        return self.store.find_by_teacher(teacher_id, include_past)

    def reservations_by_activity(self, activity_id: str, include_past: bool = False) -> list[Reservation]:
        if self.activities.find_by_id(activity_id) is None:
            raise NotFoundError("activity", activity_id)
        return self.store.find_by_activity(activity_id, include_past)

    def search_reservations(self, search: ReservationSearch) -> list[Reservation]:
        return self.store.search(search)

    def get_statistics(self, query: StatisticsQuery) -> list[dict[str, Any]]:
        return self.store.get_statistics(query)

    def get_upcoming_reservations(self, limit: int = 10) -> list[Reservation]:
        if limit <= 0:
            raise ValidationError("limit", "limit must be greater than zero")
        return self.store.get_upcoming(limit)

    def get_current_reservations(self) -> list[Reservation]:
        return self.store.get_current()

    def get_dashboard(self) -> Dashboard:
        now = self.clock()
        weekly = StatisticsQuery(date_from=now - timedelta(days=7), date_to=now, group_by="room")
        return Dashboard(
            generated_at=now,
            upcoming=self.get_upcoming_reservations(DASHBOARD_UPCOMING_LIMIT),
            current=self.get_current_reservations(),
            weekly_statistics=self.get_statistics(weekly),
        )

    def detect_conflicts(self, query: ConflictQuery) -> ConflictReport:
        _validate_interval(query.start, query.end)
        return self.detector.detect_all(query)

    def check_availability(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        teacher_id: str | None = None,
        exclude_reservation_id: str | None = None,
    ) -> AvailabilityReport:
        _validate_interval(start, end)
        room_conflicts = self.detector.detect_room_conflicts(room_id, start, end, exclude_reservation_id)
        teacher_conflicts = (
            self.detector.detect_teacher_conflicts(teacher_id, start, end, exclude_reservation_id)
            if teacher_id
            else []
        )
        return AvailabilityReport(room_conflicts=room_conflicts, teacher_conflicts=teacher_conflicts)

    # ------------------------------------------------------------------
    # helpers

    def _build_reservation(self, request: ReservationRequest, pending: Sequence[Reservation] = ()) -> Reservation:
        _validate_interval(request.start, request.end)
        _validate_observations(request.observations)

        self._require_room(request.room_id)
        self._require_teacher(request.teacher_id)
        if request.activity_id:
            self._require_activity(request.activity_id)

        self.validate_operating_hours(request.room_id, request.start, request.end)
        self._ensure_free(request.room_id, request.teacher_id, request.start, request.end, pending=pending)

        now = self.clock()
        return Reservation(
            reservation_id=str(uuid4()),
            room_id=request.room_id,
            teacher_id=request.teacher_id,
            activity_id=request.activity_id,
            start=request.start,
            end=request.end,
            state_code=self._resolve_state_code(request.state_code),
            observations=request.observations,
            created_at=now,
            updated_at=now,
        )

    def _ensure_free(
        self,
        room_id: str,
        teacher_id: str,
        start: datetime,
        end: datetime,
        exclude_reservation_id: str | None = None,
        pending: Sequence[Reservation] = (),
    ) -> None:
        room_conflicts = self.detector.detect_room_conflicts(room_id, start, end, exclude_reservation_id, pending)
        if room_conflicts:
            raise ConflictError(ConflictKind.ROOM, room_conflicts)

        teacher_conflicts = self.detector.detect_teacher_conflicts(
            teacher_id, start, end, exclude_reservation_id, pending
        )
        if teacher_conflicts:
            raise ConflictError(ConflictKind.TEACHER, teacher_conflicts)

    def _resolve_state_code(self, state_code: str | None) -> str:
        if state_code is None:
            record = self.state_machine.get_initial_state()
        else:
            record = self.states.find_by_code(state_code)
            if record is None:
                raise NotFoundError("reservation state", state_code)
            if not record.active:
                raise InactiveEntityError("reservation state", state_code)

        if ReservationState.from_code(record.code) not in ACTIVE_STATES:
            raise ValidationError("state_code", f"reservations cannot start in state {record.code}")
        return record.code

    def _require_room(self, room_id: str) -> None:
        room = self.rooms.find_by_id(room_id)
        if room is None:
            raise NotFoundError("room", room_id)
        if not room.active:
            raise InactiveEntityError("room", room_id)

    def _require_teacher(self, teacher_id: str) -> None:
        teacher = self.teachers.find_by_id(teacher_id)
        if teacher is None:
            raise NotFoundError("teacher", teacher_id)
        if not teacher.active:
            raise InactiveEntityError("teacher", teacher_id)
        if not self.teachers.has_teaching_capability(teacher_id):
            raise ValidationError("teacher_id", "not a qualified teacher")

    def _require_activity(self, activity_id: str) -> None:
        activity = self.activities.find_by_id(activity_id)
        if activity is None:
            raise NotFoundError("activity", activity_id)
        if not activity.active:
            raise InactiveEntityError("activity", activity_id)


def build_scheduler(
    config: SchedulerConfig | None = None,
    clock: Callable[[], datetime] | None = None,
) -> ReservationScheduler:
    """Wire a scheduler to the YAML-backed store and catalogs under ``config.data_dir``."""
    effective = config or SchedulerConfig()
    data_dir = effective.data_dir
    return ReservationScheduler(
        store=ReservationYamlRepository(data_dir, clock=clock),
        rooms=YamlRoomCatalog(data_dir, clock=clock),
        teachers=YamlPeopleDirectory(data_dir, clock=clock),
        activities=YamlActivityCatalog(data_dir, clock=clock),
        states=YamlStateCatalog(data_dir, effective.initial_state_code, clock=clock),
        config=effective,
        clock=clock,
    )


def _validate_interval(start: datetime, end: datetime) -> None:
    if start >= end:
        raise ValidationError("end", "start must be earlier than end")


def _validate_observations(observations: str | None) -> None:
    if observations is not None and len(observations) > MAX_OBSERVATIONS_LENGTH:
        raise ValidationError("observations", f"observations must not exceed {MAX_OBSERVATIONS_LENGTH} characters")


def _is_public_holiday(country: str, target_date: date) -> bool:
    key = (country.upper(), target_date.year)
    if key not in _HOLIDAY_CACHE:
        holiday_map = pyholidays.country_holidays(key[0], years=[target_date.year])
        _HOLIDAY_CACHE[key] = set(holiday_map.keys())
    return target_date in _HOLIDAY_CACHE[key]
