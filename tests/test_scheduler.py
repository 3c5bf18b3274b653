import tempfile
import unittest
from datetime import datetime, time
from pathlib import Path

from classroom_scheduler import (
    ConflictError,
    ConflictKind,
    ImmutableHistoricalRecordError,
    InactiveEntityError,
    InvalidTransitionError,
    NotFoundError,
    OutsideOperatingHoursError,
    RecurrenceRule,
    RecurrenceType,
    RecurringReservationRequest,
    Reservation,
    ReservationRequest,
    ReservationState,
    SchedulerConfig,
    ValidationError,
    YamlActivityCatalog,
    YamlPeopleDirectory,
    YamlRoomCatalog,
    build_scheduler,
)
from classroom_scheduler.models import (
    ActivityRecord,
    ConflictQuery,
    PersonRecord,
    ReservationQuery,
    ReservationSearch,
    RoomRecord,
    StateRecord,
    StatisticsQuery,
)


class _Clock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


def _seed_catalogs(data_dir: Path) -> None:
    rooms = YamlRoomCatalog(data_dir)
    rooms.upsert(RoomRecord(id="A101", active=True, name="Physics lab"))
    rooms.upsert(RoomRecord(id="B202", active=True, name="Lecture hall"))
    rooms.upsert(RoomRecord(id="C303", active=False, name="Closed for works"))
    rooms.upsert(RoomRecord(id="GYM", active=True, name="Gym", opens_at=time(7, 0), closes_at=time(23, 0)))

    people = YamlPeopleDirectory(data_dir)
    people.upsert(PersonRecord(id="t1", active=True, name="Ana", roles=frozenset({"TEACHER"})))
    people.upsert(PersonRecord(id="t2", active=True, name="Luis", roles=frozenset({"TEACHER"})))
    people.upsert(PersonRecord(id="t3", active=False, name="Marta", roles=frozenset({"TEACHER"})))
    people.upsert(PersonRecord(id="s1", active=True, name="Student", roles=frozenset({"STUDENT"})))
    people.upsert(PersonRecord(id="admin", active=True, name="Admin", roles=frozenset({"ADMIN"})))

    activities = YamlActivityCatalog(data_dir)
    activities.upsert(ActivityRecord(id="phys-1", active=True, name="Physics I"))
    activities.upsert(ActivityRecord(id="old", active=False, name="Retired course"))


def _request(
    room_id: str = "A101",
    teacher_id: str = "t1",
    start: datetime = datetime(2025, 3, 3, 10, 0),
    end: datetime = datetime(2025, 3, 3, 12, 0),
    **extra: str,
) -> ReservationRequest:
    return ReservationRequest(room_id=room_id, teacher_id=teacher_id, start=start, end=end, **extra)


class _SchedulerTestCase(unittest.TestCase):
    config_overrides: dict = {}

    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._temp_dir.name) / "data"
        _seed_catalogs(self.data_dir)
        self.clock = _Clock(datetime(2025, 3, 1, 9, 0))
        config = SchedulerConfig(data_dir=self.data_dir, **self.config_overrides)
        self.scheduler = build_scheduler(config, clock=self.clock)

    def tearDown(self) -> None:
        self._temp_dir.cleanup()


class TestCreateReservation(_SchedulerTestCase):
    def test_creates_pending_reservation(self) -> None:
        created = self.scheduler.create_reservation(_request(activity_id="phys-1", observations="bring goggles"))

        self.assertEqual(created.state, ReservationState.PENDING)
        self.assertTrue(created.active)
        self.assertEqual(created.activity_id, "phys-1")
        self.assertEqual(created.created_at, self.clock.now)
        self.assertEqual(self.scheduler.get_reservation(created.reservation_id), created)
        self.assertEqual(self.scheduler.store.read_events()[-1]["event_type"], "RESERVATION_CREATED")

    def test_room_overlap_is_rejected(self) -> None:
        existing = self.scheduler.create_reservation(_request())

        with self.assertRaises(ConflictError) as context:
            self.scheduler.create_reservation(
                _request(teacher_id="t2", start=datetime(2025, 3, 3, 11, 0), end=datetime(2025, 3, 3, 13, 0))
            )

        self.assertEqual(context.exception.conflict_kind, ConflictKind.ROOM)
        self.assertEqual([row.reservation_id for row in context.exception.conflicts], [existing.reservation_id])

    def test_touching_reservation_is_accepted(self) -> None:
        self.scheduler.create_reservation(_request())

        created = self.scheduler.create_reservation(
            _request(teacher_id="t2", start=datetime(2025, 3, 3, 12, 0), end=datetime(2025, 3, 3, 14, 0))
        )

        self.assertEqual(created.start, datetime(2025, 3, 3, 12, 0))

    def test_teacher_double_booking_is_rejected(self) -> None:
        self.scheduler.create_reservation(_request())

        with self.assertRaises(ConflictError) as context:
            self.scheduler.create_reservation(
                _request(room_id="B202", start=datetime(2025, 3, 3, 11, 0), end=datetime(2025, 3, 3, 13, 0))
            )

        self.assertEqual(context.exception.conflict_kind, ConflictKind.TEACHER)

    def test_canceled_reservation_frees_the_slot(self) -> None:
        first = self.scheduler.create_reservation(_request())
        self.scheduler.cancel_reservation(first.reservation_id, "admin", "moved online")

        second = self.scheduler.create_reservation(_request(teacher_id="t2"))

        self.assertTrue(second.active)

    def test_entity_validation(self) -> None:
        with self.assertRaises(NotFoundError) as missing_room:
            self.scheduler.create_reservation(_request(room_id="Z999"))
        self.assertEqual(str(missing_room.exception), "room not found")

        with self.assertRaises(InactiveEntityError) as inactive_room:
            self.scheduler.create_reservation(_request(room_id="C303"))
        self.assertEqual(str(inactive_room.exception), "room inactive")

        with self.assertRaises(InactiveEntityError):
            self.scheduler.create_reservation(_request(teacher_id="t3"))

        with self.assertRaises(ValidationError) as not_teacher:
            self.scheduler.create_reservation(_request(teacher_id="s1"))
        self.assertEqual(not_teacher.exception.field, "teacher_id")

        with self.assertRaises(InactiveEntityError):
            self.scheduler.create_reservation(_request(activity_id="old"))

        with self.assertRaises(NotFoundError):
            self.scheduler.create_reservation(_request(activity_id="nope"))

    def test_start_must_precede_end(self) -> None:
        with self.assertRaises(ValidationError):
            self.scheduler.create_reservation(
                _request(start=datetime(2025, 3, 3, 12, 0), end=datetime(2025, 3, 3, 12, 0))
            )

    def test_operating_hours(self) -> None:
        with self.assertRaises(OutsideOperatingHoursError):
            self.scheduler.create_reservation(
                _request(start=datetime(2025, 3, 3, 7, 30), end=datetime(2025, 3, 3, 9, 0))
            )
        with self.assertRaises(OutsideOperatingHoursError):
            self.scheduler.create_reservation(
                _request(start=datetime(2025, 3, 3, 21, 0), end=datetime(2025, 3, 3, 22, 30))
            )
        with self.assertRaises(OutsideOperatingHoursError):
            self.scheduler.create_reservation(
                _request(start=datetime(2025, 3, 3, 20, 0), end=datetime(2025, 3, 4, 9, 0))
            )

        late = self.scheduler.create_reservation(
            _request(start=datetime(2025, 3, 3, 20, 0), end=datetime(2025, 3, 3, 22, 0))
        )
        self.assertEqual(late.end, datetime(2025, 3, 3, 22, 0))

    def test_room_specific_hours_override_default(self) -> None:
        created = self.scheduler.create_reservation(
            _request(room_id="GYM", start=datetime(2025, 3, 3, 7, 30), end=datetime(2025, 3, 3, 9, 0))
        )

        self.assertEqual(created.room_id, "GYM")

    def test_explicit_state_code(self) -> None:
        confirmed = self.scheduler.create_reservation(_request(state_code="CONFIRMED"))
        self.assertEqual(confirmed.state, ReservationState.CONFIRMED)

        with self.assertRaises(ValidationError):
            self.scheduler.create_reservation(_request(room_id="B202", teacher_id="t2", state_code="COMPLETED"))
        with self.assertRaises(NotFoundError):
            self.scheduler.create_reservation(_request(room_id="B202", teacher_id="t2", state_code="DRAFT"))

    def test_deactivated_initial_state_is_not_used(self) -> None:
        first = self.scheduler.create_reservation(_request())
        self.scheduler.states.upsert(StateRecord(code="PENDING", name="Pending", active=False, order=1))

        second = self.scheduler.create_reservation(_request(room_id="B202", teacher_id="t2"))

        self.assertEqual(first.state_code, "PENDING")
        self.assertEqual(second.state_code, "CONFIRMED")

    def test_store_guard_catches_bypassed_checks(self) -> None:
        existing = self.scheduler.create_reservation(_request())
        sneaky = Reservation(
            reservation_id="manual",
            room_id="A101",
            teacher_id="t2",
            start=datetime(2025, 3, 3, 11, 0),
            end=datetime(2025, 3, 3, 11, 30),
            state_code="PENDING",
        )

        with self.assertRaises(ConflictError) as context:
            self.scheduler.store.create(sneaky)

        self.assertEqual(context.exception.conflicts[0].reservation_id, existing.reservation_id)


class TestHolidayClosure(_SchedulerTestCase):
    config_overrides = {"holiday_country": "US"}

    def test_public_holiday_is_rejected(self) -> None:
        with self.assertRaises(OutsideOperatingHoursError):
            self.scheduler.create_reservation(
                _request(start=datetime(2025, 7, 4, 10, 0), end=datetime(2025, 7, 4, 11, 0))
            )

        created = self.scheduler.create_reservation(
            _request(start=datetime(2025, 7, 7, 10, 0), end=datetime(2025, 7, 7, 11, 0))
        )
        self.assertTrue(created.active)


class TestUpdateAndDelete(_SchedulerTestCase):
    def test_update_can_overlap_its_own_previous_slot(self) -> None:
        created = self.scheduler.create_reservation(_request())

        updated = self.scheduler.update_reservation(
            created.reservation_id,
            start=datetime(2025, 3, 3, 10, 30),
            end=datetime(2025, 3, 3, 12, 30),
            observations="shifted",
        )

        self.assertEqual(updated.start, datetime(2025, 3, 3, 10, 30))
        self.assertEqual(updated.observations, "shifted")
        self.assertEqual(updated.created_at, created.created_at)

    def test_update_into_conflict_is_rejected(self) -> None:
        self.scheduler.create_reservation(_request())
        other = self.scheduler.create_reservation(
            _request(room_id="B202", teacher_id="t2", start=datetime(2025, 3, 3, 10, 0), end=datetime(2025, 3, 3, 11, 0))
        )

        with self.assertRaises(ConflictError) as room_context:
            self.scheduler.update_reservation(other.reservation_id, room_id="A101")
        self.assertEqual(room_context.exception.conflict_kind, ConflictKind.ROOM)

        with self.assertRaises(ConflictError) as teacher_context:
            self.scheduler.update_reservation(other.reservation_id, teacher_id="t1")
        self.assertEqual(teacher_context.exception.conflict_kind, ConflictKind.TEACHER)

        with self.assertRaises(InactiveEntityError):
            self.scheduler.update_reservation(other.reservation_id, room_id="C303")

        with self.assertRaises(OutsideOperatingHoursError):
            self.scheduler.update_reservation(other.reservation_id, end=datetime(2025, 3, 3, 23, 0))

    def test_update_missing_reservation(self) -> None:
        with self.assertRaises(NotFoundError):
            self.scheduler.update_reservation("missing", observations="x")

    def test_delete_future_and_refuse_finished(self) -> None:
        future = self.scheduler.create_reservation(_request())
        past = self.scheduler.create_reservation(
            _request(room_id="B202", teacher_id="t2", start=datetime(2025, 3, 3, 8, 0), end=datetime(2025, 3, 3, 9, 0))
        )
        self.clock.now = datetime(2025, 3, 3, 9, 30)

        with self.assertRaises(ImmutableHistoricalRecordError):
            self.scheduler.delete_reservation(past.reservation_id)

        self.scheduler.delete_reservation(future.reservation_id)
        with self.assertRaises(NotFoundError):
            self.scheduler.get_reservation(future.reservation_id)
        self.assertIsNotNone(self.scheduler.store.find_by_id(past.reservation_id))


class TestBulkOperations(_SchedulerTestCase):
    def test_bulk_create_is_best_effort(self) -> None:
        result = self.scheduler.create_bulk_reservations(
            [
                _request(),
                _request(room_id="C303", teacher_id="t2"),
                _request(room_id="B202", teacher_id="t2"),
            ]
        )

        self.assertEqual(result.created_count, 2)
        self.assertEqual(result.planned, 3)
        self.assertEqual(len(result.errors), 1)
        self.assertEqual(result.errors[0].index, 1)
        self.assertEqual(result.errors[0].reason, "room inactive")
        self.assertEqual(self.scheduler.store.read_events()[-1]["event_type"], "RESERVATIONS_CREATED_BULK")

    def test_bulk_create_checks_items_against_each_other(self) -> None:
        result = self.scheduler.create_bulk_reservations(
            [
                _request(),
                _request(teacher_id="t2", start=datetime(2025, 3, 3, 11, 0), end=datetime(2025, 3, 3, 12, 0)),
                _request(room_id="B202", start=datetime(2025, 3, 3, 11, 0), end=datetime(2025, 3, 3, 12, 0)),
            ]
        )

        self.assertEqual(result.created_count, 1)
        self.assertEqual([(error.index, error.reason) for error in result.errors], [(1, "room conflict"), (2, "teacher conflict")])

    def test_bulk_create_with_every_item_failing_persists_nothing(self) -> None:
        result = self.scheduler.create_bulk_reservations([_request(room_id="Z999")])

        self.assertEqual(result.created, [])
        self.assertEqual(result.errors[0].reason, "room not found")

    def test_recurring_reservation_reports_conflicting_occurrences(self) -> None:
        blocker = self.scheduler.create_reservation(
            _request(teacher_id="t2", start=datetime(2025, 3, 5, 10, 0), end=datetime(2025, 3, 5, 11, 0))
        )

        result = self.scheduler.create_recurring_reservation(
            RecurringReservationRequest(
                request=_request(start=datetime(2025, 3, 3, 10, 0), end=datetime(2025, 3, 3, 11, 0)),
                recurrence=RecurrenceRule(type=RecurrenceType.DAILY, interval=2, max_occurrences=5),
            )
        )

        self.assertEqual(result.planned, 5)
        self.assertEqual(result.created_count, 4)
        self.assertEqual([(error.index, error.reason) for error in result.errors], [(1, "room conflict")])
        self.assertEqual(
            [reservation.start.day for reservation in result.created],
            [3, 7, 9, 11],
        )
        self.assertTrue(blocker.active)

    def test_recurring_uses_configured_cap(self) -> None:
        result = self.scheduler.create_recurring_reservation(
            RecurringReservationRequest(
                request=_request(start=datetime(2025, 3, 3, 10, 0), end=datetime(2025, 3, 3, 11, 0)),
                recurrence=RecurrenceRule(type=RecurrenceType.DAILY, max_occurrences=1000),
            )
        )

        self.assertEqual(result.planned, 100)
        self.assertEqual(result.created_count, 100)

    def test_bulk_delete_is_all_or_nothing(self) -> None:
        first = self.scheduler.create_reservation(_request())
        second = self.scheduler.create_reservation(
            _request(start=datetime(2025, 3, 4, 10, 0), end=datetime(2025, 3, 4, 12, 0))
        )
        early = self.scheduler.create_reservation(
            _request(room_id="B202", teacher_id="t2", start=datetime(2025, 3, 3, 8, 0), end=datetime(2025, 3, 3, 9, 0))
        )
        self.clock.now = datetime(2025, 3, 3, 9, 30)

        with self.assertRaises(ImmutableHistoricalRecordError):
            self.scheduler.delete_bulk_reservations([first.reservation_id, early.reservation_id])
        with self.assertRaises(NotFoundError):
            self.scheduler.delete_bulk_reservations([first.reservation_id, "missing"])
        with self.assertRaises(ValidationError):
            self.scheduler.delete_bulk_reservations([])
        self.assertIsNotNone(self.scheduler.store.find_by_id(first.reservation_id))

        deleted = self.scheduler.delete_bulk_reservations([first.reservation_id, second.reservation_id])

        self.assertEqual(deleted, 2)
        self.assertIsNotNone(self.scheduler.store.find_by_id(early.reservation_id))


class TestLifecycle(_SchedulerTestCase):
    def test_approve_then_complete_after_end(self) -> None:
        created = self.scheduler.create_reservation(_request())

        approved = self.scheduler.approve_reservation(created.reservation_id, "admin", "ok")
        self.assertEqual(approved.state, ReservationState.CONFIRMED)
        self.assertEqual(self.scheduler.get_reservation(created.reservation_id).approved_by, "admin")

        with self.assertRaises(ValidationError):
            self.scheduler.complete_reservation(created.reservation_id)

        self.clock.now = datetime(2025, 3, 3, 12, 5)
        completed = self.scheduler.complete_reservation(created.reservation_id)
        self.assertEqual(completed.state, ReservationState.COMPLETED)
        self.assertFalse(completed.active)

        with self.assertRaises(InvalidTransitionError):
            self.scheduler.cancel_reservation(created.reservation_id, "admin", "too late")

    def test_reject_pending(self) -> None:
        created = self.scheduler.create_reservation(_request())

        rejected = self.scheduler.reject_reservation(created.reservation_id, "admin", "exam week")

        self.assertEqual(rejected.state_code, "REJECTED")
        self.assertEqual(rejected.reject_reason, "exam week")
        with self.assertRaises(InvalidTransitionError):
            self.scheduler.approve_reservation(created.reservation_id, "admin")

    def test_unknown_actor(self) -> None:
        created = self.scheduler.create_reservation(_request())

        with self.assertRaises(NotFoundError):
            self.scheduler.approve_reservation(created.reservation_id, "ghost")
        self.assertEqual(self.scheduler.get_reservation(created.reservation_id).state_code, "PENDING")


class TestQueries(_SchedulerTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.first = self.scheduler.create_reservation(_request(activity_id="phys-1", observations="Optics"))
        self.second = self.scheduler.create_reservation(
            _request(room_id="B202", teacher_id="t2", start=datetime(2025, 3, 4, 14, 0), end=datetime(2025, 3, 4, 16, 0))
        )

    def test_listing_and_lookups(self) -> None:
        page = self.scheduler.list_reservations(ReservationQuery(limit=1))
        self.assertEqual(page.total, 2)
        self.assertEqual(page.pages, 2)
        self.assertEqual(page.items[0].reservation_id, self.first.reservation_id)

        self.assertEqual(len(self.scheduler.reservations_by_room("B202")), 1)
        self.assertEqual(len(self.scheduler.reservations_by_teacher("t1")), 1)
        self.assertEqual(len(self.scheduler.reservations_by_activity("phys-1")), 1)
        with self.assertRaises(NotFoundError):
            self.scheduler.reservations_by_room("Z999")

    def test_search_statistics_upcoming_current(self) -> None:
        found = self.scheduler.search_reservations(ReservationSearch(text="optics", search_by="observations"))
        self.assertEqual([row.reservation_id for row in found], [self.first.reservation_id])

        stats = self.scheduler.get_statistics(
            StatisticsQuery(date_from=datetime(2025, 3, 1), date_to=datetime(2025, 3, 31), group_by="day")
        )
        self.assertEqual(stats, [{"key": "2025-03-03", "count": 1}, {"key": "2025-03-04", "count": 1}])

        upcoming = self.scheduler.get_upcoming_reservations()
        self.assertEqual([row.reservation_id for row in upcoming], [self.first.reservation_id, self.second.reservation_id])

        self.clock.now = datetime(2025, 3, 4, 15, 0)
        self.assertEqual(
            [row.reservation_id for row in self.scheduler.get_current_reservations()],
            [self.second.reservation_id],
        )

    def test_dashboard(self) -> None:
        later = self.scheduler.create_reservation(
            _request(start=datetime(2025, 3, 5, 10, 0), end=datetime(2025, 3, 5, 12, 0))
        )
        self.clock.now = datetime(2025, 3, 4, 15, 0)

        dashboard = self.scheduler.get_dashboard()

        self.assertEqual(dashboard.generated_at, self.clock.now)
        self.assertEqual([row.reservation_id for row in dashboard.upcoming], [later.reservation_id])
        self.assertEqual([row.reservation_id for row in dashboard.current], [self.second.reservation_id])
        self.assertEqual(dashboard.weekly_statistics, [{"key": "A101", "count": 1}, {"key": "B202", "count": 1}])

        payload = dashboard.to_dict()
        self.assertEqual(payload["upcoming_count"], 1)
        self.assertEqual(payload["current_count"], 1)
        self.assertEqual(payload["generated_at"], "2025-03-04T15:00:00")

    def test_availability_and_conflict_report(self) -> None:
        busy = self.scheduler.check_availability(
            "A101", datetime(2025, 3, 3, 11, 0), datetime(2025, 3, 3, 13, 0), teacher_id="t2"
        )
        self.assertFalse(busy.available)
        self.assertEqual(len(busy.room_conflicts), 1)
        self.assertEqual(busy.teacher_conflicts, [])

        free = self.scheduler.check_availability("A101", datetime(2025, 3, 3, 12, 0), datetime(2025, 3, 3, 13, 0))
        self.assertTrue(free.available)

        report = self.scheduler.detect_conflicts(
            ConflictQuery(
                room_id="B202",
                start=datetime(2025, 3, 3, 14, 0),
                end=datetime(2025, 3, 3, 15, 0),
                recurrence=RecurrenceRule(type=RecurrenceType.DAILY, max_occurrences=3),
            )
        )
        self.assertEqual(report.punctual, [])
        self.assertEqual(len(report.recurrent), 1)
        self.assertEqual(report.recurrent[0].reservation.reservation_id, self.second.reservation_id)


if __name__ == "__main__":
    unittest.main()
