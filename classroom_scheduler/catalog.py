from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Generic, Mapping, TypeVar

from .errors import NotFoundError
from .models import ActivityRecord, PersonRecord, ReservationState, RoomRecord, StateRecord
from .yaml_store import YamlListFiles

RecordT = TypeVar("RecordT", RoomRecord, PersonRecord, ActivityRecord, StateRecord)

DEFAULT_STATES = [
    StateRecord(code=ReservationState.PENDING.value, name="Pending", order=1),
    StateRecord(code=ReservationState.CONFIRMED.value, name="Confirmed", order=2),
    StateRecord(code=ReservationState.REJECTED.value, name="Rejected", order=3),
    StateRecord(code=ReservationState.CANCELED.value, name="Canceled", order=4),
    StateRecord(code=ReservationState.COMPLETED.value, name="Completed", order=5),
]


class _YamlCatalog(YamlListFiles, Generic[RecordT]):
    file_name = ""
    key = "id"

    def __init__(
        self,
        base_dir: str | Path,
        parse: Callable[[Mapping[str, Any]], RecordT],
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(base_dir, clock)
        self.path = self.base_dir / self.file_name
        self._parse = parse
        self._ensure_files(self.path)

    def all(self) -> list[RecordT]:
        return [self._parse(row) for row in self._read_yaml_list(self.path)]

    def find_by_id(self, record_id: str) -> RecordT | None:
        for row in self._read_yaml_list(self.path):
            if str(row.get(self.key)) == str(record_id):
                return self._parse(row)
        return None

    def upsert(self, record: RecordT) -> RecordT:
        record_key = str(getattr(record, self.key))
        with self.lock:
            rows = [row for row in self._read_yaml_list(self.path) if str(row.get(self.key)) != record_key]
            rows.append(record.to_dict())
            self._write_yaml_list(self.path, rows)
        return record


class YamlRoomCatalog(_YamlCatalog[RoomRecord]):
    file_name = "rooms.yaml"

    def __init__(self, base_dir: str | Path = "data", clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(base_dir, RoomRecord.from_dict, clock)


class YamlPeopleDirectory(_YamlCatalog[PersonRecord]):
    file_name = "people.yaml"

    def __init__(self, base_dir: str | Path = "data", clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(base_dir, PersonRecord.from_dict, clock)

    def has_teaching_capability(self, person_id: str) -> bool:
        person = self.find_by_id(person_id)
        return person is not None and person.active and person.is_teacher


class YamlActivityCatalog(_YamlCatalog[ActivityRecord]):
    file_name = "activities.yaml"

    def __init__(self, base_dir: str | Path = "data", clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(base_dir, ActivityRecord.from_dict, clock)


class YamlStateCatalog(_YamlCatalog[StateRecord]):
    file_name = "reservation_states.yaml"
    key = "code"

    def __init__(
        self,
        base_dir: str | Path = "data",
        initial_state_code: str = ReservationState.PENDING.value,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        super().__init__(base_dir, StateRecord.from_dict, clock)
        self.initial_state_code = initial_state_code.strip().upper()
        with self.lock:
            if not self._read_yaml_list(self.path):
                self._write_yaml_list(self.path, [state.to_dict() for state in DEFAULT_STATES])

    def find_by_code(self, code: str) -> StateRecord | None:
        return self.find_by_id(str(code).strip().upper())

    def get_initial_state(self) -> StateRecord:
        configured = self.find_by_code(self.initial_state_code)
        if configured is not None and configured.active:
            return configured

        candidates = sorted((state for state in self.all() if state.active), key=lambda state: state.order)
        if not candidates:
            raise NotFoundError("reservation state", self.initial_state_code)
        return candidates[0]
