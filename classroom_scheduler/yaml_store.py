from __future__ import annotations

import shutil
import threading
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Sequence

import yaml

from .errors import ConflictError, ConflictKind, NotFoundError, ReservationStorageError, ValidationError
from .intervals import overlaps
from .models import (
    Reservation,
    ReservationQuery,
    ReservationSearch,
    STATISTICS_GROUPS,
    SEARCH_FIELDS,
    StatisticsQuery,
    sort_by_start,
)

# one lock per process: every store and catalog instance shares it so that
# read-check-write sequences on the same files never interleave
_FILE_LOCK = threading.RLock()


class YamlListFiles:
    """Shared plumbing for YAML files holding a top-level list of mappings."""

    def __init__(self, base_dir: str | Path, clock: Callable[[], datetime] | None = None) -> None:
        self.base_dir = Path(base_dir)
        self.log_file = self.base_dir / "reservation_events.yaml"
        self.clock: Callable[[], datetime] = clock or datetime.now
        self.lock = _FILE_LOCK

    def _ensure_files(self, *paths: Path) -> None:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
            for path in (*paths, self.log_file):
                if not path.exists():
                    path.write_text("[]\n", encoding="utf-8")
        except OSError as error:
            raise ReservationStorageError(f"Failed to prepare data directory: {self.base_dir}") from error

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            else:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            backup_path = path

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any]) -> None:
        timestamp = self.clock().isoformat(timespec="seconds")
        events = self._read_yaml_list(self.log_file)
        events.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
        self._write_yaml_list(self.log_file, events)

    def read_events(self) -> list[dict[str, Any]]:
        return self._read_yaml_list(self.log_file)


class ReservationYamlRepository(YamlListFiles):
    """Reservation store kept in ``reservations.yaml`` with an audit log.

    Writes re-check room and teacher overlap under the shared file lock, so a
    double booking that slipped past the scheduler's advisory checks is still
    refused with ``ConflictError``.
    """

    def __init__(self, base_dir: str | Path = "data", clock: Callable[[], datetime] | None = None) -> None:
        super().__init__(base_dir, clock)
        self.reservations_file = self.base_dir / "reservations.yaml"
        self._ensure_files(self.reservations_file)

    def _load(self) -> list[Reservation]:
        return [Reservation.from_dict(row) for row in self._read_yaml_list(self.reservations_file)]

    def _save(self, reservations: Iterable[Reservation]) -> None:
        self._write_yaml_list(self.reservations_file, [row.to_dict() for row in reservations])

    def create(self, reservation: Reservation) -> Reservation:
        return self.create_bulk([reservation])[0]

    def create_bulk(self, reservations: Sequence[Reservation]) -> list[Reservation]:
        created = list(reservations)
        if not created:
            return []

        with self.lock:
            rows = self._load()
            known_ids = {row.reservation_id for row in rows}
            for reservation in created:
                if reservation.reservation_id in known_ids:
                    raise ValidationError("reservation_id", f"duplicate reservation id: {reservation.reservation_id}")
                known_ids.add(reservation.reservation_id)

            _guard_overlap(rows, created)
            self._save(rows + created)

            if len(created) == 1:
                self._log_event("RESERVATION_CREATED", _event_payload(created[0]))
            else:
                self._log_event(
                    "RESERVATIONS_CREATED_BULK",
                    {
                        "count": len(created),
                        "reservation_ids": [row.reservation_id for row in created],
                    },
                )
        return created

    def update(self, reservation: Reservation) -> Reservation:
        with self.lock:
            rows = self._load()
            found_index = _index_of(rows, reservation.reservation_id)
            if found_index < 0:
                raise NotFoundError("reservation", reservation.reservation_id)

            others = rows[:found_index] + rows[found_index + 1 :]
            _guard_overlap(others, [reservation])
            rows[found_index] = reservation
            self._save(rows)

            self._log_event("RESERVATION_UPDATED", _event_payload(reservation))
        return reservation

    def delete(self, reservation_id: str) -> Reservation:
        with self.lock:
            rows = self._load()
            found_index = _index_of(rows, reservation_id)
            if found_index < 0:
                raise NotFoundError("reservation", reservation_id)

            deleted = rows.pop(found_index)
            self._save(rows)
            self._log_event("RESERVATION_DELETED", _event_payload(deleted))
        return deleted

    def delete_bulk(self, reservation_ids: Sequence[str]) -> int:
        targets = set(reservation_ids)
        with self.lock:
            rows = self._load()
            present = {row.reservation_id for row in rows}
            missing = [reservation_id for reservation_id in reservation_ids if reservation_id not in present]
            if missing:
                raise NotFoundError("reservation", ", ".join(missing))

            remaining = [row for row in rows if row.reservation_id not in targets]
            self._save(remaining)
            deleted = len(rows) - len(remaining)
            self._log_event(
                "RESERVATIONS_DELETED_BULK",
                {"count": deleted, "reservation_ids": list(reservation_ids)},
            )
        return deleted

    def find_by_id(self, reservation_id: str) -> Reservation | None:
        for row in self._load():
            if row.reservation_id == reservation_id:
                return row
        return None

    def find_by_room(self, room_id: str, include_past: bool = False) -> list[Reservation]:
        return self._find(lambda row: row.room_id == room_id, include_past)

    def find_by_teacher(self, teacher_id: str, include_past: bool = False) -> list[Reservation]:
        return self._find(lambda row: row.teacher_id == teacher_id, include_past)

    def find_by_activity(self, activity_id: str, include_past: bool = False) -> list[Reservation]:
        return self._find(lambda row: row.activity_id == activity_id, include_past)

    def _find(self, predicate: Callable[[Reservation], bool], include_past: bool) -> list[Reservation]:
        now = self.clock()
        return sort_by_start(
            row for row in self._load() if predicate(row) and (include_past or row.end >= now)
        )

    def find_all(self, query: ReservationQuery) -> tuple[list[Reservation], int]:
        if query.page <= 0 or query.limit <= 0:
            raise ValidationError("page", "page and limit must be greater than zero")

        now = self.clock()
        matches: list[Reservation] = []
        for row in self._load():
            if query.room_id and row.room_id != query.room_id:
                continue
            if query.teacher_id and row.teacher_id != query.teacher_id:
                continue
            if query.activity_id and row.activity_id != query.activity_id:
                continue
            if query.state_code and row.state_code != query.state_code:
                continue
            if query.only_active and not row.active:
                continue
            if query.date_from and row.start < query.date_from:
                continue
            if query.date_to and row.start > query.date_to:
                continue
            if not query.include_past and row.end < now:
                continue
            matches.append(row)

        ordered = sort_by_start(matches)
        offset = (query.page - 1) * query.limit
        return ordered[offset : offset + query.limit], len(ordered)

    def search(self, search: ReservationSearch) -> list[Reservation]:
        if search.search_by not in SEARCH_FIELDS:
            raise ValidationError("search_by", f"search_by must be one of: {', '.join(SEARCH_FIELDS)}")
        needle = search.text.strip().lower()
        if not needle:
            raise ValidationError("text", "search text must not be empty")

        now = self.clock()
        matches: list[Reservation] = []
        for row in self._load():
            haystacks = {
                "room": row.room_id,
                "teacher": row.teacher_id,
                "activity": row.activity_id,
                "observations": row.observations,
            }
            fields_to_check = haystacks.values() if search.search_by == "all" else [haystacks[search.search_by]]
            if not any(value and needle in value.lower() for value in fields_to_check):
                continue
            if search.date_from and row.start < search.date_from:
                continue
            if search.date_to and row.start > search.date_to:
                continue
            if not search.include_past and row.end < now:
                continue
            matches.append(row)
        return sort_by_start(matches)

    def get_statistics(self, query: StatisticsQuery) -> list[dict[str, Any]]:
        if query.group_by not in STATISTICS_GROUPS:
            raise ValidationError("group_by", f"group_by must be one of: {', '.join(STATISTICS_GROUPS)}")
        if query.date_from > query.date_to:
            raise ValidationError("date_to", "date_from must not be later than date_to")

        rows = [row for row in self._load() if query.date_from <= row.start <= query.date_to]
        if query.group_by == "total":
            return [{"key": "total", "count": len(rows)}]

        key_of: dict[str, Callable[[Reservation], Any]] = {
            "room": lambda row: row.room_id,
            "teacher": lambda row: row.teacher_id,
            "activity": lambda row: row.activity_id,
            "state": lambda row: row.state_code,
            "day": lambda row: row.start.date().isoformat(),
            "month": lambda row: row.start.strftime("%Y-%m"),
        }
        counts = Counter(key_of[query.group_by](row) for row in rows)
        ordered = sorted(counts.items(), key=lambda item: (-item[1], str(item[0])))
        return [{"key": key, "count": count} for key, count in ordered]

    def get_upcoming(self, limit: int = 10) -> list[Reservation]:
        if limit <= 0:
            raise ValueError("limit must be greater than zero")
        now = self.clock()
        return sort_by_start(row for row in self._load() if row.active and row.start >= now)[:limit]

    def get_current(self) -> list[Reservation]:
        now = self.clock()
        return sort_by_start(row for row in self._load() if row.active and row.start <= now < row.end)


def _guard_overlap(existing: Sequence[Reservation], incoming: Sequence[Reservation]) -> None:
    accepted = [row for row in existing if row.active]
    for candidate in incoming:
        if not candidate.active:
            continue
        same_room = [
            row
            for row in accepted
            if row.room_id == candidate.room_id and overlaps(candidate.start, candidate.end, row.start, row.end)
        ]
        if same_room:
            raise ConflictError(ConflictKind.ROOM, sort_by_start(same_room))
        same_teacher = [
            row
            for row in accepted
            if row.teacher_id == candidate.teacher_id and overlaps(candidate.start, candidate.end, row.start, row.end)
        ]
        if same_teacher:
            raise ConflictError(ConflictKind.TEACHER, sort_by_start(same_teacher))
        accepted.append(candidate)


def _index_of(rows: Sequence[Reservation], reservation_id: str) -> int:
    for index, row in enumerate(rows):
        if row.reservation_id == reservation_id:
            return index
    return -1


def _event_payload(reservation: Reservation) -> dict[str, Any]:
    return {
        "reservation_id": reservation.reservation_id,
        "room_id": reservation.room_id,
        "teacher_id": reservation.teacher_id,
        "start": reservation.start.isoformat(timespec="minutes"),
        "end": reservation.end.isoformat(timespec="minutes"),
        "state_code": reservation.state_code,
    }
