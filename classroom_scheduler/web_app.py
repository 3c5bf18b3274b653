from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Mapping

from flask import Flask, jsonify, request

from .config import SchedulerConfig
from .errors import (
    ConflictError,
    ImmutableHistoricalRecordError,
    InactiveEntityError,
    InvalidTransitionError,
    NotFoundError,
    OutsideOperatingHoursError,
    ReservationStorageError,
    SchedulingError,
    ValidationError,
)
from .logger import get_logger, setup_logging
from .models import (
    ConflictQuery,
    RecurrenceRule,
    RecurringReservationRequest,
    ReservationQuery,
    ReservationRequest,
    ReservationSearch,
    StatisticsQuery,
    _optional_str,
    _parse_datetime,
)
from .scheduler import UNSET, build_scheduler

logger = get_logger(__name__)

STATUS_BY_ERROR: dict[type[SchedulingError], int] = {
    NotFoundError: 404,
    InactiveEntityError: 400,
    ValidationError: 400,
    OutsideOperatingHoursError: 400,
    ConflictError: 409,
    ImmutableHistoricalRecordError: 409,
    InvalidTransitionError: 409,
}


def create_app(
    data_dir: str | Path | None = None,
    now_provider: Callable[[], datetime] | None = None,
    config: SchedulerConfig | None = None,
) -> Flask:
    app = Flask(__name__)
    effective = config or SchedulerConfig()
    if data_dir is not None:
        effective = replace(effective, data_dir=Path(data_dir))
    scheduler = build_scheduler(effective, clock=now_provider)
    app.extensions["scheduler"] = scheduler

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.errorhandler(SchedulingError)
    def handle_scheduling_error(error: SchedulingError) -> Any:
        return jsonify({"ok": False, **error.to_dict()}), _status_for(error)

    @app.errorhandler(ReservationStorageError)
    def handle_storage_error(error: ReservationStorageError) -> Any:
        logger.exception("Reservation storage failure")
        return jsonify({"ok": False, "error": "storage_error", "message": str(error)}), 500

    # collection

    @app.get("/api/reservations")
    def list_reservations() -> Any:
        query = ReservationQuery(
            room_id=_optional_str(request.args.get("room_id")),
            teacher_id=_optional_str(request.args.get("teacher_id")),
            activity_id=_optional_str(request.args.get("activity_id")),
            state_code=_optional_str(request.args.get("state_code")),
            date_from=_arg_datetime("date_from"),
            date_to=_arg_datetime("date_to"),
            only_active=_arg_bool("only_active", True),
            include_past=_arg_bool("include_past", False),
            page=_arg_int("page", 1),
            limit=_arg_int("limit", 10),
        )
        page = scheduler.list_reservations(query)
        return jsonify({"ok": True, **page.to_dict()})

    @app.post("/api/reservations")
    def create_reservation() -> Any:
        created = scheduler.create_reservation(ReservationRequest.from_dict(_json_body()))
        return jsonify({"ok": True, "reservation": created.to_dict()}), 201

    @app.get("/api/reservations/search")
    def search_reservations() -> Any:
        search = ReservationSearch(
            text=str(request.args.get("text", "")),
            search_by=str(request.args.get("search_by", "all")).lower(),
            date_from=_arg_datetime("date_from"),
            date_to=_arg_datetime("date_to"),
            include_past=_arg_bool("include_past", False),
        )
        return _reservations_response(scheduler.search_reservations(search))

    @app.get("/api/reservations/stats")
    def reservation_statistics() -> Any:
        date_from = _arg_datetime("date_from")
        date_to = _arg_datetime("date_to")
        if date_from is None or date_to is None:
            raise ValidationError("date_from", "date_from and date_to are required")
        query = StatisticsQuery(
            date_from=date_from,
            date_to=date_to,
            group_by=str(request.args.get("group_by", "room")).lower(),
        )
        return jsonify({"ok": True, "group_by": query.group_by, "statistics": scheduler.get_statistics(query)})

    @app.get("/api/reservations/upcoming")
    def upcoming_reservations() -> Any:
        return _reservations_response(scheduler.get_upcoming_reservations(_arg_int("limit", 10)))

    @app.get("/api/reservations/current")
    def current_reservations() -> Any:
        return _reservations_response(scheduler.get_current_reservations())

    @app.post("/api/reservations/availability/check")
    def check_availability() -> Any:
        payload = _json_body()
        report = scheduler.check_availability(
            room_id=_required(payload, "room_id"),
            start=_parse_datetime(payload.get("start"), "start"),
            end=_parse_datetime(payload.get("end"), "end"),
            teacher_id=_optional_str(payload.get("teacher_id")),
            exclude_reservation_id=_optional_str(payload.get("exclude_reservation_id")),
        )
        return jsonify({"ok": True, **report.to_dict()})

    @app.post("/api/reservations/conflicts/detect")
    def detect_conflicts() -> Any:
        payload = _json_body()
        recurrence = payload.get("recurrence")
        query = ConflictQuery(
            room_id=_required(payload, "room_id"),
            start=_parse_datetime(payload.get("start"), "start"),
            end=_parse_datetime(payload.get("end"), "end"),
            teacher_id=_optional_str(payload.get("teacher_id")),
            exclude_reservation_id=_optional_str(payload.get("exclude_reservation_id")),
            recurrence=RecurrenceRule.from_dict(recurrence) if isinstance(recurrence, Mapping) else None,
        )
        report = scheduler.detect_conflicts(query)
        return jsonify({"ok": True, **report.to_dict()})

    @app.get("/api/reservations/dashboard")
    def dashboard() -> Any:
        return jsonify({"ok": True, **scheduler.get_dashboard().to_dict()})

    # batches

    @app.post("/api/reservations/bulk/create")
    def bulk_create() -> Any:
        rows = _json_body().get("reservations")
        if not isinstance(rows, list) or not rows:
            raise ValidationError("reservations", "at least one reservation is required")
        requests = [ReservationRequest.from_dict(_as_mapping(row, "reservations")) for row in rows]
        result = scheduler.create_bulk_reservations(requests)
        return jsonify({"ok": True, **result.to_dict()}), 201 if result.created else 200

    @app.post("/api/reservations/bulk/delete")
    def bulk_delete() -> Any:
        ids = _json_body().get("ids")
        if not isinstance(ids, list):
            raise ValidationError("ids", "ids must be a list")
        if any(not isinstance(value, str) or not value.strip() for value in ids):
            raise ValidationError("ids", "every id must be a non-empty string")
        deleted = scheduler.delete_bulk_reservations(value.strip() for value in ids)
        return jsonify({"ok": True, "deleted_count": deleted})

    @app.post("/api/reservations/recurring/create")
    def recurring_create() -> Any:
        recurring = RecurringReservationRequest.from_dict(_json_body())
        result = scheduler.create_recurring_reservation(recurring)
        return jsonify({"ok": True, **result.to_dict()}), 201 if result.created else 200

    # lookups by related entity

    @app.get("/api/reservations/room/<room_id>")
    def reservations_by_room(room_id: str) -> Any:
        return _reservations_response(scheduler.reservations_by_room(room_id, _arg_bool("include_past", False)))

    @app.get("/api/reservations/teacher/<teacher_id>")
    def reservations_by_teacher(teacher_id: str) -> Any:
        return _reservations_response(scheduler.reservations_by_teacher(teacher_id, _arg_bool("include_past", False)))

    @app.get("/api/reservations/activity/<activity_id>")
    def reservations_by_activity(activity_id: str) -> Any:
        return _reservations_response(
            scheduler.reservations_by_activity(activity_id, _arg_bool("include_past", False))
        )

    # single reservation

    @app.get("/api/reservations/<reservation_id>")
    def get_reservation(reservation_id: str) -> Any:
        return jsonify({"ok": True, "reservation": scheduler.get_reservation(reservation_id).to_dict()})

    @app.put("/api/reservations/<reservation_id>")
    def update_reservation(reservation_id: str) -> Any:
        payload = _json_body()
        updated = scheduler.update_reservation(
            reservation_id,
            room_id=_optional_str(payload.get("room_id")),
            teacher_id=_optional_str(payload.get("teacher_id")),
            activity_id=_optional_str(payload["activity_id"]) if "activity_id" in payload else UNSET,
            start=_parse_datetime(payload["start"], "start") if payload.get("start") else None,
            end=_parse_datetime(payload["end"], "end") if payload.get("end") else None,
            observations=_optional_str(payload["observations"]) if "observations" in payload else UNSET,
        )
        return jsonify({"ok": True, "reservation": updated.to_dict()})

    @app.delete("/api/reservations/<reservation_id>")
    def delete_reservation(reservation_id: str) -> Any:
        deleted = scheduler.delete_reservation(reservation_id)
        return jsonify({"ok": True, "reservation": deleted.to_dict()})

    @app.post("/api/reservations/<reservation_id>/approve")
    def approve_reservation(reservation_id: str) -> Any:
        payload = _json_body()
        updated = scheduler.approve_reservation(
            reservation_id,
            _required(payload, "approver_id"),
            _optional_str(payload.get("observations")),
        )
        return jsonify({"ok": True, "reservation": updated.to_dict()})

    @app.post("/api/reservations/<reservation_id>/reject")
    def reject_reservation(reservation_id: str) -> Any:
        payload = _json_body()
        updated = scheduler.reject_reservation(
            reservation_id,
            _required(payload, "rejecter_id"),
            _optional_str(payload.get("reason")),
        )
        return jsonify({"ok": True, "reservation": updated.to_dict()})

    @app.post("/api/reservations/<reservation_id>/cancel")
    def cancel_reservation(reservation_id: str) -> Any:
        payload = _json_body()
        updated = scheduler.cancel_reservation(
            reservation_id,
            _required(payload, "canceler_id"),
            _optional_str(payload.get("reason")),
        )
        return jsonify({"ok": True, "reservation": updated.to_dict()})

    @app.post("/api/reservations/<reservation_id>/complete")
    def complete_reservation(reservation_id: str) -> Any:
        updated = scheduler.complete_reservation(reservation_id)
        return jsonify({"ok": True, "reservation": updated.to_dict()})

    return app


def _status_for(error: SchedulingError) -> int:
    for error_type in type(error).__mro__:
        if error_type in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[error_type]
    return 400


def _reservations_response(reservations: list[Any]) -> Any:
    return jsonify({"ok": True, "reservations": [reservation.to_dict() for reservation in reservations]})


def _json_body() -> dict[str, Any]:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return _as_mapping(payload, "body")


def _as_mapping(value: Any, field_name: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValidationError(field_name, "expected a JSON object")
    return value


def _required(payload: Mapping[str, Any], key: str) -> str:
    value = _optional_str(payload.get(key))
    if value is None:
        raise ValidationError(key, f"{key} is required")
    return value


def _arg_datetime(name: str) -> datetime | None:
    value = request.args.get(name)
    if not value:
        return None
    return _parse_datetime(value, name)


def _arg_bool(name: str, default: bool) -> bool:
    value = request.args.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _arg_int(name: str, default: int) -> int:
    value = request.args.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValidationError(name, f"{name} must be an integer") from None


if __name__ == "__main__":
    app_config = SchedulerConfig.from_env()
    setup_logging(app_config.log_level)
    app = create_app(config=app_config)
    app.run(host="127.0.0.1", port=5000, debug=False)
