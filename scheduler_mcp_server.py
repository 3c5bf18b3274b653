from __future__ import annotations

from typing import Any

from mcp.server.fastmcp import FastMCP

from classroom_scheduler import ReservationRequest, SchedulerConfig, SchedulingError, build_scheduler
from classroom_scheduler.logger import setup_logging
from classroom_scheduler.models import _parse_datetime

mcp = FastMCP(
    "Classroom Scheduler MCP Server",
    instructions="Expose room reservations, availability checks and booking from the classroom_scheduler project.",
    json_response=True,
)

CONFIG = SchedulerConfig.from_env()
SCHEDULER = build_scheduler(CONFIG)


@mcp.resource("scheduler://rooms")
async def list_rooms() -> list[dict[str, Any]]:
    """List rooms known to the room catalog."""
    return [room.to_dict() for room in SCHEDULER.rooms.all()]


@mcp.tool()
def list_upcoming_reservations(limit: int = 10) -> list[dict[str, Any]]:
    """Return the next active reservations, earliest first."""
    return [reservation.to_dict() for reservation in SCHEDULER.get_upcoming_reservations(limit)]


@mcp.tool()
def check_room_availability(
    room_id: str,
    start_iso: str,
    end_iso: str,
    teacher_id: str | None = None,
) -> dict[str, Any]:
    """Check whether a room (and optionally a teacher) is free for an ISO time range."""
    try:
        report = SCHEDULER.check_availability(
            room_id,
            _parse_datetime(start_iso, "start"),
            _parse_datetime(end_iso, "end"),
            teacher_id=teacher_id,
        )
    except SchedulingError as error:
        return {"ok": False, **error.to_dict()}
    return {"ok": True, **report.to_dict()}


@mcp.tool()
def create_reservation(
    room_id: str,
    teacher_id: str,
    start_iso: str,
    end_iso: str,
    activity_id: str | None = None,
    observations: str | None = None,
) -> dict[str, Any]:
    """Create a reservation using ISO timestamps."""
    try:
        request = ReservationRequest(
            room_id=room_id,
            teacher_id=teacher_id,
            start=_parse_datetime(start_iso, "start"),
            end=_parse_datetime(end_iso, "end"),
            activity_id=activity_id,
            observations=observations,
        )
        created = SCHEDULER.create_reservation(request)
    except SchedulingError as error:
        return {"ok": False, **error.to_dict()}
    return {"ok": True, "reservation": created.to_dict()}


def main() -> None:
    setup_logging(CONFIG.log_level)
    mcp.run()


if __name__ == "__main__":
    main()
