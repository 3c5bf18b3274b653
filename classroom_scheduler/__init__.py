from .catalog import YamlActivityCatalog, YamlPeopleDirectory, YamlRoomCatalog, YamlStateCatalog
from .config import SchedulerConfig
from .conflicts import ConflictDetector
from .errors import (
	ConflictError,
	ConflictKind,
	ImmutableHistoricalRecordError,
	InactiveEntityError,
	InvalidTransitionError,
	NotFoundError,
	OutsideOperatingHoursError,
	ReservationStorageError,
	SchedulingError,
	ValidationError,
)
from .intervals import overlaps
from .models import (
	RecurrenceRule,
	RecurrenceType,
	RecurringReservationRequest,
	Reservation,
	ReservationRequest,
	ReservationState,
	Weekday,
)
from .recurrence import MAX_OCCURRENCES, expand
from .scheduler import ReservationScheduler, build_scheduler
from .state_machine import ReservationStateMachine
from .yaml_store import ReservationYamlRepository

__all__ = [
	"YamlActivityCatalog",
	"YamlPeopleDirectory",
	"YamlRoomCatalog",
	"YamlStateCatalog",
	"SchedulerConfig",
	"ConflictDetector",
	"ConflictError",
	"ConflictKind",
	"ImmutableHistoricalRecordError",
	"InactiveEntityError",
	"InvalidTransitionError",
	"NotFoundError",
	"OutsideOperatingHoursError",
	"ReservationStorageError",
	"SchedulingError",
	"ValidationError",
	"overlaps",
	"RecurrenceRule",
	"RecurrenceType",
	"RecurringReservationRequest",
	"Reservation",
	"ReservationRequest",
	"ReservationState",
	"Weekday",
	"MAX_OCCURRENCES",
	"expand",
	"ReservationScheduler",
	"build_scheduler",
	"ReservationStateMachine",
	"ReservationYamlRepository",
]
