from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Callable

from .errors import InactiveEntityError, InvalidTransitionError, NotFoundError, ValidationError
from .interfaces import ReservationStateCatalog, TeacherDirectory
from .models import Reservation, ReservationState, StateRecord

TRANSITIONS: dict[ReservationState, frozenset[ReservationState]] = {
    ReservationState.PENDING: frozenset(
        {ReservationState.CONFIRMED, ReservationState.REJECTED, ReservationState.CANCELED}
    ),
    ReservationState.CONFIRMED: frozenset({ReservationState.CANCELED, ReservationState.COMPLETED}),
    ReservationState.REJECTED: frozenset(),
    ReservationState.CANCELED: frozenset(),
    ReservationState.COMPLETED: frozenset(),
}


def allowed_transitions(state: ReservationState) -> frozenset[ReservationState]:
    return TRANSITIONS.get(state, frozenset())


def can_transition(from_state: ReservationState, to_state: ReservationState) -> bool:
    return to_state in allowed_transitions(from_state)


class ReservationStateMachine:
    """Approval lifecycle of a reservation.

    Methods return a new ``Reservation`` in the target state and never touch
    the store; persisting the result is the caller's job. The initial state is
    looked up from the state catalog and cached until ``invalidate_cache`` is
    called or the cached state is deactivated or removed from the catalog.
    """

    def __init__(
        self,
        state_catalog: ReservationStateCatalog,
        people: TeacherDirectory,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.state_catalog = state_catalog
        self.people = people
        self.clock: Callable[[], datetime] = clock or datetime.now
        self._initial_state: StateRecord | None = None

    def get_initial_state(self) -> StateRecord:
        cached = self._initial_state
        if cached is not None:
            current = self.state_catalog.find_by_code(cached.code)
            if current is None or not current.active:
                cached = None
        if cached is None:
            # concurrent first calls may both hit the catalog; the result is the same
            cached = self.state_catalog.get_initial_state()
            self._initial_state = cached
        return cached

    def invalidate_cache(self) -> None:
        self._initial_state = None

    def approve(self, reservation: Reservation, approver_id: str, observations: str | None = None) -> Reservation:
        self._check_transition(reservation, ReservationState.CONFIRMED)
        self._require_active_person(approver_id, "approver")
        return replace(
            reservation,
            state_code=self._target_code(ReservationState.CONFIRMED),
            approved_by=approver_id,
            observations=observations if observations is not None else reservation.observations,
            updated_at=self.clock(),
        )

    def reject(self, reservation: Reservation, rejecter_id: str, reason: str | None) -> Reservation:
        self._check_transition(reservation, ReservationState.REJECTED)
        self._require_active_person(rejecter_id, "rejecter")
        return replace(
            reservation,
            state_code=self._target_code(ReservationState.REJECTED),
            rejected_by=rejecter_id,
            reject_reason=reason,
            updated_at=self.clock(),
        )

    def cancel(self, reservation: Reservation, canceler_id: str, reason: str | None) -> Reservation:
        self._check_transition(reservation, ReservationState.CANCELED)
        self._require_active_person(canceler_id, "canceler")
        return replace(
            reservation,
            state_code=self._target_code(ReservationState.CANCELED),
            canceled_by=canceler_id,
            cancel_reason=reason,
            updated_at=self.clock(),
        )

    def complete(self, reservation: Reservation) -> Reservation:
        self._check_transition(reservation, ReservationState.COMPLETED)
        now = self.clock()
        if now < reservation.end:
            raise ValidationError("end", "not yet finished")
        return replace(
            reservation,
            state_code=self._target_code(ReservationState.COMPLETED),
            updated_at=now,
        )

    def _check_transition(self, reservation: Reservation, target: ReservationState) -> None:
        current = reservation.state
        if not can_transition(current, target):
            raise InvalidTransitionError(current, target)

    def _target_code(self, target: ReservationState) -> str:
        record = self.state_catalog.find_by_code(target.value)
        if record is None:
            raise NotFoundError("reservation state", target.value)
        if not record.active:
            raise InactiveEntityError("reservation state", target.value)
        return record.code

    def _require_active_person(self, person_id: str, role: str) -> None:
        if not person_id:
            raise ValidationError(f"{role}_id", f"{role} is required")
        person = self.people.find_by_id(person_id)
        if person is None:
            raise NotFoundError(role, person_id)
        if not person.active:
            raise InactiveEntityError(role, person_id)
