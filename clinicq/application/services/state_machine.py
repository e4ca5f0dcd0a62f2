from typing import Dict, FrozenSet, Union

from ...enums import AppointmentStatus
from ...exceptions import InvalidStatus, InvalidTransition

S = AppointmentStatus

ALLOWED_TRANSITIONS: Dict[AppointmentStatus, FrozenSet[AppointmentStatus]] = {
    S.scheduled: frozenset({S.start, S.completed, S.hold, S.pause, S.cancel, S.no_show}),
    S.start: frozenset({S.completed, S.hold, S.pause, S.cancel}),
    S.hold: frozenset({S.start, S.scheduled, S.cancel, S.no_show}),
    S.pause: frozenset({S.start, S.scheduled, S.cancel}),
    S.completed: frozenset(),
    S.cancel: frozenset(),
    S.no_show: frozenset(),
}


def parse_status(value: Union[str, AppointmentStatus]) -> AppointmentStatus:
    if isinstance(value, AppointmentStatus):
        return value
    try:
        return AppointmentStatus(value)
    except ValueError:
        allowed = ", ".join(s.value for s in AppointmentStatus)
        raise InvalidStatus(f"Invalid status '{value}'. Must be one of: {allowed}")


def can_transition(current: AppointmentStatus, target: AppointmentStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def ensure_transition(current: AppointmentStatus, target: AppointmentStatus) -> None:
    if not can_transition(current, target):
        if current.is_terminal:
            raise InvalidTransition(f"Appointment is already {current.value}")
        raise InvalidTransition(f"Cannot move appointment from {current.value} to {target.value}")
