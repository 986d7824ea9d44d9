"""Domain Enums"""
from enum import Enum
from typing import Dict, FrozenSet


class ReservationStatus(str, Enum):
    REQUESTED = "REQUESTED"
    CONFIRMED = "CONFIRMED"
    IN_USE = "IN_USE"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def display_name(self) -> str:
        return _STATUS_DISPLAY_NAMES[self]

    def is_active(self) -> bool:
        """Confirmed or currently in use"""
        return self in (ReservationStatus.CONFIRMED, ReservationStatus.IN_USE)

    def is_final(self) -> bool:
        """No transition leaves this state"""
        return not _TRANSITIONS[self]

    def is_cancellable(self) -> bool:
        return ReservationStatus.CANCELLED in _TRANSITIONS[self]

    def allowed_targets(self) -> FrozenSet["ReservationStatus"]:
        return _TRANSITIONS[self]

    def can_transition_to(self, target: "ReservationStatus") -> bool:
        return target in _TRANSITIONS[self]


# Every member must have an entry; a new state without one fails at import.
_TRANSITIONS: Dict[ReservationStatus, FrozenSet[ReservationStatus]] = {
    ReservationStatus.REQUESTED: frozenset({ReservationStatus.CONFIRMED, ReservationStatus.CANCELLED}),
    ReservationStatus.CONFIRMED: frozenset({ReservationStatus.IN_USE, ReservationStatus.CANCELLED}),
    ReservationStatus.IN_USE: frozenset({ReservationStatus.COMPLETED, ReservationStatus.CANCELLED}),
    ReservationStatus.COMPLETED: frozenset(),
    ReservationStatus.CANCELLED: frozenset(),
}

_STATUS_DISPLAY_NAMES: Dict[ReservationStatus, str] = {
    ReservationStatus.REQUESTED: "Requested",
    ReservationStatus.CONFIRMED: "Confirmed",
    ReservationStatus.IN_USE: "In use",
    ReservationStatus.COMPLETED: "Completed",
    ReservationStatus.CANCELLED: "Cancelled",
}

_missing = set(ReservationStatus) - set(_TRANSITIONS)
if _missing:
    raise RuntimeError(f"Transition table missing states: {sorted(s.value for s in _missing)}")


class MemberStatus(str, Enum):
    ACTIVE = "ACTIVE"
    SUSPENDED = "SUSPENDED"
    WITHDRAWN = "WITHDRAWN"

    def can_reserve(self) -> bool:
        return self is MemberStatus.ACTIVE


class ResourceType(str, Enum):
    GYM = "GYM"
    POOL = "POOL"
    SAUNA = "SAUNA"
    STUDY_ROOM = "STUDY_ROOM"
    MEETING_ROOM = "MEETING_ROOM"
    OFFICE_DESK = "OFFICE_DESK"
    TENNIS_COURT = "TENNIS_COURT"
    BADMINTON_COURT = "BADMINTON_COURT"
    BASKETBALL_COURT = "BASKETBALL_COURT"
    CLASS_ROOM = "CLASS_ROOM"
    SEMINAR_ROOM = "SEMINAR_ROOM"
    PARKING_SPACE = "PARKING_SPACE"

    def is_fitness(self) -> bool:
        return self in (ResourceType.GYM, ResourceType.POOL, ResourceType.SAUNA)

    def is_workspace(self) -> bool:
        return self in (ResourceType.STUDY_ROOM, ResourceType.MEETING_ROOM, ResourceType.OFFICE_DESK)

    def is_sports(self) -> bool:
        return self in (
            ResourceType.TENNIS_COURT,
            ResourceType.BADMINTON_COURT,
            ResourceType.BASKETBALL_COURT,
        )

    def is_education(self) -> bool:
        return self in (ResourceType.CLASS_ROOM, ResourceType.SEMINAR_ROOM)


class PlanType(str, Enum):
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    PERIOD = "PERIOD"

    @property
    def default_duration_days(self) -> int:
        return {PlanType.MONTHLY: 30, PlanType.YEARLY: 365, PlanType.PERIOD: 0}[self]


class CombinationStrategy(str, Enum):
    SEQUENTIAL = "SEQUENTIAL"
    BEST_OUTCOME = "BEST_OUTCOME"
    PRIORITY_FIRST = "PRIORITY_FIRST"
