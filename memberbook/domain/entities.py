"""Domain Entities - Aggregates"""
from datetime import datetime, timedelta
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from memberbook.domain.clock import Clock
from memberbook.domain.enums import ReservationStatus
from memberbook.domain.exceptions import IllegalTransitionError, ValidationError
from memberbook.domain.value_objects import StatusChange, TimeWindow
from memberbook.utils.config import get_settings
from memberbook.utils.logger import get_logger

logger = get_logger(__name__)

# Milestone attribute written when a transition lands in each state.
_MILESTONES: Dict[ReservationStatus, str] = {
    ReservationStatus.CONFIRMED: "_confirmed_at",
    ReservationStatus.IN_USE: "_started_at",
    ReservationStatus.COMPLETED: "_completed_at",
    ReservationStatus.CANCELLED: "_cancelled_at",
}


class Reservation(BaseModel):
    """Reservation Aggregate Root Entity

    Identity fields are frozen; status, milestones and history change only
    through the transition methods, each of which holds the instance lock.

    Instances come from :meth:`create`. Direct construction or validation
    without a ``clock`` in the validation context is rejected, so every
    reservation has passed the start-time and horizon checks.
    """

    # Identity
    reservation_id: str = Field(default_factory=lambda: str(uuid4()))

    # References to other contexts
    member_id: str
    resource_id: str

    # Value Objects
    window: TimeWindow

    # Metadata
    created_at: datetime

    model_config = ConfigDict(frozen=True)

    _status: ReservationStatus = PrivateAttr(default=ReservationStatus.REQUESTED)
    _history: List[StatusChange] = PrivateAttr(default_factory=list)
    _confirmed_at: Optional[datetime] = PrivateAttr(default=None)
    _started_at: Optional[datetime] = PrivateAttr(default=None)
    _completed_at: Optional[datetime] = PrivateAttr(default=None)
    _cancelled_at: Optional[datetime] = PrivateAttr(default=None)
    _cancellation_reason: Optional[str] = PrivateAttr(default=None)
    _notes: List[str] = PrivateAttr(default_factory=list)
    _clock: Clock = PrivateAttr()
    _lock: Any = PrivateAttr(default_factory=RLock)

    def model_post_init(self, context: Any) -> None:
        clock = context.get("clock") if isinstance(context, dict) else None
        if clock is None:
            raise ValidationError("Reservations must be created with Reservation.create")
        self._validate_reference(self.member_id, "Member id")
        self._validate_reference(self.resource_id, "Resource id")
        horizon = context.get("max_horizon_days")
        if horizon is None:
            horizon = get_settings().reservation_horizon_days
        self._validate_window(self.window, self.created_at, horizon)

        self._clock = clock
        self._history.append(
            StatusChange(
                from_status=None,
                to_status=ReservationStatus.REQUESTED,
                changed_at=self.created_at,
                reason="created",
            )
        )

    # ==================== FACTORY METHOD ====================
    @staticmethod
    def create(
        member_id: str,
        resource_id: str,
        window: TimeWindow,
        clock: Clock,
        reservation_id: Optional[str] = None,
        max_horizon_days: Optional[int] = None,
    ) -> "Reservation":
        """Create new reservation with validation"""
        Reservation._validate_reference(member_id, "Member id")
        Reservation._validate_reference(resource_id, "Resource id")
        if window is None:
            raise ValidationError("Reservation window is required")

        reservation = Reservation.model_validate(
            {
                "reservation_id": reservation_id or str(uuid4()),
                "member_id": member_id,
                "resource_id": resource_id,
                "window": window,
                "created_at": clock.now(),
            },
            context={"clock": clock, "max_horizon_days": max_horizon_days},
        )
        logger.debug("Reservation %s requested for %s", reservation.reservation_id, window)
        return reservation

    # ==================== STATE TRANSITION METHODS ====================
    def confirm(self) -> None:
        """Accept the request"""
        self._transition(ReservationStatus.CONFIRMED, "confirmed")

    def start_using(self) -> None:
        """Member has arrived and the slot is in use"""
        self._transition(ReservationStatus.IN_USE, "in use")

    def complete(self) -> None:
        self._transition(ReservationStatus.COMPLETED, "completed")

    def cancel(self, reason: str) -> None:
        """Cancel with a non-blank reason; nothing changes if either check fails"""
        with self._lock:
            if not self._status.is_cancellable():
                raise IllegalTransitionError(self._status, ReservationStatus.CANCELLED)
            if reason is None or not str(reason).strip():
                raise ValidationError("Cancellation reason is required")
            reason = str(reason).strip()
            self._transition(ReservationStatus.CANCELLED, reason)
            self._cancellation_reason = reason

    def auto_cancel(self, system_reason: str) -> None:
        """Cancellation issued by the system rather than the member"""
        if system_reason is None or not str(system_reason).strip():
            raise ValidationError("System cancellation reason is required")
        self.cancel(f"system cancellation: {str(system_reason).strip()}")

    def add_notes(self, text: str) -> None:
        if text is None or not str(text).strip():
            raise ValidationError("Notes cannot be blank")
        with self._lock:
            self._notes.append(str(text).strip())

    def _transition(self, target: ReservationStatus, reason: str) -> None:
        with self._lock:
            current = self._status
            if not current.can_transition_to(target):
                raise IllegalTransitionError(current, target)

            now = self._clock.now()
            change = StatusChange(from_status=current, to_status=target, changed_at=now, reason=reason)

            setattr(self, _MILESTONES[target], now)
            self._status = target
            self._history.append(change)

        logger.debug(
            "Reservation %s: %s -> %s (%s)", self.reservation_id, current.value, target.value, reason
        )

    # ==================== STATE ACCESSORS ====================
    @property
    def status(self) -> ReservationStatus:
        return self._status

    @property
    def confirmed_at(self) -> Optional[datetime]:
        return self._confirmed_at

    @property
    def started_at(self) -> Optional[datetime]:
        return self._started_at

    @property
    def completed_at(self) -> Optional[datetime]:
        return self._completed_at

    @property
    def cancelled_at(self) -> Optional[datetime]:
        return self._cancelled_at

    @property
    def cancellation_reason(self) -> Optional[str]:
        return self._cancellation_reason

    @property
    def history(self) -> Tuple[StatusChange, ...]:
        """Copy of the status history, oldest first"""
        with self._lock:
            return tuple(self._history)

    @property
    def notes(self) -> Tuple[str, ...]:
        with self._lock:
            return tuple(self._notes)

    @property
    def clock(self) -> Clock:
        return self._clock

    # ==================== QUERY METHODS ====================
    def is_active(self) -> bool:
        return self._status.is_active()

    def is_final(self) -> bool:
        return self._status.is_final()

    def is_cancellable(self) -> bool:
        return self._status.is_cancellable()

    def conflicts_with(self, other: "Reservation") -> bool:
        """Same resource and overlapping windows (touching windows do not conflict)"""
        return self.resource_id == other.resource_id and self.window.overlaps(other.window)

    def conflicts_with_window(self, window: TimeWindow) -> bool:
        return self.window.overlaps(window)

    def is_no_show(self) -> bool:
        """Confirmed but the start time has already passed"""
        return self._status is ReservationStatus.CONFIRMED and self._clock.now() > self.window.start

    def minutes_until_start(self) -> int:
        remaining = self.window.start - self._clock.now()
        if remaining <= timedelta(0):
            return 0
        return int(remaining.total_seconds() // 60)

    def is_modifiable(self, lead_minutes: Optional[int] = None) -> bool:
        """Not final and more than the lead time remains before start"""
        if lead_minutes is None:
            lead_minutes = get_settings().modification_lead_minutes
        return not self.is_final() and self.minutes_until_start() > lead_minutes

    @property
    def duration_minutes(self) -> int:
        return self.window.duration_minutes

    def latest_status_change(self) -> StatusChange:
        with self._lock:
            return self._history[-1]

    def summary(self) -> str:
        text = (
            f"Reservation {self.reservation_id} [{self._status.display_name}] "
            f"member={self.member_id} resource={self.resource_id} window={self.window}"
        )
        if self._cancellation_reason:
            text += f" reason={self._cancellation_reason}"
        return text

    # ==================== COPYING ====================
    def __copy__(self) -> "Reservation":
        """Independent reservation with its own history, notes and lock"""
        with self._lock:
            duplicate = super().__copy__()
            duplicate._history = list(self._history)
            duplicate._notes = list(self._notes)
        duplicate._lock = RLock()
        return duplicate

    def __deepcopy__(self, memo: Optional[Dict[int, Any]] = None) -> "Reservation":
        # Fields are immutable and the clock is shared between copies.
        return self.__copy__()

    # ==================== IDENTITY ====================
    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Reservation):
            return NotImplemented
        return self.reservation_id == other.reservation_id

    def __hash__(self) -> int:
        return hash(self.reservation_id)

    # ==================== VALIDATION HELPERS ====================
    @staticmethod
    def _validate_reference(value: Optional[str], label: str) -> None:
        if value is None or not str(value).strip():
            raise ValidationError(f"{label} is required")

    @staticmethod
    def _validate_window(window: TimeWindow, now: datetime, horizon_days: int) -> None:
        if window.start < now:
            raise ValidationError(f"Reservation start {window.start} has already passed")
        if window.start > now + timedelta(days=horizon_days):
            raise ValidationError(
                f"Reservation start {window.start} is beyond maximum horizon of {horizon_days} days"
            )
