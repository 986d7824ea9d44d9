"""Read-only snapshots of external records and the per-evaluation contexts built from them"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, FrozenSet, Iterable, Mapping, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from memberbook.domain.clock import Clock
from memberbook.domain.enums import MemberStatus, PlanType, ResourceType
from memberbook.domain.exceptions import ValidationError
from memberbook.domain.value_objects import TemporalRange, TimeWindow

K = TypeVar("K")
V = TypeVar("V")


def freeze_pairs(value: Any) -> Any:
    """Mapping or (key, value) pairs as a key-sorted tuple of pairs"""
    if value is None:
        return None
    try:
        return tuple(sorted(dict(value).items(), key=lambda pair: pair[0]))
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Expected a mapping or (key, value) pairs: {value!r}") from exc


def lookup(pairs: Optional[Tuple[Tuple[K, V], ...]], key: K, default: Optional[V] = None) -> Optional[V]:
    """Value stored under `key` in a tuple of pairs"""
    for candidate, value in pairs or ():
        if candidate == key:
            return value
    return default


class PlanSnapshot(BaseModel):
    """Membership plan as seen by the rule engine"""
    plan_id: str
    name: str
    plan_type: PlanType = PlanType.MONTHLY
    allowed_resource_types: FrozenSet[ResourceType] = frozenset()
    max_simultaneous_reservations: int = 3
    max_advance_days: int = 30
    discount_rate: Decimal = Decimal("0")
    vip: bool = False
    active: bool = True

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_limits(self) -> "PlanSnapshot":
        if not self.plan_id or not self.plan_id.strip():
            raise ValidationError("Plan id is required")
        if self.max_simultaneous_reservations <= 0:
            raise ValidationError("Maximum simultaneous reservations must be positive")
        if self.max_advance_days < 0:
            raise ValidationError("Maximum advance days cannot be negative")
        if not Decimal("0") <= self.discount_rate <= Decimal("1"):
            raise ValidationError(f"Discount rate must be between 0 and 1: {self.discount_rate}")
        return self

    # ==================== PRESETS ====================
    @staticmethod
    def basic_monthly() -> "PlanSnapshot":
        return PlanSnapshot(
            plan_id="BASIC_MONTHLY",
            name="Basic monthly",
            allowed_resource_types=frozenset({ResourceType.GYM, ResourceType.STUDY_ROOM}),
        )

    @staticmethod
    def premium_monthly() -> "PlanSnapshot":
        return PlanSnapshot(
            plan_id="PREMIUM_MONTHLY",
            name="Premium monthly",
            allowed_resource_types=frozenset({
                ResourceType.GYM, ResourceType.POOL, ResourceType.SAUNA,
                ResourceType.STUDY_ROOM, ResourceType.MEETING_ROOM,
            }),
            max_simultaneous_reservations=5,
            max_advance_days=45,
            discount_rate=Decimal("0.1"),
        )

    @staticmethod
    def vip_yearly() -> "PlanSnapshot":
        return PlanSnapshot(
            plan_id="VIP_YEARLY",
            name="VIP yearly",
            plan_type=PlanType.YEARLY,
            allowed_resource_types=frozenset(ResourceType),
            max_simultaneous_reservations=10,
            max_advance_days=90,
            discount_rate=Decimal("0.2"),
            vip=True,
        )

    # ==================== QUERIES ====================
    def has_privilege(self, resource_type: ResourceType) -> bool:
        return resource_type in self.allowed_resource_types

    def has_privileges(self, resource_types: Iterable[ResourceType]) -> bool:
        return set(resource_types) <= self.allowed_resource_types


class MemberSnapshot(BaseModel):
    """Member record as seen by the rule engine"""
    member_id: str
    status: MemberStatus = MemberStatus.ACTIVE
    plan: Optional[PlanSnapshot] = None
    membership_period: Optional[TemporalRange] = None
    suspension_reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @field_validator("member_id")
    @classmethod
    def _check_member_id(cls, v: str) -> str:
        if not v.strip():
            raise ValidationError("Member id is required")
        return v

    def has_active_membership(self, today: date) -> bool:
        return (
            self.status is MemberStatus.ACTIVE
            and self.plan is not None
            and self.plan.active
            and self.membership_period is not None
            and self.membership_period.contains(today)
        )

    def is_membership_expired(self, today: date) -> bool:
        if self.membership_period is None:
            return True
        return self.membership_period.is_past(today)

    def days_since_expiry(self, today: date) -> int:
        if self.membership_period is None or not self.membership_period.is_past(today):
            return 0
        return (today - self.membership_period.end).days

    def remaining_membership_days(self, today: date) -> int:
        if self.membership_period is None or self.membership_period.is_past(today):
            return 0
        return self.membership_period.days_until_end(today)


class ResourceSnapshot(BaseModel):
    """Bookable resource as seen by the rule engine"""
    resource_id: str
    resource_type: ResourceType
    capacity: int
    occupancy: int = 0
    features: FrozenSet[str] = frozenset()
    active: bool = True

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_capacity(self) -> "ResourceSnapshot":
        if self.capacity <= 0:
            raise ValidationError(f"Capacity must be positive: {self.capacity}")
        if self.occupancy < 0:
            raise ValidationError(f"Occupancy cannot be negative: {self.occupancy}")
        return self

    @property
    def remaining_capacity(self) -> int:
        return max(self.capacity - self.occupancy, 0)

    @property
    def occupancy_rate(self) -> Decimal:
        return Decimal(self.occupancy) / Decimal(self.capacity)

    def has_feature(self, feature: str) -> bool:
        return feature in self.features


class RequestContext(BaseModel):
    """Immutable snapshot of one prospective reservation"""
    member: MemberSnapshot
    resource: ResourceSnapshot
    window: TimeWindow
    active_reservation_count: int = 0
    active_reservations_by_type: Optional[Tuple[Tuple[ResourceType, int], ...]] = None
    evaluated_at: datetime

    model_config = ConfigDict(frozen=True)

    @field_validator("active_reservations_by_type", mode="before")
    @classmethod
    def _freeze_counts(cls, v: Any) -> Any:
        return freeze_pairs(v)

    @model_validator(mode="after")
    def _check_counts(self) -> "RequestContext":
        if self.active_reservation_count < 0:
            raise ValidationError("Active reservation count cannot be negative")
        if self.active_reservations_by_type and any(
            count < 0 for _, count in self.active_reservations_by_type
        ):
            raise ValidationError("Per-type reservation counts cannot be negative")
        return self

    @staticmethod
    def create(
        member: MemberSnapshot,
        resource: ResourceSnapshot,
        window: TimeWindow,
        clock: Clock,
        active_reservation_count: int = 0,
        active_reservations_by_type: Optional[Mapping[ResourceType, int]] = None,
    ) -> "RequestContext":
        """Capture "now" from the clock once so every rule sees the same instant"""
        return RequestContext(
            member=member,
            resource=resource,
            window=window,
            active_reservation_count=active_reservation_count,
            active_reservations_by_type=active_reservations_by_type,
            evaluated_at=clock.now(),
        )

    @property
    def today(self) -> date:
        return self.evaluated_at.date()

    @property
    def plan(self) -> Optional[PlanSnapshot]:
        return self.member.plan

    @property
    def requested_date(self) -> date:
        return self.window.day

    @property
    def days_ahead(self) -> int:
        return (self.requested_date - self.today).days

    @property
    def hours_until_start(self) -> float:
        return (self.window.start - self.evaluated_at).total_seconds() / 3600

    def active_count_for(self, resource_type: ResourceType) -> Optional[int]:
        if self.active_reservations_by_type is None:
            return None
        return lookup(self.active_reservations_by_type, resource_type, 0)


class PricingContext(BaseModel):
    """Facts a discount policy may consult"""
    purchase_date: date
    member: Optional[MemberSnapshot] = None
    plan: Optional[PlanSnapshot] = None
    coupon_code: Optional[str] = None
    resource_types: FrozenSet[ResourceType] = frozenset()

    model_config = ConfigDict(frozen=True)

    @property
    def effective_plan(self) -> Optional[PlanSnapshot]:
        if self.plan is not None:
            return self.plan
        return self.member.plan if self.member else None


class CancellationContext(BaseModel):
    """Facts a cancellation policy consults"""
    reservation_start: datetime
    cancelled_at: datetime
    first_time: bool = False

    model_config = ConfigDict(frozen=True)

    @property
    def hours_until_start(self) -> int:
        """Whole hours remaining, truncated toward zero (negative once started)"""
        return int((self.reservation_start - self.cancelled_at).total_seconds() / 3600)

    @property
    def is_after_start(self) -> bool:
        return self.cancelled_at >= self.reservation_start

    @property
    def is_same_day(self) -> bool:
        return self.cancelled_at.date() == self.reservation_start.date()
