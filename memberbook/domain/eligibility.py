"""Leaf admission rules"""
from datetime import time, timedelta
from decimal import Decimal
from typing import Any, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from memberbook.domain.context import RequestContext, freeze_pairs, lookup
from memberbook.domain.enums import MemberStatus, ResourceType
from memberbook.domain.exceptions import ConfigurationError
from memberbook.domain.specifications import Specification


def _whole_hours(ctx: RequestContext) -> int:
    return int((ctx.window.start - ctx.evaluated_at).total_seconds() / 3600)


TypeLimits = Tuple[Tuple[ResourceType, int], ...]


def _check_limits(limits: Optional[TypeLimits], what: str) -> None:
    for resource_type, limit in limits or ():
        if limit < 0:
            raise ConfigurationError(f"{what} for {resource_type.value} cannot be negative: {limit}")


# ==================== MEMBERSHIP ====================
class ActiveMembershipSpecification(Specification):
    """Member is active and the membership period covers today"""
    check_membership_validity: bool = True
    allow_suspended: bool = False

    @staticmethod
    def standard() -> "ActiveMembershipSpecification":
        return ActiveMembershipSpecification()

    @staticmethod
    def status_only() -> "ActiveMembershipSpecification":
        return ActiveMembershipSpecification(check_membership_validity=False)

    @staticmethod
    def lenient() -> "ActiveMembershipSpecification":
        return ActiveMembershipSpecification(allow_suspended=True)

    def _status_ok(self, status: MemberStatus) -> bool:
        if status is MemberStatus.ACTIVE:
            return True
        return self.allow_suspended and status is MemberStatus.SUSPENDED

    def _membership_valid(self, ctx: RequestContext) -> bool:
        member = ctx.member
        return (
            member.plan is not None
            and member.plan.active
            and member.membership_period is not None
            and member.membership_period.contains(ctx.today)
        )

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        if not self._status_ok(ctx.member.status):
            return False
        if self.check_membership_validity and not self._membership_valid(ctx):
            return False
        return True

    def describe(self) -> str:
        desc = "active member"
        if self.check_membership_validity:
            desc += " with a valid membership"
        if self.allow_suspended:
            desc += " (suspended allowed)"
        return desc

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        member = ctx.member
        if not self._status_ok(member.status):
            if member.status is MemberStatus.SUSPENDED:
                suffix = f": {member.suspension_reason}" if member.suspension_reason else ""
                return f"Member {member.member_id} is suspended{suffix}"
            return f"Member {member.member_id} is {member.status.value.lower()}"
        if self.check_membership_validity and not self._membership_valid(ctx):
            if member.plan is None:
                return f"Member {member.member_id} has no membership plan"
            if not member.plan.active:
                return f"Membership plan {member.plan.plan_id} is no longer offered"
            if member.membership_period is None:
                return f"Member {member.member_id} has no membership period"
            return f"Membership period {member.membership_period} does not cover {ctx.today}"
        return None


class PrivilegeSpecification(Specification):
    """Member's plan grants the resource type (optionally a required set of types)"""
    check_date_validity: bool = True
    grace_period_days: int = 0
    required_types: Optional[FrozenSet[ResourceType]] = None

    @field_validator("grace_period_days")
    @classmethod
    def _check_grace(cls, v: int) -> int:
        if v < 0:
            raise ConfigurationError(f"Grace period cannot be negative: {v}")
        return v

    @staticmethod
    def standard() -> "PrivilegeSpecification":
        return PrivilegeSpecification()

    @staticmethod
    def with_grace_period(days: int = 7) -> "PrivilegeSpecification":
        return PrivilegeSpecification(grace_period_days=days)

    @staticmethod
    def privilege_only() -> "PrivilegeSpecification":
        return PrivilegeSpecification(check_date_validity=False)

    @staticmethod
    def for_resources(*resource_types: ResourceType) -> "PrivilegeSpecification":
        return PrivilegeSpecification(required_types=frozenset(resource_types))

    def _types_to_check(self, ctx: RequestContext) -> FrozenSet[ResourceType]:
        if self.required_types:
            return self.required_types
        return frozenset({ctx.resource.resource_type})

    def _within_grace(self, ctx: RequestContext) -> bool:
        member = ctx.member
        return (
            self.grace_period_days > 0
            and member.is_membership_expired(ctx.today)
            and member.days_since_expiry(ctx.today) <= self.grace_period_days
        )

    def _dates_ok(self, ctx: RequestContext) -> bool:
        member = ctx.member
        covered = (
            member.has_active_membership(ctx.today)
            and member.membership_period.contains(ctx.requested_date)
        )
        return covered or self._within_grace(ctx)

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        plan = ctx.plan
        if plan is None or not plan.active:
            return False
        if not plan.has_privileges(self._types_to_check(ctx)):
            return False
        if self.check_date_validity:
            return self._dates_ok(ctx)
        return True

    def describe(self) -> str:
        if self.required_types:
            types = ", ".join(sorted(t.value for t in self.required_types))
            desc = f"plan grants {types}"
        else:
            desc = "plan grants the resource type"
        if self.check_date_validity:
            desc += " on the requested date"
        if self.grace_period_days:
            desc += f" (grace {self.grace_period_days} days)"
        return desc

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        plan = ctx.plan
        if plan is None:
            return f"Member {ctx.member.member_id} has no membership plan"
        if not plan.active:
            return f"Membership plan {plan.plan_id} is no longer offered"
        missing = self._types_to_check(ctx) - plan.allowed_resource_types
        if missing:
            names = ", ".join(sorted(t.value for t in missing))
            return f"Plan {plan.plan_id} does not include {names}"
        if self.check_date_validity and not self._dates_ok(ctx):
            return f"Membership does not cover the requested date {ctx.requested_date}"
        return None


# ==================== RESOURCE ====================
class CapacitySpecification(Specification):
    """Resource can take one more booking within the occupancy cap and buffer"""
    max_occupancy_rate: Decimal = Decimal("1")
    minimum_available: int = 1
    allow_full: bool = True

    @model_validator(mode="after")
    def _check_config(self) -> "CapacitySpecification":
        if not Decimal("0") < self.max_occupancy_rate <= Decimal("1"):
            raise ConfigurationError(
                f"Maximum occupancy rate must be in (0, 1]: {self.max_occupancy_rate}"
            )
        if self.minimum_available < 0:
            raise ConfigurationError(
                f"Minimum available slots cannot be negative: {self.minimum_available}"
            )
        return self

    def _violation(self, ctx: RequestContext) -> Optional[str]:
        resource = ctx.resource
        projected = resource.occupancy + 1
        if not resource.active:
            return f"Resource {resource.resource_id} is not accepting reservations"
        if projected > resource.capacity:
            return f"Resource {resource.resource_id} is full ({resource.occupancy}/{resource.capacity})"
        if not self.allow_full and projected >= resource.capacity:
            return f"Resource {resource.resource_id} may not be booked to full capacity"
        cap = Decimal(resource.capacity) * self.max_occupancy_rate
        if Decimal(projected) > cap:
            return (
                f"Booking would raise occupancy of {resource.resource_id} to "
                f"{projected}/{resource.capacity}, above the {self.max_occupancy_rate * 100:.0f}% cap"
            )
        if resource.remaining_capacity < self.minimum_available:
            return (
                f"Resource {resource.resource_id} has {resource.remaining_capacity} slots left, "
                f"{self.minimum_available} required"
            )
        return None

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        return self._violation(ctx) is None

    def describe(self) -> str:
        desc = f"capacity available (max occupancy {self.max_occupancy_rate * 100:.0f}%"
        if self.minimum_available:
            desc += f", at least {self.minimum_available} free"
        if not self.allow_full:
            desc += ", never full"
        return desc + ")"

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        return self._violation(ctx)


# ==================== TIMING ====================
class AdvanceWindowSpecification(Specification):
    """Requested date lies within the allowed advance-booking window"""
    use_plan_limit: bool = True
    type_limits: Optional[TypeLimits] = None
    vip_bonus_days: int = 0
    allow_same_day: bool = True
    minimum_lead_hours: int = 2

    @field_validator("type_limits", mode="before")
    @classmethod
    def _freeze_limits(cls, v: Any) -> Any:
        return freeze_pairs(v)

    @model_validator(mode="after")
    def _check_config(self) -> "AdvanceWindowSpecification":
        if self.vip_bonus_days < 0:
            raise ConfigurationError(f"VIP bonus days cannot be negative: {self.vip_bonus_days}")
        if self.minimum_lead_hours < 0:
            raise ConfigurationError(f"Minimum lead hours cannot be negative: {self.minimum_lead_hours}")
        _check_limits(self.type_limits, "Advance limit")
        return self

    @staticmethod
    def standard() -> "AdvanceWindowSpecification":
        return AdvanceWindowSpecification()

    @staticmethod
    def with_vip_bonus(bonus_days: int = 7) -> "AdvanceWindowSpecification":
        return AdvanceWindowSpecification(vip_bonus_days=bonus_days, minimum_lead_hours=1)

    @staticmethod
    def strict() -> "AdvanceWindowSpecification":
        return AdvanceWindowSpecification(allow_same_day=False, minimum_lead_hours=24)

    @staticmethod
    def popular_facilities() -> "AdvanceWindowSpecification":
        return AdvanceWindowSpecification(
            use_plan_limit=False,
            type_limits={ResourceType.GYM: 3, ResourceType.POOL: 7, ResourceType.SAUNA: 1},
            vip_bonus_days=3,
            minimum_lead_hours=4,
        )

    def effective_advance_days(self, ctx: RequestContext) -> int:
        plan = ctx.plan
        if plan is None:
            return 0
        bonus = self.vip_bonus_days if plan.vip else 0
        return plan.max_advance_days + bonus

    def limit_for(self, resource_type: ResourceType) -> Optional[int]:
        """Advance-day limit configured for the resource type, if any"""
        return lookup(self.type_limits, resource_type)

    def _type_limit(self, ctx: RequestContext) -> Optional[int]:
        return self.limit_for(ctx.resource.resource_type)

    def earliest_date(self, ctx: RequestContext):
        """First date that satisfies the lead-time and same-day rules"""
        earliest = (ctx.evaluated_at + timedelta(hours=self.minimum_lead_hours)).date()
        if not self.allow_same_day and earliest <= ctx.today:
            earliest = ctx.today + timedelta(days=1)
        return earliest

    def latest_date(self, ctx: RequestContext):
        limits = []
        if self.use_plan_limit:
            limits.append(self.effective_advance_days(ctx))
        type_limit = self._type_limit(ctx)
        if type_limit is not None:
            limits.append(type_limit)
        if not limits:
            return None
        return ctx.today + timedelta(days=min(limits))

    def _violation(self, ctx: RequestContext) -> Optional[str]:
        if self.use_plan_limit and ctx.plan is None:
            return f"Member {ctx.member.member_id} has no membership plan"
        hours = _whole_hours(ctx)
        if self.minimum_lead_hours > 0 and hours < self.minimum_lead_hours:
            return (
                f"Reservations must be made at least {self.minimum_lead_hours} hours ahead "
                f"(requested {hours} hours ahead)"
            )
        if not self.allow_same_day and ctx.requested_date == ctx.today:
            return "Same-day reservations are not allowed"
        if self.use_plan_limit:
            max_days = self.effective_advance_days(ctx)
            if ctx.days_ahead > max_days:
                return (
                    f"Requested date is {ctx.days_ahead} days ahead, "
                    f"plan allows at most {max_days}"
                )
        type_limit = self._type_limit(ctx)
        if type_limit is not None and ctx.days_ahead > type_limit:
            return (
                f"{ctx.resource.resource_type.value} can be booked at most {type_limit} days ahead "
                f"(requested {ctx.days_ahead})"
            )
        return None

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        return self._violation(ctx) is None

    def describe(self) -> str:
        parts = ["advance booking window"]
        if self.use_plan_limit:
            parts.append("plan limit")
        if self.type_limits:
            parts.append("per-type limits")
        if not self.allow_same_day:
            parts.append("no same-day")
        if self.minimum_lead_hours:
            parts.append(f"at least {self.minimum_lead_hours}h ahead")
        if self.vip_bonus_days:
            parts.append(f"VIP +{self.vip_bonus_days} days")
        if len(parts) == 1:
            return parts[0]
        return f"{parts[0]} (" + ", ".join(parts[1:]) + ")"

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        return self._violation(ctx)


class BookingHorizonSpecification(Specification):
    """Window starts in the future and no further ahead than the horizon"""
    max_days_ahead: int = 365

    @field_validator("max_days_ahead")
    @classmethod
    def _check_days(cls, v: int) -> int:
        if v <= 0:
            raise ConfigurationError(f"Booking horizon must be positive: {v}")
        return v

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        start = ctx.window.start
        return ctx.evaluated_at < start < ctx.evaluated_at + timedelta(days=self.max_days_ahead)

    def describe(self) -> str:
        return f"starts within the next {self.max_days_ahead} days"

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        if ctx.window.start <= ctx.evaluated_at:
            return "Requested time has already passed"
        if not self.is_satisfied_by(ctx):
            return f"Requested time is more than {self.max_days_ahead} days ahead"
        return None


class WeekendSpecification(Specification):
    """Window falls on a Saturday or Sunday"""

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        return ctx.window.start.weekday() >= 5

    def describe(self) -> str:
        return "on a weekend"


# ==================== OPERATING HOURS ====================
def _minutes(t: time) -> int:
    return t.hour * 60 + t.minute


class DailyHours(BaseModel):
    """Opening hours for one weekday; closes <= opens means the hours run past midnight"""
    opens: time
    closes: time
    breaks: Tuple[Tuple[time, time], ...] = ()

    model_config = ConfigDict(frozen=True)

    @field_validator("breaks")
    @classmethod
    def _check_breaks(cls, v: Tuple[Tuple[time, time], ...]) -> Tuple[Tuple[time, time], ...]:
        for start, end in v:
            if start >= end:
                raise ConfigurationError(f"Break must start before it ends: {start}-{end}")
        return v

    @property
    def wraps_midnight(self) -> bool:
        return self.closes <= self.opens

    def admits_evening(self, start: int, end: int) -> bool:
        """Window fits the part of the hours that starts on this day"""
        if self.wraps_midnight:
            return start >= _minutes(self.opens)
        return _minutes(self.opens) <= start and end <= _minutes(self.closes)

    def admits_overnight(self, start: int, end: int) -> bool:
        """Window fits the part of the hours that spills into the next day"""
        return self.wraps_midnight and end <= _minutes(self.closes)

    def hits_break(self, start: int, end: int) -> bool:
        return any(start < _minutes(b_end) and end > _minutes(b_start) for b_start, b_end in self.breaks)

    def __str__(self) -> str:
        text = f"{self.opens:%H:%M}-{self.closes:%H:%M}"
        if self.breaks:
            text += " excluding " + ", ".join(f"{s:%H:%M}-{e:%H:%M}" for s, e in self.breaks)
        return text


WEEKDAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")


class OperatingHoursSpecification(Specification):
    """Window lies inside the resource's hours for that weekday and outside every break"""
    schedule: Tuple[Tuple[int, DailyHours], ...]

    @field_validator("schedule", mode="before")
    @classmethod
    def _freeze_schedule(cls, v: Any) -> Any:
        return freeze_pairs(v)

    @field_validator("schedule")
    @classmethod
    def _check_schedule(cls, v: Tuple[Tuple[int, DailyHours], ...]) -> Tuple[Tuple[int, DailyHours], ...]:
        if not v:
            raise ConfigurationError("Operating schedule cannot be empty")
        for weekday, _ in v:
            if not 0 <= weekday <= 6:
                raise ConfigurationError(f"Weekday must be 0 (Monday) to 6 (Sunday): {weekday}")
        return v

    @staticmethod
    def every_day(opens: time, closes: time, breaks=()) -> "OperatingHoursSpecification":
        hours = DailyHours(opens=opens, closes=closes, breaks=tuple(breaks))
        return OperatingHoursSpecification(schedule={day: hours for day in range(7)})

    @staticmethod
    def weekdays_only(opens: time, closes: time, breaks=()) -> "OperatingHoursSpecification":
        hours = DailyHours(opens=opens, closes=closes, breaks=tuple(breaks))
        return OperatingHoursSpecification(schedule={day: hours for day in range(5)})

    @staticmethod
    def business_hours() -> "OperatingHoursSpecification":
        return OperatingHoursSpecification.every_day(time(9), time(18))

    @staticmethod
    def extended_hours() -> "OperatingHoursSpecification":
        return OperatingHoursSpecification.every_day(time(9), time(22))

    def hours_for(self, weekday: int) -> Optional[DailyHours]:
        """Hours for a weekday, 0 (Monday) to 6 (Sunday); None when closed"""
        return lookup(self.schedule, weekday)

    def _matching_hours(self, ctx: RequestContext) -> Optional[DailyHours]:
        window = ctx.window
        start, end = _minutes(window.start.time()), _minutes(window.end.time())
        weekday = window.start.weekday()

        today = self.hours_for(weekday)
        if today is not None and today.admits_evening(start, end):
            return today
        yesterday = self.hours_for((weekday - 1) % 7)
        if yesterday is not None and yesterday.admits_overnight(start, end):
            return yesterday
        return None

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        hours = self._matching_hours(ctx)
        if hours is None:
            return False
        window = ctx.window
        return not hours.hits_break(_minutes(window.start.time()), _minutes(window.end.time()))

    def describe(self) -> str:
        days: List[str] = [
            f"{WEEKDAY_NAMES[day]} {hours}" for day, hours in self.schedule
        ]
        return "within operating hours (" + "; ".join(days) + ")"

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        if self.is_satisfied_by(ctx):
            return None
        if self._matching_hours(ctx) is None:
            return f"{ctx.window} is outside operating hours"
        return f"{ctx.window} overlaps a scheduled break"


# ==================== LOAD ====================
class SimultaneousReservationSpecification(Specification):
    """Member's other active reservations stay under the plan allowance"""
    use_global_limit: bool = True
    type_limits: Optional[TypeLimits] = None
    buffer: int = 0

    @field_validator("type_limits", mode="before")
    @classmethod
    def _freeze_limits(cls, v: Any) -> Any:
        return freeze_pairs(v)

    @model_validator(mode="after")
    def _check_config(self) -> "SimultaneousReservationSpecification":
        if self.buffer < 0:
            raise ConfigurationError(f"Safety buffer cannot be negative: {self.buffer}")
        _check_limits(self.type_limits, "Simultaneous limit")
        return self

    @staticmethod
    def standard() -> "SimultaneousReservationSpecification":
        return SimultaneousReservationSpecification()

    @staticmethod
    def strict() -> "SimultaneousReservationSpecification":
        return SimultaneousReservationSpecification(buffer=1)

    @staticmethod
    def fitness_limited() -> "SimultaneousReservationSpecification":
        return SimultaneousReservationSpecification(
            type_limits={ResourceType.GYM: 1, ResourceType.POOL: 1, ResourceType.SAUNA: 1},
        )

    def limit_for(self, resource_type: ResourceType) -> Optional[int]:
        return lookup(self.type_limits, resource_type)

    def effective_limit(self, ctx: RequestContext) -> int:
        if ctx.plan is None:
            return 0
        return ctx.plan.max_simultaneous_reservations - self.buffer

    def _violation(self, ctx: RequestContext) -> Optional[str]:
        if ctx.plan is None:
            return f"Member {ctx.member.member_id} has no membership plan"
        if self.use_global_limit:
            limit = self.effective_limit(ctx)
            if ctx.active_reservation_count >= limit:
                return (
                    f"Member already holds {ctx.active_reservation_count} active reservations "
                    f"(limit {limit})"
                )
        if self.type_limits:
            resource_type = ctx.resource.resource_type
            type_limit = self.limit_for(resource_type)
            # Without a per-type breakdown from the caller only the global limit applies.
            type_count = ctx.active_count_for(resource_type)
            if type_limit is not None and type_count is not None and type_count >= type_limit:
                return (
                    f"Member already holds {type_count} active {resource_type.value} "
                    f"reservations (limit {type_limit})"
                )
        return None

    def is_satisfied_by(self, ctx: RequestContext) -> bool:
        return self._violation(ctx) is None

    def describe(self) -> str:
        parts = []
        if self.use_global_limit:
            parts.append("plan limit" + (f" minus {self.buffer}" if self.buffer else ""))
        if self.type_limits:
            parts.append("per-type limits")
        return "simultaneous reservations under " + " and ".join(parts or ["no limit"])

    def failure_reason(self, ctx: RequestContext) -> Optional[str]:
        return self._violation(ctx)
