"""Reservation admission policies: a specification tree plus a description"""
from typing import List, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from memberbook.domain.context import RequestContext
from memberbook.domain.eligibility import (
    ActiveMembershipSpecification,
    AdvanceWindowSpecification,
    BookingHorizonSpecification,
    CapacitySpecification,
    OperatingHoursSpecification,
    PrivilegeSpecification,
    SimultaneousReservationSpecification,
    WeekendSpecification,
)
from memberbook.domain.exceptions import ConfigurationError
from memberbook.domain.specifications import Specification, all_of, any_of, negate


class AdmissionDecision(BaseModel):
    """Result of evaluating a policy against one request"""
    allowed: bool
    reasons: Tuple[str, ...] = ()
    policy: str

    model_config = ConfigDict(frozen=True)

    @property
    def reason(self) -> str:
        return "; ".join(self.reasons)


class ReservationPolicy(BaseModel):
    """Admission gate built from a specification tree"""
    specification: Specification
    description: str

    model_config = ConfigDict(frozen=True)

    @field_validator("description")
    @classmethod
    def _check_description(cls, v: str) -> str:
        if not v.strip():
            raise ConfigurationError("Policy description is required")
        return v

    # ==================== PRESETS ====================
    @staticmethod
    def standard() -> "ReservationPolicy":
        return ReservationPolicy(
            specification=all_of(
                ActiveMembershipSpecification.standard(),
                PrivilegeSpecification.standard(),
                CapacitySpecification(),
                BookingHorizonSpecification(),
                SimultaneousReservationSpecification.standard(),
                AdvanceWindowSpecification.standard(),
            ),
            description="Standard reservation policy",
        )

    @staticmethod
    def premium() -> "ReservationPolicy":
        return ReservationPolicy(
            specification=all_of(
                ActiveMembershipSpecification.standard(),
                PrivilegeSpecification.standard(),
                CapacitySpecification(),
                BookingHorizonSpecification(max_days_ahead=730),
            ),
            description="Premium reservation policy (no simultaneous or advance limits)",
        )

    @staticmethod
    def restrictive() -> "ReservationPolicy":
        return ReservationPolicy(
            specification=all_of(
                ActiveMembershipSpecification.standard(),
                PrivilegeSpecification.standard(),
                CapacitySpecification(),
                BookingHorizonSpecification(max_days_ahead=30),
                SimultaneousReservationSpecification.standard(),
                AdvanceWindowSpecification.standard(),
                negate(WeekendSpecification()),
                OperatingHoursSpecification.business_hours(),
            ),
            description="Restrictive reservation policy (weekdays, business hours, 30 days ahead)",
        )

    @staticmethod
    def require_all(specs: Sequence[Specification], description: str = "Custom policy (all rules)") -> "ReservationPolicy":
        return ReservationPolicy(specification=all_of(*specs), description=description)

    @staticmethod
    def require_any(specs: Sequence[Specification], description: str = "Custom policy (any rule)") -> "ReservationPolicy":
        return ReservationPolicy(specification=any_of(*specs), description=description)

    # ==================== EVALUATION ====================
    def can_reserve(self, ctx: RequestContext) -> bool:
        return self.specification.is_satisfied_by(ctx)

    def violations(self, ctx: RequestContext) -> List[str]:
        """Human-readable reasons, empty when the request is admitted"""
        if self.can_reserve(ctx):
            return []
        return self.specification.failure_reasons(ctx)

    def violation_reason(self, ctx: RequestContext) -> str:
        return "; ".join(self.violations(ctx))

    def evaluate(self, ctx: RequestContext) -> AdmissionDecision:
        allowed = self.can_reserve(ctx)
        reasons = [] if allowed else self.specification.failure_reasons(ctx)
        return AdmissionDecision(allowed=allowed, reasons=reasons, policy=self.description)

    def describe(self) -> str:
        return f"{self.description}: {self.specification.describe()}"
