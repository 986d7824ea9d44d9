"""Cancellation fee policies.

A policy maps (price, CancellationContext) to the fee the member forfeits;
the refund is whatever is left of the price. Tiered policies are driven
entirely by :class:`FeeTier` configuration: each tier covers a half-open
range of whole hours before the reservation starts, ``[min_hours,
max_hours)``, and the tiers of one schedule must cover ``[0, inf)`` without
gaps or overlaps.

When a policy refuses the cancellation, the fee is the full price.
"""
import sys
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from memberbook.domain.context import CancellationContext
from memberbook.domain.enums import CombinationStrategy
from memberbook.domain.exceptions import ConfigurationError
from memberbook.domain.value_objects import Money

DEFAULT_PRIORITY = 100


class CancellationQuote(BaseModel):
    """Outcome of evaluating a cancellation policy"""
    fee: Money
    refund: Money
    rule: str
    hours_until_start: int
    allowed: bool

    model_config = ConfigDict(frozen=True)

    @property
    def fee_rate(self) -> Decimal:
        total = self.fee.amount + self.refund.amount
        if total == 0:
            return Decimal("0")
        return (self.fee.amount / total).quantize(Decimal("0.01"))


class FeeTier(BaseModel):
    """Fee rule for cancellations made between min_hours and max_hours before start"""
    min_hours: int
    max_hours: Optional[int] = None
    rate: Decimal = Decimal("0")
    fixed_fee: Optional[Money] = None
    maximum_fee: Optional[Money] = None
    description: str

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_tier(self) -> "FeeTier":
        if self.min_hours < 0:
            raise ConfigurationError(f"Tier lower bound cannot be negative: {self.min_hours}")
        if self.max_hours is not None and self.max_hours <= self.min_hours:
            raise ConfigurationError(
                f"Tier upper bound must exceed lower bound: {self.min_hours}-{self.max_hours}"
            )
        if not Decimal("0") <= self.rate <= Decimal("1"):
            raise ConfigurationError(f"Fee rate must be between 0 and 1: {self.rate}")
        return self

    @staticmethod
    def rate_only(min_hours: int, max_hours: Optional[int], rate: str, description: str) -> "FeeTier":
        return FeeTier(min_hours=min_hours, max_hours=max_hours, rate=Decimal(rate), description=description)

    def applies(self, hours: int) -> bool:
        return hours >= self.min_hours and (self.max_hours is None or hours < self.max_hours)

    def fee_for(self, price: Money) -> Money:
        fee = price.multiply(self.rate)
        if self.fixed_fee is not None:
            fee = fee + self.fixed_fee
        if self.maximum_fee is not None and fee > self.maximum_fee:
            fee = self.maximum_fee
        return price.min(fee)


def _check_schedule(tiers: Tuple[FeeTier, ...], label: str) -> Tuple[FeeTier, ...]:
    if not tiers:
        raise ConfigurationError(f"{label} requires at least one fee tier")
    ordered = sorted(tiers, key=lambda tier: tier.min_hours)
    if ordered[0].min_hours != 0:
        raise ConfigurationError(f"{label} must start at 0 hours")
    for current, following in zip(ordered, ordered[1:]):
        if current.max_hours != following.min_hours:
            raise ConfigurationError(
                f"{label} has a gap or overlap between {current.description!r} "
                f"and {following.description!r}"
            )
    if ordered[-1].max_hours is not None:
        raise ConfigurationError(f"{label} must end with an open-ended tier")
    return tuple(ordered)


class CancellationPolicy(BaseModel, ABC):
    """Strategy deciding whether a cancellation is allowed and what it costs"""

    model_config = ConfigDict(frozen=True)

    @abstractmethod
    def calculate_fee(self, price: Money, ctx: CancellationContext) -> Money:
        pass

    @abstractmethod
    def describe(self) -> str:
        pass

    def is_cancellation_allowed(self, ctx: CancellationContext) -> bool:
        return True

    def denial_reason(self, ctx: CancellationContext) -> Optional[str]:
        return None

    def rule_for(self, ctx: CancellationContext) -> str:
        return self.describe()

    def quote(self, price: Money, ctx: CancellationContext) -> CancellationQuote:
        allowed = self.is_cancellation_allowed(ctx)
        fee = self.calculate_fee(price, ctx)
        rule = self.rule_for(ctx) if allowed else (self.denial_reason(ctx) or self.describe())
        return CancellationQuote(
            fee=fee,
            refund=price - fee,
            rule=rule,
            hours_until_start=ctx.hours_until_start,
            allowed=allowed,
        )


class TieredCancellationPolicy(CancellationPolicy):
    """Fee escalates in configured steps as the start approaches"""
    name: str
    tiers: Tuple[FeeTier, ...]
    first_time_tiers: Optional[Tuple[FeeTier, ...]] = None
    after_start_rate: Decimal = Decimal("1")
    allow_after_start: bool = True
    same_day_min_hours: Optional[int] = None
    priority: int = DEFAULT_PRIORITY

    @field_validator("tiers")
    @classmethod
    def _validate_tiers(cls, v: Tuple[FeeTier, ...]) -> Tuple[FeeTier, ...]:
        return _check_schedule(v, "Fee schedule")

    @field_validator("first_time_tiers")
    @classmethod
    def _validate_first_time(cls, v: Optional[Tuple[FeeTier, ...]]) -> Optional[Tuple[FeeTier, ...]]:
        if v is None:
            return v
        return _check_schedule(v, "First-time fee schedule")

    @field_validator("after_start_rate")
    @classmethod
    def _validate_after_start(cls, v: Decimal) -> Decimal:
        if not Decimal("0") <= v <= Decimal("1"):
            raise ConfigurationError(f"After-start rate must be between 0 and 1: {v}")
        return v

    # ==================== PRESETS ====================
    @staticmethod
    def standard() -> "TieredCancellationPolicy":
        return TieredCancellationPolicy(
            name="standard",
            tiers=(
                FeeTier.rate_only(0, 2, "0.8", "less than 2 hours before start"),
                FeeTier.rate_only(2, 6, "0.5", "2 to 6 hours before start"),
                FeeTier.rate_only(6, 24, "0.2", "6 to 24 hours before start"),
                FeeTier.rate_only(24, None, "0", "24 hours or more before start"),
            ),
        )

    @staticmethod
    def strict() -> "TieredCancellationPolicy":
        return TieredCancellationPolicy(
            name="strict",
            tiers=(
                FeeTier.rate_only(0, 6, "0.9", "less than 6 hours before start"),
                FeeTier.rate_only(6, 24, "0.6", "6 to 24 hours before start"),
                FeeTier.rate_only(24, 48, "0.3", "24 to 48 hours before start"),
                FeeTier.rate_only(48, None, "0", "48 hours or more before start"),
            ),
            allow_after_start=False,
            same_day_min_hours=6,
        )

    @staticmethod
    def flexible() -> "TieredCancellationPolicy":
        return TieredCancellationPolicy(
            name="flexible",
            tiers=(
                FeeTier.rate_only(0, 2, "0.6", "less than 2 hours before start"),
                FeeTier.rate_only(2, 6, "0.3", "2 to 6 hours before start"),
                FeeTier.rate_only(6, 24, "0.1", "6 to 24 hours before start"),
                FeeTier.rate_only(24, None, "0", "24 hours or more before start"),
            ),
            first_time_tiers=(
                FeeTier.rate_only(0, 2, "0.1", "first cancellation, less than 2 hours before start"),
                FeeTier.rate_only(2, None, "0", "first cancellation, 2 hours or more before start"),
            ),
        )

    # ==================== EVALUATION ====================
    def tier_for(self, ctx: CancellationContext) -> Optional[FeeTier]:
        """Matching tier, or None once the reservation has started"""
        if ctx.is_after_start:
            return None
        schedule = self.tiers
        if ctx.first_time and self.first_time_tiers is not None:
            schedule = self.first_time_tiers
        hours = ctx.hours_until_start
        for tier in schedule:
            if tier.applies(hours):
                return tier
        raise ConfigurationError(f"No fee tier covers {hours} hours before start")

    def is_cancellation_allowed(self, ctx: CancellationContext) -> bool:
        return self.denial_reason(ctx) is None

    def denial_reason(self, ctx: CancellationContext) -> Optional[str]:
        if ctx.is_after_start and not self.allow_after_start:
            return "The reservation has already started and can no longer be cancelled"
        if (
            self.same_day_min_hours is not None
            and ctx.is_same_day
            and not ctx.is_after_start
            and ctx.hours_until_start < self.same_day_min_hours
        ):
            return (
                f"Same-day cancellations are only accepted up to "
                f"{self.same_day_min_hours} hours before start"
            )
        return None

    def calculate_fee(self, price: Money, ctx: CancellationContext) -> Money:
        if not self.is_cancellation_allowed(ctx):
            return price
        tier = self.tier_for(ctx)
        if tier is None:
            return price.multiply(self.after_start_rate)
        return tier.fee_for(price)

    def rule_for(self, ctx: CancellationContext) -> str:
        tier = self.tier_for(ctx)
        if tier is None:
            return f"after start ({self.after_start_rate * 100:.0f}% fee)"
        return tier.description

    def describe(self) -> str:
        steps = ", ".join(f"{tier.description}: {tier.rate * 100:.0f}%" for tier in self.tiers)
        return f"{self.name} cancellation policy ({steps})"


class NoCancellationPolicy(CancellationPolicy):
    """Non-refundable; emergencies may be accepted far enough ahead, still without refund"""
    allow_emergency: bool = False
    emergency_min_hours: int = 24
    priority: int = DEFAULT_PRIORITY

    def is_cancellation_allowed(self, ctx: CancellationContext) -> bool:
        return self.denial_reason(ctx) is None

    def denial_reason(self, ctx: CancellationContext) -> Optional[str]:
        if not self.allow_emergency:
            return "This reservation cannot be cancelled"
        if ctx.hours_until_start < self.emergency_min_hours:
            return (
                f"Emergency cancellations are only accepted up to "
                f"{self.emergency_min_hours} hours before start"
            )
        return None

    def calculate_fee(self, price: Money, ctx: CancellationContext) -> Money:
        return price

    def describe(self) -> str:
        if self.allow_emergency:
            return f"non-refundable (emergency cancellation up to {self.emergency_min_hours}h before)"
        return "non-refundable"


class CompositeCancellationPolicy(CancellationPolicy):
    """Selects one policy per evaluation: cheapest for the member, or highest priority"""
    policies: Tuple[CancellationPolicy, ...]
    strategy: CombinationStrategy = CombinationStrategy.BEST_OUTCOME

    @field_validator("policies", mode="before")
    @classmethod
    def _check_policies(cls, v: Any) -> Tuple[CancellationPolicy, ...]:
        policies = tuple(v or ())
        if not policies:
            raise ConfigurationError("Composite cancellation policy requires at least one policy")
        for policy in policies:
            if not isinstance(policy, CancellationPolicy):
                raise ConfigurationError(f"Not a cancellation policy: {policy!r}")
        return policies

    @field_validator("strategy")
    @classmethod
    def _check_strategy(cls, v: CombinationStrategy) -> CombinationStrategy:
        if v is CombinationStrategy.SEQUENTIAL:
            raise ConfigurationError("Cancellation fees cannot be chained sequentially")
        return v

    @property
    def priority(self) -> int:
        return min(getattr(policy, "priority", sys.maxsize) for policy in self.policies)

    def _allowing(self, ctx: CancellationContext) -> List[CancellationPolicy]:
        return [policy for policy in self.policies if policy.is_cancellation_allowed(ctx)]

    def select(self, price: Money, ctx: CancellationContext) -> Optional[CancellationPolicy]:
        """Policy that decides this cancellation, or None when every policy refuses"""
        allowing = self._allowing(ctx)
        if not allowing:
            return None
        if self.strategy is CombinationStrategy.PRIORITY_FIRST:
            return min(allowing, key=lambda policy: getattr(policy, "priority", sys.maxsize))
        best = allowing[0]
        best_fee = best.calculate_fee(price, ctx)
        for policy in allowing[1:]:
            fee = policy.calculate_fee(price, ctx)
            if fee < best_fee:
                best, best_fee = policy, fee
        return best

    def is_cancellation_allowed(self, ctx: CancellationContext) -> bool:
        return bool(self._allowing(ctx))

    def denial_reason(self, ctx: CancellationContext) -> Optional[str]:
        if self.is_cancellation_allowed(ctx):
            return None
        reasons = [policy.denial_reason(ctx) for policy in self.policies]
        return "; ".join(reason for reason in reasons if reason)

    def calculate_fee(self, price: Money, ctx: CancellationContext) -> Money:
        chosen = self.select(price, ctx)
        if chosen is None:
            return price
        return chosen.calculate_fee(price, ctx)

    def quote(self, price: Money, ctx: CancellationContext) -> CancellationQuote:
        chosen = self.select(price, ctx)
        if chosen is None:
            return super().quote(price, ctx)
        return chosen.quote(price, ctx)

    def describe(self) -> str:
        joined = " | ".join(policy.describe() for policy in self.policies)
        return f"{self.strategy.value.lower()} of [{joined}]"
