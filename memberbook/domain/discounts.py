"""Discount policies: (price, PricingContext) -> discounted price, never above the input"""
import sys
from abc import ABC, abstractmethod
from datetime import date
from decimal import Decimal
from typing import Any, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from memberbook.domain.context import PricingContext
from memberbook.domain.enums import CombinationStrategy, MemberStatus
from memberbook.domain.exceptions import ConfigurationError
from memberbook.domain.value_objects import Money, TemporalRange

DEFAULT_PRIORITY = 100


def _check_rate(rate: Decimal) -> Decimal:
    if not Decimal("0") <= rate <= Decimal("1"):
        raise ConfigurationError(f"Discount rate must be between 0 and 1: {rate}")
    return rate


def _below_minimum(price: Money, minimum: Optional[Money]) -> bool:
    return minimum is not None and price < minimum


class DiscountPolicy(BaseModel, ABC):
    """Pricing strategy; lower `priority` numbers win under PRIORITY_FIRST"""

    model_config = ConfigDict(frozen=True)

    @abstractmethod
    def apply(self, price: Money, ctx: PricingContext) -> Money:
        pass

    @abstractmethod
    def describe(self) -> str:
        pass

    def is_applicable(self, ctx: PricingContext) -> bool:
        return True

    def discount_amount(self, price: Money, ctx: PricingContext) -> Money:
        return price - self.apply(price, ctx)


class NoDiscount(DiscountPolicy):
    """Leaves the price untouched"""
    priority: int = sys.maxsize

    def apply(self, price: Money, ctx: PricingContext) -> Money:
        return price

    def is_applicable(self, ctx: PricingContext) -> bool:
        return False

    def describe(self) -> str:
        return "no discount"


class FixedAmountDiscount(DiscountPolicy):
    """Subtracts a fixed amount, never going below zero"""
    amount: Money
    minimum_purchase: Optional[Money] = None
    priority: int = DEFAULT_PRIORITY

    @field_validator("amount")
    @classmethod
    def _check_amount(cls, v: Money) -> Money:
        if not v.is_positive():
            raise ConfigurationError(f"Discount amount must be positive: {v}")
        return v

    def apply(self, price: Money, ctx: PricingContext) -> Money:
        if _below_minimum(price, self.minimum_purchase):
            return price
        return price.subtract_floored(self.amount)

    def describe(self) -> str:
        desc = f"{self.amount} off"
        if self.minimum_purchase is not None:
            desc += f" (minimum purchase {self.minimum_purchase})"
        return desc


class RateDiscount(DiscountPolicy):
    """Takes a percentage off, optionally capped at a maximum discount"""
    rate: Decimal
    maximum_discount: Optional[Money] = None
    minimum_purchase: Optional[Money] = None
    priority: int = DEFAULT_PRIORITY

    @field_validator("rate")
    @classmethod
    def _validate_rate(cls, v: Decimal) -> Decimal:
        return _check_rate(v)

    def apply(self, price: Money, ctx: PricingContext) -> Money:
        if _below_minimum(price, self.minimum_purchase):
            return price
        discount = price.multiply(self.rate)
        if self.maximum_discount is not None and discount > self.maximum_discount:
            discount = self.maximum_discount
        return price.subtract_floored(discount)

    def describe(self) -> str:
        desc = f"{self.rate * 100:.0f}% off"
        if self.maximum_discount is not None:
            desc += f" (up to {self.maximum_discount})"
        return desc


class MembershipDiscount(DiscountPolicy):
    """Applies the plan's discount rate to active members on an active plan"""
    priority: int = 50

    def is_applicable(self, ctx: PricingContext) -> bool:
        plan = ctx.effective_plan
        return (
            ctx.member is not None
            and ctx.member.status is MemberStatus.ACTIVE
            and plan is not None
            and plan.active
        )

    def apply(self, price: Money, ctx: PricingContext) -> Money:
        if not self.is_applicable(ctx):
            return price
        rate = ctx.effective_plan.discount_rate
        if rate == 0:
            return price
        return price.subtract_floored(price.multiply(rate))

    def describe(self) -> str:
        return "membership plan discount"


class CouponDiscount(DiscountPolicy):
    """Discount unlocked by a coupon code, by amount or by rate"""
    code: str
    amount: Optional[Money] = None
    rate: Optional[Decimal] = None
    valid_during: Optional[TemporalRange] = None
    target_member_ids: FrozenSet[str] = frozenset()
    minimum_purchase: Optional[Money] = None
    priority: int = 10

    @model_validator(mode="after")
    def _check_config(self) -> "CouponDiscount":
        if not self.code.strip():
            raise ConfigurationError("Coupon code is required")
        if (self.amount is None) == (self.rate is None):
            raise ConfigurationError("Coupon needs exactly one of amount or rate")
        if self.amount is not None and not self.amount.is_positive():
            raise ConfigurationError(f"Coupon amount must be positive: {self.amount}")
        if self.rate is not None:
            _check_rate(self.rate)
        return self

    def is_applicable(self, ctx: PricingContext) -> bool:
        if ctx.coupon_code != self.code:
            return False
        if self.valid_during is not None and not self.valid_during.contains(ctx.purchase_date):
            return False
        if self.target_member_ids:
            return ctx.member is not None and ctx.member.member_id in self.target_member_ids
        return True

    def apply(self, price: Money, ctx: PricingContext) -> Money:
        if not self.is_applicable(ctx) or _below_minimum(price, self.minimum_purchase):
            return price
        if self.rate is not None:
            return price.subtract_floored(price.multiply(self.rate))
        return price.subtract_floored(self.amount)

    def describe(self) -> str:
        value = f"{self.rate * 100:.0f}%" if self.rate is not None else str(self.amount)
        return f"coupon {self.code}: {value} off"


class Season(BaseModel):
    """Month range (inclusive, may wrap the new year) with a discount rate"""
    name: str
    start_month: int
    end_month: int
    rate: Decimal

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_season(self) -> "Season":
        for month in (self.start_month, self.end_month):
            if not 1 <= month <= 12:
                raise ConfigurationError(f"Month must be 1-12: {month}")
        _check_rate(self.rate)
        return self

    def includes(self, day: date) -> bool:
        if self.start_month <= self.end_month:
            return self.start_month <= day.month <= self.end_month
        return day.month >= self.start_month or day.month <= self.end_month


class SeasonalDiscount(DiscountPolicy):
    """Rate discount for purchases made during a configured season; first match wins"""
    seasons: Tuple[Season, ...]
    priority: int = 30

    @field_validator("seasons")
    @classmethod
    def _check_seasons(cls, v: Tuple[Season, ...]) -> Tuple[Season, ...]:
        if not v:
            raise ConfigurationError("Seasonal discount requires at least one season")
        return v

    @staticmethod
    def standard() -> "SeasonalDiscount":
        return SeasonalDiscount(seasons=(
            Season(name="summer", start_month=7, end_month=8, rate=Decimal("0.1")),
            Season(name="winter", start_month=12, end_month=2, rate=Decimal("0.15")),
        ))

    def season_for(self, day: date) -> Optional[Season]:
        for season in self.seasons:
            if season.includes(day):
                return season
        return None

    def is_applicable(self, ctx: PricingContext) -> bool:
        return self.season_for(ctx.purchase_date) is not None

    def apply(self, price: Money, ctx: PricingContext) -> Money:
        season = self.season_for(ctx.purchase_date)
        if season is None:
            return price
        return price.subtract_floored(price.multiply(season.rate))

    def describe(self) -> str:
        return "seasonal discount (" + ", ".join(
            f"{s.name} {s.rate * 100:.0f}%" for s in self.seasons
        ) + ")"


class CompositeDiscount(DiscountPolicy):
    """Combines an ordered list of policies with a CombinationStrategy

    The combined result may be bounded afterwards: the total discount never
    exceeds ``maximum_total_discount`` and the final price is raised to
    ``minimum_final_amount`` (but never above the original price).
    """
    policies: Tuple[DiscountPolicy, ...]
    strategy: CombinationStrategy = CombinationStrategy.SEQUENTIAL
    maximum_total_discount: Optional[Money] = None
    minimum_final_amount: Optional[Money] = None

    @field_validator("policies", mode="before")
    @classmethod
    def _check_policies(cls, v: Any) -> Tuple[DiscountPolicy, ...]:
        policies = tuple(v or ())
        if not policies:
            raise ConfigurationError("Composite discount requires at least one policy")
        for policy in policies:
            if not isinstance(policy, DiscountPolicy):
                raise ConfigurationError(f"Not a discount policy: {policy!r}")
        return policies

    @field_validator("maximum_total_discount")
    @classmethod
    def _check_maximum(cls, v: Optional[Money]) -> Optional[Money]:
        if v is not None and not v.is_positive():
            raise ConfigurationError(f"Maximum total discount must be positive: {v}")
        return v

    @staticmethod
    def sequential(*policies: DiscountPolicy) -> "CompositeDiscount":
        return CompositeDiscount(policies=policies, strategy=CombinationStrategy.SEQUENTIAL)

    @staticmethod
    def best_outcome(*policies: DiscountPolicy) -> "CompositeDiscount":
        return CompositeDiscount(policies=policies, strategy=CombinationStrategy.BEST_OUTCOME)

    @staticmethod
    def priority_first(*policies: DiscountPolicy) -> "CompositeDiscount":
        return CompositeDiscount(policies=policies, strategy=CombinationStrategy.PRIORITY_FIRST)

    @staticmethod
    def generous(currency: str = "KRW") -> "CompositeDiscount":
        """Membership, 15% and 5000 off stacked, at most 20000 off in total"""
        return CompositeDiscount(
            policies=(
                MembershipDiscount(),
                RateDiscount(rate=Decimal("0.15")),
                FixedAmountDiscount(amount=Money.of(5000, currency)),
            ),
            maximum_total_discount=Money.of(20000, currency),
        )

    @staticmethod
    def premium(currency: str = "KRW") -> "CompositeDiscount":
        """Membership, 20% and 10000 off stacked, at most 50000 off, never below 1000"""
        return CompositeDiscount(
            policies=(
                MembershipDiscount(),
                RateDiscount(rate=Decimal("0.2")),
                FixedAmountDiscount(amount=Money.of(10000, currency)),
            ),
            maximum_total_discount=Money.of(50000, currency),
            minimum_final_amount=Money.of(1000, currency),
        )

    @property
    def priority(self) -> int:
        return min(policy.priority for policy in self.policies)

    def applicable_policies(self, ctx: PricingContext) -> List[DiscountPolicy]:
        return [policy for policy in self.policies if policy.is_applicable(ctx)]

    def is_applicable(self, ctx: PricingContext) -> bool:
        return bool(self.applicable_policies(ctx))

    def apply(self, price: Money, ctx: PricingContext) -> Money:
        applicable = self.applicable_policies(ctx)
        if not applicable:
            return price
        return self._bounded(price, self._combine(price, applicable, ctx))

    def _bounded(self, price: Money, final: Money) -> Money:
        if self.maximum_total_discount is not None and price - final > self.maximum_total_discount:
            final = price - self.maximum_total_discount
        if self.minimum_final_amount is not None and final < self.minimum_final_amount:
            final = price.min(self.minimum_final_amount)
        return final

    def _combine(self, price: Money, applicable: List[DiscountPolicy], ctx: PricingContext) -> Money:
        if self.strategy is CombinationStrategy.SEQUENTIAL:
            current = price
            for policy in applicable:
                current = policy.apply(current, ctx)
            return current

        if self.strategy is CombinationStrategy.BEST_OUTCOME:
            best = price
            for policy in applicable:
                candidate = policy.apply(price, ctx)
                # Strict comparison keeps the earliest policy on ties.
                if candidate < best:
                    best = candidate
            return best

        if self.strategy is CombinationStrategy.PRIORITY_FIRST:
            chosen = min(applicable, key=lambda policy: policy.priority)
            return chosen.apply(price, ctx)

        raise ConfigurationError(f"Unsupported combination strategy: {self.strategy}")

    def describe(self) -> str:
        joined = " + ".join(policy.describe() for policy in self.policies)
        desc = f"{self.strategy.value.lower()} of [{joined}]"
        if self.maximum_total_discount is not None:
            desc += f", at most {self.maximum_total_discount} off"
        if self.minimum_final_amount is not None:
            desc += f", never below {self.minimum_final_amount}"
        return desc
