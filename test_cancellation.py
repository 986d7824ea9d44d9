"""Cancellation fee policy tests"""
from datetime import timedelta
from decimal import Decimal

import pytest

from conftest import NOW
from memberbook.domain.cancellation import (
    CompositeCancellationPolicy,
    FeeTier,
    NoCancellationPolicy,
    TieredCancellationPolicy,
)
from memberbook.domain.context import CancellationContext
from memberbook.domain.enums import CombinationStrategy
from memberbook.domain.exceptions import ConfigurationError
from memberbook.domain.value_objects import Money

PRICE = Money.of(50000, "KRW")


def krw(amount) -> Money:
    return Money.of(amount, "KRW")


def cancel_ctx(hours: float = 0, first_time: bool = False) -> CancellationContext:
    """Cancellation made at NOW for a reservation starting `hours` later"""
    return CancellationContext(
        reservation_start=NOW + timedelta(hours=hours),
        cancelled_at=NOW,
        first_time=first_time,
    )


class TestCancellationContext:
    """Test derived timing facts"""

    @pytest.mark.unit
    def test_hours_are_truncated(self):
        assert cancel_ctx(hours=1.5).hours_until_start == 1
        assert cancel_ctx(hours=0.5).hours_until_start == 0

    @pytest.mark.unit
    def test_after_start(self):
        assert cancel_ctx(hours=-1).is_after_start
        assert cancel_ctx(hours=0).is_after_start
        assert not cancel_ctx(hours=1).is_after_start

    @pytest.mark.unit
    def test_same_day(self):
        assert cancel_ctx(hours=5).is_same_day
        assert not cancel_ctx(hours=20).is_same_day


# ============================================================================
# TIERED POLICIES
# ============================================================================

class TestStandardPolicy:
    """Test the standard 80/50/20/0 schedule"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_one_hour_before(self):
        """50000 cancelled 1h before: fee 40000, refund 10000"""
        quote = TieredCancellationPolicy.standard().quote(PRICE, cancel_ctx(hours=1))
        assert quote.allowed
        assert quote.fee == krw(40000)
        assert quote.refund == krw(10000)
        assert quote.fee_rate == Decimal("0.8")
        assert quote.rule == "less than 2 hours before start"
        assert quote.hours_until_start == 1

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.parametrize(
        "hours, fee",
        [(0.5, 40000), (2, 25000), (5.9, 25000), (6, 10000), (23, 10000), (24, 0), (72, 0)],
    )
    def test_tier_boundaries(self, hours, fee):
        """Tiers are half-open: the lower bound belongs to the tier"""
        assert TieredCancellationPolicy.standard().calculate_fee(PRICE, cancel_ctx(hours=hours)) == krw(fee)

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_after_start_charges_full_price(self):
        policy = TieredCancellationPolicy.standard()
        ctx = cancel_ctx(hours=-2)
        quote = policy.quote(PRICE, ctx)
        assert quote.allowed
        assert quote.fee == PRICE
        assert quote.refund == krw(0)
        assert policy.tier_for(ctx) is None
        assert "after start" in quote.rule


class TestStrictPolicy:
    """Test the strict schedule and its refusals"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_same_day_too_late(self):
        """Same day with less than 6 hours left is refused at full price"""
        policy = TieredCancellationPolicy.strict()
        quote = policy.quote(PRICE, cancel_ctx(hours=5))
        assert not quote.allowed
        assert quote.fee == PRICE
        assert "Same-day" in quote.rule

    @pytest.mark.unit
    @pytest.mark.domain
    def test_same_day_with_enough_notice(self):
        quote = TieredCancellationPolicy.strict().quote(PRICE, cancel_ctx(hours=7))
        assert quote.allowed
        assert quote.fee == krw(30000)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_two_days_ahead(self):
        policy = TieredCancellationPolicy.strict()
        assert policy.calculate_fee(PRICE, cancel_ctx(hours=30)) == krw(15000)
        assert policy.calculate_fee(PRICE, cancel_ctx(hours=48)) == krw(0)

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_after_start_refused(self):
        policy = TieredCancellationPolicy.strict()
        ctx = cancel_ctx(hours=-1)
        assert not policy.is_cancellation_allowed(ctx)
        assert "already started" in policy.denial_reason(ctx)


class TestFlexiblePolicy:
    """Test first-time relief"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_first_time_schedule(self):
        policy = TieredCancellationPolicy.flexible()
        assert policy.calculate_fee(PRICE, cancel_ctx(hours=1, first_time=True)) == krw(5000)
        assert policy.calculate_fee(PRICE, cancel_ctx(hours=3, first_time=True)) == krw(0)

    @pytest.mark.unit
    @pytest.mark.domain
    def test_repeat_cancellation_uses_normal_schedule(self):
        policy = TieredCancellationPolicy.flexible()
        assert policy.calculate_fee(PRICE, cancel_ctx(hours=1)) == krw(30000)

    @pytest.mark.unit
    def test_standard_ignores_first_time_flag(self):
        policy = TieredCancellationPolicy.standard()
        assert policy.calculate_fee(PRICE, cancel_ctx(hours=1, first_time=True)) == krw(40000)


class TestNoCancellationPolicy:
    """Test non-refundable bookings"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_always_refused(self):
        quote = NoCancellationPolicy().quote(PRICE, cancel_ctx(hours=100))
        assert not quote.allowed
        assert quote.fee == PRICE
        assert quote.rule == "This reservation cannot be cancelled"

    @pytest.mark.unit
    @pytest.mark.domain
    def test_emergency_window(self):
        """Emergencies accepted far enough ahead, still without refund"""
        policy = NoCancellationPolicy(allow_emergency=True)
        early = policy.quote(PRICE, cancel_ctx(hours=48))
        assert early.allowed
        assert early.refund == krw(0)
        assert not policy.is_cancellation_allowed(cancel_ctx(hours=12))


# ============================================================================
# CONFIGURATION AND COMPOSITES
# ============================================================================

class TestFeeTier:
    """Test tier arithmetic and schedule validation"""

    @pytest.mark.unit
    def test_fixed_fee_and_cap(self):
        tier = FeeTier(
            min_hours=0,
            rate=Decimal("0.1"),
            fixed_fee=krw(1000),
            maximum_fee=krw(5000),
            description="capped",
        )
        assert tier.fee_for(krw(20000)) == krw(3000)
        assert tier.fee_for(krw(100000)) == krw(5000)
        assert tier.fee_for(krw(500)) == krw(500)

    @pytest.mark.unit
    def test_schedule_is_sorted(self):
        policy = TieredCancellationPolicy(
            name="reversed",
            tiers=(
                FeeTier.rate_only(12, None, "0", "late"),
                FeeTier.rate_only(0, 12, "0.5", "early"),
            ),
        )
        assert [tier.min_hours for tier in policy.tiers] == [0, 12]

    @pytest.mark.unit
    @pytest.mark.edge_case
    @pytest.mark.parametrize(
        "tiers",
        [
            (FeeTier.rate_only(0, 2, "0.5", "a"), FeeTier.rate_only(3, None, "0", "b")),
            (FeeTier.rate_only(0, 4, "0.5", "a"), FeeTier.rate_only(3, None, "0", "b")),
            (FeeTier.rate_only(1, None, "0", "a"),),
            (FeeTier.rate_only(0, 24, "0.5", "a"),),
            (),
        ],
        ids=["gap", "overlap", "not-from-zero", "not-open-ended", "empty"],
    )
    def test_invalid_schedules(self, tiers):
        with pytest.raises(ConfigurationError):
            TieredCancellationPolicy(name="broken", tiers=tiers)

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_invalid_tier(self):
        with pytest.raises(ConfigurationError):
            FeeTier.rate_only(5, 5, "0.5", "empty range")
        with pytest.raises(ConfigurationError):
            FeeTier.rate_only(0, None, "1.5", "rate too high")


class TestCompositeCancellation:
    """Test best-outcome and priority selection"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_best_outcome_picks_lowest_fee(self):
        policy = CompositeCancellationPolicy(
            policies=(TieredCancellationPolicy.standard(), TieredCancellationPolicy.flexible())
        )
        quote = policy.quote(PRICE, cancel_ctx(hours=3))
        assert quote.fee == krw(15000)
        assert quote.rule == "2 to 6 hours before start"

    @pytest.mark.unit
    @pytest.mark.domain
    def test_priority_first(self):
        preferred = TieredCancellationPolicy.standard().model_copy(update={"priority": 1})
        policy = CompositeCancellationPolicy(
            policies=(TieredCancellationPolicy.flexible(), preferred),
            strategy=CombinationStrategy.PRIORITY_FIRST,
        )
        assert policy.calculate_fee(PRICE, cancel_ctx(hours=3)) == krw(25000)
        assert policy.priority == 1

    @pytest.mark.unit
    @pytest.mark.domain
    def test_refusing_policies_are_skipped(self):
        policy = CompositeCancellationPolicy(
            policies=(NoCancellationPolicy(), TieredCancellationPolicy.standard())
        )
        quote = policy.quote(PRICE, cancel_ctx(hours=30))
        assert quote.allowed
        assert quote.fee == krw(0)

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_every_policy_refuses(self):
        policy = CompositeCancellationPolicy(
            policies=(NoCancellationPolicy(), TieredCancellationPolicy.strict())
        )
        quote = policy.quote(PRICE, cancel_ctx(hours=5))
        assert not quote.allowed
        assert quote.fee == PRICE
        assert "cannot be cancelled" in quote.rule
        assert "Same-day" in quote.rule

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_invalid_composites(self):
        with pytest.raises(ConfigurationError):
            CompositeCancellationPolicy(policies=())
        with pytest.raises(ConfigurationError):
            CompositeCancellationPolicy(
                policies=(TieredCancellationPolicy.standard(),),
                strategy=CombinationStrategy.SEQUENTIAL,
            )
