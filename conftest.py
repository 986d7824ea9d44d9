"""Shared fixtures: a fixed clock on Monday 2025-03-03 10:00 and a premium member"""
from datetime import date, datetime, timedelta

import pytest

from memberbook.domain.clock import FixedClock
from memberbook.domain.context import MemberSnapshot, PlanSnapshot, RequestContext, ResourceSnapshot
from memberbook.domain.enums import ResourceType
from memberbook.domain.value_objects import TemporalRange, TimeWindow

NOW = datetime(2025, 3, 3, 10, 0)


def window_at(days: int = 1, hour: int = 10, minutes: int = 60, minute: int = 0) -> TimeWindow:
    """Window starting `days` after NOW's date at hour:minute"""
    start = datetime.combine(NOW.date() + timedelta(days=days), datetime.min.time()).replace(
        hour=hour, minute=minute
    )
    return TimeWindow.of_duration(start, minutes)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def premium_plan():
    return PlanSnapshot.premium_monthly()


@pytest.fixture
def membership_period():
    return TemporalRange(start=date(2025, 2, 1), end=date(2025, 4, 30))


@pytest.fixture
def member(premium_plan, membership_period):
    return MemberSnapshot(member_id="M-001", plan=premium_plan, membership_period=membership_period)


@pytest.fixture
def gym():
    return ResourceSnapshot(resource_id="GYM-1", resource_type=ResourceType.GYM, capacity=10, occupancy=3)


@pytest.fixture
def make_context(clock, member, gym):
    """Factory building a RequestContext with overridable parts"""
    def _make(window=None, member=member, resource=gym, active=0, by_type=None):
        return RequestContext.create(
            member=member,
            resource=resource,
            window=window or window_at(),
            clock=clock,
            active_reservation_count=active,
            active_reservations_by_type=by_type,
        )
    return _make
