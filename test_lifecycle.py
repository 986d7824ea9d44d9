"""Reservation aggregate lifecycle tests"""
import copy
import threading
from datetime import timedelta

import pytest
from pydantic import ValidationError as PydanticValidationError

from conftest import NOW, window_at
from memberbook.domain.entities import Reservation
from memberbook.domain.enums import ReservationStatus
from memberbook.domain.exceptions import IllegalTransitionError, ValidationError
from memberbook.domain.value_objects import StatusChange


@pytest.fixture
def reservation(clock):
    return Reservation.create(
        member_id="M-001",
        resource_id="GYM-1",
        window=window_at(),
        clock=clock,
        reservation_id="R-001",
    )


def advance_to(reservation: Reservation, *targets: ReservationStatus) -> None:
    steps = {
        ReservationStatus.CONFIRMED: reservation.confirm,
        ReservationStatus.IN_USE: reservation.start_using,
        ReservationStatus.COMPLETED: reservation.complete,
    }
    for target in targets:
        steps[target]()


# ============================================================================
# CREATION
# ============================================================================

class TestReservationCreation:
    """Test factory validation"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_new_reservation_is_requested(self, reservation):
        assert reservation.status == ReservationStatus.REQUESTED
        assert reservation.created_at == NOW
        assert len(reservation.history) == 1
        first = reservation.history[0]
        assert first.from_status is None
        assert first.to_status == ReservationStatus.REQUESTED
        assert first.reason == "created"

    @pytest.mark.unit
    def test_generated_id(self, clock):
        reservation = Reservation.create("M-001", "GYM-1", window_at(), clock)
        assert reservation.reservation_id

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_past_start_rejected(self, clock):
        with pytest.raises(ValidationError, match="already passed"):
            Reservation.create("M-001", "GYM-1", window_at(days=0, hour=9), clock)

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_beyond_horizon_rejected(self, clock):
        """400 days ahead exceeds the default 365-day horizon"""
        with pytest.raises(ValidationError, match="beyond maximum horizon"):
            Reservation.create("M-001", "GYM-1", window_at(days=400), clock)

    @pytest.mark.unit
    def test_custom_horizon(self, clock):
        reservation = Reservation.create("M-001", "GYM-1", window_at(days=400), clock, max_horizon_days=500)
        assert reservation.window.day == (NOW + timedelta(days=400)).date()

    @pytest.mark.unit
    @pytest.mark.edge_case
    @pytest.mark.parametrize("member_id, resource_id", [("", "GYM-1"), ("M-001", "  "), (None, "GYM-1")])
    def test_missing_references(self, clock, member_id, resource_id):
        with pytest.raises(ValidationError):
            Reservation.create(member_id, resource_id, window_at(), clock)

    @pytest.mark.unit
    def test_identity_fields_are_frozen(self, reservation):
        with pytest.raises(PydanticValidationError):
            reservation.member_id = "M-999"

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_direct_construction_rejected(self):
        """Only the factory may build reservations, so a past start cannot slip in"""
        data = {"member_id": "M-001", "resource_id": "GYM-1", "window": window_at(days=-30), "created_at": NOW}
        with pytest.raises(ValidationError, match="Reservation.create"):
            Reservation(**data)
        with pytest.raises(ValidationError, match="Reservation.create"):
            Reservation.model_validate(data)

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_validation_with_clock_runs_checks(self, clock):
        data = {"member_id": "M-001", "resource_id": "GYM-1", "window": window_at(days=-1), "created_at": NOW}
        with pytest.raises(ValidationError, match="already passed"):
            Reservation.model_validate(data, context={"clock": clock})
        with pytest.raises(ValidationError, match="Member id"):
            Reservation.model_validate(dict(data, member_id=" ", window=window_at()), context={"clock": clock})
        restored = Reservation.model_validate(dict(data, window=window_at()), context={"clock": clock})
        assert restored.clock is clock
        assert restored.status == ReservationStatus.REQUESTED


# ============================================================================
# TRANSITIONS
# ============================================================================

class TestTransitions:
    """Test the state machine"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_happy_path(self, reservation, clock):
        """confirm -> start_using -> complete leaves four history entries"""
        reservation.confirm()
        clock.advance(days=1)
        reservation.start_using()
        clock.advance(hours=1)
        reservation.complete()

        assert reservation.status == ReservationStatus.COMPLETED
        assert [change.to_status for change in reservation.history] == [
            ReservationStatus.REQUESTED,
            ReservationStatus.CONFIRMED,
            ReservationStatus.IN_USE,
            ReservationStatus.COMPLETED,
        ]
        assert reservation.confirmed_at == NOW
        assert reservation.started_at == NOW + timedelta(days=1)
        assert reservation.completed_at == NOW + timedelta(days=1, hours=1)
        assert reservation.cancelled_at is None

    @pytest.mark.unit
    @pytest.mark.domain
    def test_history_links_states(self, reservation):
        advance_to(reservation, ReservationStatus.CONFIRMED, ReservationStatus.IN_USE)
        history = reservation.history
        for previous, change in zip(history, history[1:]):
            assert change.from_status == previous.to_status
        assert reservation.latest_status_change() == history[-1]

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_out_of_order_transition(self, reservation):
        """Illegal call raises and changes nothing"""
        with pytest.raises(IllegalTransitionError) as exc_info:
            reservation.complete()
        assert exc_info.value.current == ReservationStatus.REQUESTED
        assert exc_info.value.target == ReservationStatus.COMPLETED
        assert reservation.status == ReservationStatus.REQUESTED
        assert len(reservation.history) == 1
        assert reservation.completed_at is None

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_confirm_twice(self, reservation):
        reservation.confirm()
        with pytest.raises(IllegalTransitionError):
            reservation.confirm()
        assert len(reservation.history) == 2

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_start_using_requires_confirmation(self, reservation):
        with pytest.raises(IllegalTransitionError):
            reservation.start_using()


class TestCancellation:
    """Test cancel and auto_cancel"""

    @pytest.mark.unit
    @pytest.mark.domain
    @pytest.mark.parametrize(
        "path",
        [(), (ReservationStatus.CONFIRMED,), (ReservationStatus.CONFIRMED, ReservationStatus.IN_USE)],
        ids=["requested", "confirmed", "in-use"],
    )
    def test_cancel_from_non_final_states(self, reservation, path):
        advance_to(reservation, *path)
        reservation.cancel("  change of plans  ")
        assert reservation.status == ReservationStatus.CANCELLED
        assert reservation.cancellation_reason == "change of plans"
        assert reservation.cancelled_at == NOW
        assert reservation.history[-1].reason == "change of plans"
        assert reservation.is_final()

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_cancel_from_final_states(self, reservation):
        advance_to(reservation, ReservationStatus.CONFIRMED, ReservationStatus.IN_USE, ReservationStatus.COMPLETED)
        with pytest.raises(IllegalTransitionError):
            reservation.cancel("too late")

        other = Reservation.create("M-001", "GYM-1", window_at(), reservation.clock)
        other.cancel("first")
        with pytest.raises(IllegalTransitionError):
            other.cancel("second")
        assert other.cancellation_reason == "first"

    @pytest.mark.unit
    @pytest.mark.edge_case
    @pytest.mark.parametrize("reason", ["", "   ", None])
    def test_blank_reason(self, reservation, reason):
        with pytest.raises(ValidationError):
            reservation.cancel(reason)
        assert reservation.status == ReservationStatus.REQUESTED
        assert len(reservation.history) == 1

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_state_is_checked_before_reason(self, reservation):
        advance_to(reservation, ReservationStatus.CONFIRMED, ReservationStatus.IN_USE, ReservationStatus.COMPLETED)
        with pytest.raises(IllegalTransitionError):
            reservation.cancel("")

    @pytest.mark.unit
    @pytest.mark.domain
    def test_auto_cancel(self, reservation):
        reservation.auto_cancel("payment timeout")
        assert reservation.cancellation_reason == "system cancellation: payment timeout"
        assert "payment timeout" in reservation.summary()


# ============================================================================
# QUERIES
# ============================================================================

class TestQueries:
    """Test time-dependent queries"""

    @pytest.mark.unit
    @pytest.mark.domain
    def test_no_show(self, reservation, clock):
        assert not reservation.is_no_show()
        reservation.confirm()
        assert not reservation.is_no_show()
        clock.set(reservation.window.start + timedelta(minutes=1))
        assert reservation.is_no_show()

    @pytest.mark.unit
    def test_requested_is_never_a_no_show(self, reservation, clock):
        clock.set(reservation.window.start + timedelta(hours=1))
        assert not reservation.is_no_show()

    @pytest.mark.unit
    def test_minutes_until_start(self, reservation, clock):
        assert reservation.minutes_until_start() == 24 * 60
        clock.set(reservation.window.start + timedelta(minutes=5))
        assert reservation.minutes_until_start() == 0

    @pytest.mark.unit
    @pytest.mark.domain
    def test_is_modifiable(self, clock, reservation):
        soon = Reservation.create("M-001", "GYM-1", window_at(days=0, hour=10, minute=30), clock)
        assert reservation.is_modifiable()
        assert not soon.is_modifiable()
        assert soon.is_modifiable(lead_minutes=10)
        assert not reservation.is_modifiable(lead_minutes=2000)
        reservation.cancel("no longer needed")
        assert not reservation.is_modifiable()

    @pytest.mark.unit
    @pytest.mark.domain
    def test_conflicts(self, clock, reservation):
        overlapping = Reservation.create("M-002", "GYM-1", window_at(hour=10, minute=30), clock)
        touching = Reservation.create("M-002", "GYM-1", window_at(hour=11), clock)
        elsewhere = Reservation.create("M-002", "POOL-1", window_at(), clock)
        assert reservation.conflicts_with(overlapping)
        assert not reservation.conflicts_with(touching)
        assert not reservation.conflicts_with(elsewhere)
        assert reservation.conflicts_with_window(window_at(hour=10, minute=59, minutes=30))

    @pytest.mark.unit
    def test_identity_equality(self, clock, reservation):
        same_id = Reservation.create("M-002", "POOL-1", window_at(days=2), clock, reservation_id="R-001")
        assert reservation == same_id
        assert len({reservation, same_id}) == 1

    @pytest.mark.unit
    def test_notes(self, reservation):
        reservation.add_notes("bring towel")
        assert reservation.notes == ("bring towel",)
        with pytest.raises(ValidationError):
            reservation.add_notes(" ")

    @pytest.mark.unit
    def test_duration(self, reservation):
        assert reservation.duration_minutes == 60


class TestHistory:
    """Test the append-only status history"""

    @pytest.mark.unit
    def test_history_is_a_copy(self, reservation):
        history = reservation.history
        assert isinstance(history, tuple)
        reservation.confirm()
        assert len(history) == 1
        assert len(reservation.history) == 2

    @pytest.mark.unit
    @pytest.mark.integration
    def test_history_round_trip(self, reservation):
        """Serialized history deserializes to equal entries"""
        advance_to(reservation, ReservationStatus.CONFIRMED)
        reservation.cancel("weather")
        restored = tuple(
            StatusChange.model_validate_json(change.model_dump_json()) for change in reservation.history
        )
        assert restored == reservation.history

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_model_copy_is_independent(self, reservation):
        duplicate = reservation.model_copy()
        duplicate.confirm()
        duplicate.add_notes("copy only")
        assert reservation.status == ReservationStatus.REQUESTED
        assert len(reservation.history) == 1
        assert reservation.notes == ()
        assert duplicate.status == ReservationStatus.CONFIRMED
        assert len(duplicate.history) == 2
        assert duplicate.clock is reservation.clock

    @pytest.mark.unit
    @pytest.mark.edge_case
    def test_deep_copy(self, reservation):
        reservation.confirm()
        duplicate = copy.deepcopy(reservation)
        duplicate.cancel("changed plans")
        assert reservation.status == ReservationStatus.CONFIRMED
        assert len(reservation.history) == 2
        assert len(duplicate.history) == 3
        assert reservation.model_copy(deep=True).status == ReservationStatus.CONFIRMED


class TestConcurrency:
    """Test that transitions on one instance are serialized"""

    @pytest.mark.integration
    @pytest.mark.edge_case
    def test_concurrent_confirm(self, reservation):
        """Exactly one of many concurrent confirms wins"""
        workers = 8
        barrier = threading.Barrier(workers)
        outcomes = []
        outcomes_lock = threading.Lock()

        def attempt():
            barrier.wait()
            try:
                reservation.confirm()
                result = "ok"
            except IllegalTransitionError:
                result = "rejected"
            with outcomes_lock:
                outcomes.append(result)

        threads = [threading.Thread(target=attempt) for _ in range(workers)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert outcomes.count("ok") == 1
        assert outcomes.count("rejected") == workers - 1
        assert len(reservation.history) == 2

    @pytest.mark.integration
    @pytest.mark.edge_case
    def test_concurrent_cancel_and_confirm(self, reservation):
        """History stays consistent when cancel races with confirm"""
        barrier = threading.Barrier(2)
        errors = []

        def run(action):
            barrier.wait()
            try:
                action()
            except IllegalTransitionError as exc:
                errors.append(exc)

        threads = [
            threading.Thread(target=run, args=(reservation.confirm,)),
            threading.Thread(target=run, args=(lambda: reservation.cancel("race"),)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert reservation.status == ReservationStatus.CANCELLED
        history = reservation.history
        for previous, change in zip(history, history[1:]):
            assert change.from_status == previous.to_status
        assert len(history) == 3 - len(errors)
