"""Tests for executing, auditing, and replaying booking status changes."""

from datetime import timedelta

import pytest

from carwash.errors import BookingNotFoundError, InvalidTransitionError, TransitionViolation
from carwash.events import BOOKING_CANCELLED, BOOKING_STATUS_CHANGED
from carwash.schemas.booking_schema import ActorRole, BookingStatus
from tests.conftest import FROZEN_NOW, MONDAY, make_booking, seed_booking

S = BookingStatus
R = ActorRole


@pytest.fixture
def confirmed(store):
    """Confirmed booking three days out."""
    return seed_booking(store, make_booking(1, "10:00", day=MONDAY + timedelta(days=3)))


class TestExecute:
    def test_updates_status_and_appends_history(self, workflow, store, confirmed, clock):
        updated = workflow.execute(1, S.IN_PROGRESS, actor="staff-1", role=R.STAFF)
        assert updated.status == S.IN_PROGRESS
        assert updated.updated_at == clock.now
        assert store.get_booking(1).status == S.IN_PROGRESS
        last = store.list_history(1)[-1]
        assert (last.from_status, last.to_status) == (S.CONFIRMED, S.IN_PROGRESS)
        assert last.actor == "staff-1"
        assert last.actor_role == R.STAFF

    def test_unknown_booking(self, workflow):
        with pytest.raises(BookingNotFoundError):
            workflow.execute(99, S.CONFIRMED, actor="a", role=R.ADMIN)

    def test_rejected_change_writes_nothing(self, workflow, store, confirmed):
        before = store.list_history(1)
        with pytest.raises(InvalidTransitionError) as exc:
            workflow.execute(1, S.PENDING, actor="admin", role=R.ADMIN)
        assert exc.value.violation == TransitionViolation.NO_RULE
        assert store.get_booking(1).status == S.CONFIRMED
        assert store.list_history(1) == before

    def test_terminal_booking_rejected(self, workflow, confirmed):
        workflow.execute(1, S.NO_SHOW, actor="staff", role=R.STAFF)
        with pytest.raises(InvalidTransitionError) as exc:
            workflow.execute(1, S.CANCELLED, actor="admin", role=R.ADMIN, reason="late")
        assert exc.value.violation == TransitionViolation.ALREADY_TERMINAL

    def test_uses_persisted_status(self, workflow, store, confirmed):
        workflow.execute(1, S.IN_PROGRESS, actor="staff", role=R.STAFF)
        # A caller still holding the CONFIRMED snapshot cannot start it again.
        with pytest.raises(InvalidTransitionError):
            workflow.execute(confirmed.id, S.IN_PROGRESS, actor="staff", role=R.STAFF)

    def test_reason_required_for_cancellation(self, workflow, confirmed):
        with pytest.raises(InvalidTransitionError) as exc:
            workflow.execute(1, S.CANCELLED, actor="admin", role=R.ADMIN, reason="   ")
        assert exc.value.violation == TransitionViolation.REASON_REQUIRED

    def test_customer_cancel_inside_deadline(self, workflow, store):
        """Appointment 10 hours away, 24h deadline, customer asks to cancel."""
        seed_booking(store, make_booking(1, "17:00"))
        with pytest.raises(InvalidTransitionError) as exc:
            workflow.execute(1, S.CANCELLED, actor="cust", role=R.CUSTOMER, reason="sick")
        assert exc.value.violation == TransitionViolation.CONDITION_FAILED
        assert exc.value.violation != TransitionViolation.ROLE_NOT_PERMITTED
        assert exc.value.context["violation"] == "condition_failed"

    def test_customer_cancellation_disabled(self, workflow, store, confirmed):
        store.set_config_value("allow_customer_cancellation", "false")
        with pytest.raises(InvalidTransitionError) as exc:
            workflow.execute(1, S.CANCELLED, actor="cust", role=R.CUSTOMER, reason="sick")
        assert exc.value.violation == TransitionViolation.ROLE_NOT_PERMITTED

    def test_cancel_sets_timestamp_and_reason(self, workflow, confirmed, clock):
        updated = workflow.execute(1, S.CANCELLED, actor="cust", role=R.CUSTOMER,
                                   reason=" Car sold ")
        assert updated.cancelled_at == clock.now
        assert updated.cancellation_reason == "Car sold"

    def test_complete_sets_timestamp(self, workflow, confirmed, clock):
        workflow.execute(1, S.IN_PROGRESS, actor="staff", role=R.STAFF)
        clock.advance(minutes=45)
        updated = workflow.execute(1, S.COMPLETED, actor="staff", role=R.STAFF)
        assert updated.completed_at == clock.now

    def test_direct_completion_for_admin(self, workflow, confirmed):
        updated = workflow.execute(1, S.COMPLETED, actor="admin", role=R.ADMIN)
        assert updated.status == S.COMPLETED

    def test_events_published(self, workflow, confirmed, recorded_events):
        workflow.execute(1, S.CANCELLED, actor="admin", role=R.ADMIN, reason="Weather")
        assert [e.name for e in recorded_events] == [BOOKING_STATUS_CHANGED, BOOKING_CANCELLED]
        changed = recorded_events[0]
        assert changed.old_status == S.CONFIRMED
        assert changed.new_status == S.CANCELLED
        assert changed.reason == "Weather"
        assert changed.booking.status == S.CANCELLED

    def test_no_event_on_rejection(self, workflow, confirmed, recorded_events):
        with pytest.raises(InvalidTransitionError):
            workflow.execute(1, S.PENDING, actor="admin", role=R.ADMIN)
        assert recorded_events == []

    def test_ensure_allowed_does_not_write(self, workflow, store, confirmed):
        booking = workflow.ensure_allowed(1, S.CANCELLED, R.CUSTOMER, reason="x")
        assert booking.status == S.CONFIRMED
        assert len(store.list_history(1)) == 2


class TestHistoryAndDiscovery:
    def test_history_newest_first(self, workflow, confirmed):
        workflow.execute(1, S.IN_PROGRESS, actor="staff", role=R.STAFF)
        rows = workflow.history(1)
        assert [r.to_status for r in rows] == [S.IN_PROGRESS, S.CONFIRMED, S.PENDING]

    def test_history_unknown_booking(self, workflow):
        with pytest.raises(BookingNotFoundError):
            workflow.history(5)

    def test_available_transitions(self, workflow, confirmed):
        targets = {t.to_status for t in workflow.available_transitions(1, R.CUSTOMER)}
        assert targets == {S.CANCELLED}


class TestValidate:
    def test_round_trip_after_execute(self, workflow, confirmed):
        workflow.execute(1, S.IN_PROGRESS, actor="staff", role=R.STAFF)
        workflow.execute(1, S.COMPLETED, actor="staff", role=R.STAFF)
        result = workflow.validate(1)
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_illegal_recorded_transition(self, workflow, store, confirmed):
        store.append_history(1, S.PENDING, "rogue", R.ADMIN, FROZEN_NOW, from_status=S.CONFIRMED)
        store.update_booking(store.get_booking(1).model_copy(update={"status": S.PENDING}))
        result = workflow.validate(1)
        assert not result.is_valid
        assert any("no such transition" in e for e in result.errors)

    def test_broken_chain(self, workflow, store, confirmed):
        store.append_history(1, S.COMPLETED, "rogue", R.STAFF, FROZEN_NOW,
                             from_status=S.IN_PROGRESS)
        result = workflow.validate(1)
        assert not result.is_valid
        assert any("booking was confirmed" in e for e in result.errors)

    def test_status_mismatch_is_warning(self, workflow, store, confirmed):
        store.update_booking(store.get_booking(1).model_copy(update={"status": S.IN_PROGRESS}))
        result = workflow.validate(1)
        assert result.is_valid
        assert any("does not match" in w for w in result.warnings)

    def test_missing_reason_is_warning(self, workflow, store, confirmed):
        store.append_history(1, S.CANCELLED, "legacy", R.ADMIN, FROZEN_NOW,
                             from_status=S.CONFIRMED)
        store.update_booking(store.get_booking(1).model_copy(update={"status": S.CANCELLED}))
        result = workflow.validate(1)
        assert result.is_valid
        assert any("reason required" in w for w in result.warnings)

    def test_no_history_is_warning(self, workflow, store):
        store.insert_booking(make_booking(7))
        result = workflow.validate(7)
        assert result.is_valid
        assert result.warnings == ["No status history recorded"]


class TestRestoreStatus:
    def test_reverses_last_change(self, workflow, store, confirmed):
        workflow.execute(1, S.CANCELLED, actor="admin", role=R.ADMIN, reason="oops")
        restored = workflow.restore_status(1, S.CONFIRMED, actor="system", reason="rollback")
        assert restored.status == S.CONFIRMED
        assert restored.cancelled_at is None
        assert restored.cancellation_reason is None
        last = store.list_history(1)[-1]
        assert last.compensation is True
        assert (last.from_status, last.to_status) == (S.CANCELLED, S.CONFIRMED)

    def test_compensated_history_validates(self, workflow, confirmed):
        workflow.execute(1, S.CANCELLED, actor="admin", role=R.ADMIN, reason="oops")
        workflow.restore_status(1, S.CONFIRMED, actor="system", reason="rollback")
        workflow.execute(1, S.IN_PROGRESS, actor="staff", role=R.STAFF)
        assert workflow.validate(1).is_valid

    def test_refuses_anything_but_exact_reversal(self, workflow, confirmed):
        workflow.execute(1, S.CANCELLED, actor="admin", role=R.ADMIN, reason="oops")
        with pytest.raises(InvalidTransitionError):
            workflow.restore_status(1, S.PENDING, actor="system", reason="rollback")

    def test_double_compensation_refused(self, workflow, confirmed):
        workflow.execute(1, S.CANCELLED, actor="admin", role=R.ADMIN, reason="oops")
        workflow.restore_status(1, S.CONFIRMED, actor="system", reason="rollback")
        with pytest.raises(InvalidTransitionError):
            workflow.restore_status(1, S.CANCELLED, actor="system", reason="again")
