"""Tests for the approval chain state machine."""

import uuid
from datetime import datetime

import pytest

from opsflow.core.approval.chain import ChainEntry, ChainInstance
from opsflow.core.approval.machine import (
    ApprovalStateMachine,
    ChainEventType,
    approval_requests,
    notification_points,
)
from opsflow.core.approval.states import ChainStatus, Decision, EntryStatus
from opsflow.core.errors import (
    AlreadyDecidedError,
    OutOfOrderDecisionError,
    TerminalInstanceError,
    UnauthorizedDecisionError,
)


ACTED_AT = datetime(2024, 3, 6, 10, 0)


def entry(position, step_order, user, role=None, *, nominal=None, status=EntryStatus.PENDING):
    return ChainEntry(
        position=position,
        step_order=step_order,
        kind="approval",
        nominal_approver_role=role or f"role-{position}",
        nominal_approver_id=nominal or user,
        effective_approver_id=user,
        status=status,
    )


def chain(*entries, status=ChainStatus.PENDING, notifications=()):
    return ChainInstance(
        template_id=uuid.uuid4(),
        pinned_version=1,
        category="purchase",
        submitter_id="E1",
        submitted_at=datetime(2024, 3, 5, 9, 30),
        entries=tuple(entries),
        status=status,
        notifications=tuple(notifications),
        chain_id=uuid.uuid4(),
    )


def decide(instance, step_order, user, decision=Decision.APPROVE, **kwargs):
    return ApprovalStateMachine(instance).apply_decision(step_order, user, decision, acted_at=ACTED_AT, **kwargs)


class TestApprove:
    """Test approvals."""

    def test_first_approval_moves_to_in_progress(self):
        instance = chain(entry(0, 1, "U1"), entry(1, 2, "D1"))
        outcome = decide(instance, 1, "U1", comment="ok")

        assert outcome.instance.status == ChainStatus.IN_PROGRESS
        assert outcome.entry.status == EntryStatus.APPROVED
        assert outcome.entry.decided_by == "U1"
        assert outcome.entry.decided_at == ACTED_AT
        assert outcome.entry.comment == "ok"
        assert outcome.instance.current_step == 2
        assert not outcome.idempotent

    def test_machine_does_not_mutate_input(self):
        instance = chain(entry(0, 1, "U1"))
        decide(instance, 1, "U1")
        assert instance.entries[0].status == EntryStatus.PENDING
        assert instance.status == ChainStatus.PENDING

    def test_last_approval_approves_chain(self):
        instance = chain(entry(0, 1, "U1", status=EntryStatus.APPROVED), entry(1, 2, "D1"), status=ChainStatus.IN_PROGRESS)
        outcome = decide(instance, 2, "D1")
        assert outcome.instance.status == ChainStatus.APPROVED
        assert outcome.instance.current_step is None

    def test_single_entry_chain_goes_straight_to_approved(self):
        outcome = decide(chain(entry(0, 1, "U1")), 1, "U1")
        assert outcome.instance.status == ChainStatus.APPROVED

    def test_parallel_siblings_in_any_order(self):
        instance = chain(entry(0, 1, "L1"), entry(1, 1, "F1"), entry(2, 2, "D1"))
        after_finance = decide(instance, 1, "F1").instance
        assert after_finance.current_step == 1

        after_legal = decide(after_finance, 1, "L1").instance
        assert after_legal.current_step == 2
        assert after_legal.status == ChainStatus.IN_PROGRESS

    def test_same_user_in_two_parallel_slots(self):
        instance = chain(entry(0, 1, "U2", "legal", nominal="L1"), entry(1, 1, "U2", "finance", nominal="F1"), entry(2, 2, "D1"))
        first = decide(instance, 1, "U2")

        assert first.entry.position == 0
        assert {e.position for e in first.changed} == {0, 1}
        assert first.instance.current_step == 2
        assert [e.status for e in first.instance.entries[:2]] == [EntryStatus.APPROVED, EntryStatus.APPROVED]

        second = decide(first.instance, 1, "U2")
        assert second.idempotent
        assert second.instance is first.instance
        assert second.entry == first.entry

    def test_same_user_rejecting_two_parallel_slots(self):
        instance = chain(entry(0, 1, "U2", "legal"), entry(1, 1, "U2", "finance"), entry(2, 2, "D1"))
        outcome = decide(instance, 1, "U2", Decision.REJECT)
        statuses = [e.status for e in outcome.instance.entries]
        assert statuses == [EntryStatus.REJECTED, EntryStatus.REJECTED, EntryStatus.SKIPPED]


class TestReject:
    """Test rejections."""

    def test_reject_short_circuits(self):
        instance = chain(entry(0, 1, "L1"), entry(1, 1, "F1"), entry(2, 2, "D1"))
        outcome = decide(instance, 1, "L1", Decision.REJECT, comment="no budget")

        assert outcome.instance.status == ChainStatus.REJECTED
        statuses = [e.status for e in outcome.instance.entries]
        assert statuses == [EntryStatus.REJECTED, EntryStatus.SKIPPED, EntryStatus.SKIPPED]
        assert {e.position for e in outcome.changed} == {0, 1, 2}

    def test_skipped_approver_cannot_act_afterwards(self):
        instance = chain(entry(0, 1, "L1"), entry(1, 1, "F1"))
        rejected = decide(instance, 1, "L1", Decision.REJECT).instance
        with pytest.raises(TerminalInstanceError):
            decide(rejected, 1, "F1")


class TestDecisionErrors:
    """Test rejected decisions."""

    def test_unknown_user(self):
        with pytest.raises(UnauthorizedDecisionError):
            decide(chain(entry(0, 1, "U1")), 1, "X9")

    def test_nominal_approver_cannot_act_when_delegated(self):
        instance = chain(entry(0, 1, "U2", nominal="U1"))
        with pytest.raises(UnauthorizedDecisionError):
            decide(instance, 1, "U1")
        assert decide(instance, 1, "U2").entry.status == EntryStatus.APPROVED

    def test_out_of_order(self):
        instance = chain(entry(0, 1, "U1"), entry(1, 2, "D1"))
        with pytest.raises(OutOfOrderDecisionError) as exc_info:
            decide(instance, 2, "D1")
        assert exc_info.value.current_step == 1

    def test_terminal_chain(self):
        instance = chain(entry(0, 1, "U1", status=EntryStatus.APPROVED), status=ChainStatus.APPROVED)
        with pytest.raises(TerminalInstanceError):
            decide(instance, 1, "D1")

    def test_conflicting_repeat(self):
        instance = chain(entry(0, 1, "U1", status=EntryStatus.APPROVED), entry(1, 2, "D1"), status=ChainStatus.IN_PROGRESS)
        with pytest.raises(AlreadyDecidedError):
            decide(instance, 1, "U1", Decision.REJECT)


class TestIdempotency:
    """Test redelivered decisions."""

    def test_repeat_returns_recorded_entry(self):
        first = decide(chain(entry(0, 1, "U1"), entry(1, 2, "D1")), 1, "U1")
        again = decide(first.instance, 1, "U1")

        assert again.idempotent
        assert again.entry == first.entry
        assert again.instance == first.instance
        assert again.events == []

    def test_repeat_after_chain_completed(self):
        first = decide(chain(entry(0, 1, "U1")), 1, "U1")
        again = decide(first.instance, 1, "U1")
        assert again.idempotent
        assert again.instance.status == ChainStatus.APPROVED

    def test_repeat_reject_on_rejected_chain(self):
        first = decide(chain(entry(0, 1, "U1"), entry(1, 2, "D1")), 1, "U1", Decision.REJECT)
        assert decide(first.instance, 1, "U1", Decision.REJECT).idempotent


class TestEvents:
    """Test events emitted by decisions."""

    def test_step_advance_events(self):
        instance = chain(entry(0, 1, "U1", "manager"), entry(1, 2, "D1", "director"))
        events = decide(instance, 1, "U1").events
        types = [e.event_type for e in events]

        assert types == [
            ChainEventType.ENTRY_STATUS_CHANGED,
            ChainEventType.CHAIN_STATUS_CHANGED,
            ChainEventType.APPROVAL_REQUESTED,
        ]
        assert events[0].from_status == "pending" and events[0].to_status == "approved"
        assert events[1].to_status == "in_progress"
        assert events[2].user_id == "D1"
        assert events[2].role == "director"

    def test_no_chain_event_when_status_unchanged(self):
        instance = chain(
            entry(0, 1, "U1", status=EntryStatus.APPROVED), entry(1, 2, "L1"), entry(2, 2, "F1"),
            status=ChainStatus.IN_PROGRESS,
        )
        events = decide(instance, 2, "L1").events
        assert [e.event_type for e in events] == [ChainEventType.ENTRY_STATUS_CHANGED]

    def test_notification_fires_once_reached(self):
        instance = chain(
            entry(0, 1, "U1"), entry(1, 3, "D1"),
            notifications=[{"step_order": 2, "role": "hr"}],
        )
        events = decide(instance, 1, "U1").events
        points = [e for e in events if e.event_type == ChainEventType.NOTIFICATION_POINT]
        assert len(points) == 1
        assert points[0].role == "hr"
        assert points[0].step_order == 2

    def test_rejection_silences_notifications(self):
        instance = chain(entry(0, 1, "U1"), notifications=[{"step_order": 2, "role": "hr"}])
        events = decide(instance, 1, "U1", Decision.REJECT).events
        assert not [e for e in events if e.event_type == ChainEventType.NOTIFICATION_POINT]

    def test_submission_events(self):
        instance = chain(
            entry(0, 2, "U1"),
            notifications=[{"step_order": 1, "role": "hr"}, {"step_order": 3, "role": "finance"}],
        )
        requested = approval_requests(instance, ACTED_AT)
        points = notification_points(None, instance, ACTED_AT)

        assert [e.user_id for e in requested] == ["U1"]
        assert [e.role for e in points] == ["hr"]

    def test_event_serialization(self):
        event = decide(chain(entry(0, 1, "U1")), 1, "U1").events[0]
        data = event.to_dict()
        assert data["occurred_at"] == ACTED_AT.isoformat()
        assert data["event_type"] == "entry_status_changed"
