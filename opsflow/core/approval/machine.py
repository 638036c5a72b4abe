"""Approval chain state machine.

Applies approve/reject decisions to a chain instance. The machine is pure:
it never mutates the instance it was given, it returns the successor
instance together with the events the decision produced. Persistence and
concurrency control belong to ApprovalService.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional

from opsflow.core.errors import (
    AlreadyDecidedError,
    OutOfOrderDecisionError,
    TerminalInstanceError,
    UnauthorizedDecisionError,
)

from .chain import ChainEntry, ChainInstance
from .states import (
    ChainStatus,
    ChainTrigger,
    Decision,
    DECIDED_ENTRY_STATES,
    DECISION_OUTCOMES,
    EntryStatus,
    get_target_state,
)


class ChainEventType:
    """Outbound event names."""

    ENTRY_STATUS_CHANGED = "entry_status_changed"
    CHAIN_STATUS_CHANGED = "chain_status_changed"
    APPROVAL_REQUESTED = "approval_requested"
    NOTIFICATION_POINT = "notification_point"


@dataclass(frozen=True)
class ChainEvent:
    """A status change consumed by notification collaborators."""
    event_type: str
    chain_id: Any
    occurred_at: datetime
    step_order: Optional[int] = None
    user_id: Optional[str] = None
    role: Optional[str] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "event_type": self.event_type,
            "chain_id": str(self.chain_id) if self.chain_id is not None else None,
            "occurred_at": self.occurred_at.isoformat(),
            "step_order": self.step_order,
            "user_id": self.user_id,
            "role": self.role,
            "from_status": self.from_status,
            "to_status": self.to_status,
        }


@dataclass
class DecisionOutcome:
    """Result of applying one decision."""
    instance: ChainInstance
    entry: ChainEntry
    changed: List[ChainEntry] = field(default_factory=list)
    events: List[ChainEvent] = field(default_factory=list)
    idempotent: bool = False


class ApprovalStateMachine:
    """
    State machine for one approval chain instance.

    Decision rules:
    - Only the effective approver of a pending entry at the current step
      may decide it; parallel siblings may be decided in any order. A user
      holding several slots of a parallel group decides them all at once.
    - Repeating a decision already recorded for the same user returns the
      recorded entry unchanged; a conflicting repeat raises
      AlreadyDecidedError.
    - A rejection rejects the chain and skips every pending entry.
    - The last approval of a step advances to the next step, and the last
      approval of the chain approves it.
    """

    def __init__(self, instance: ChainInstance):
        self.instance = instance

    @property
    def state(self) -> ChainStatus:
        return self.instance.status

    @property
    def is_terminal(self) -> bool:
        return self.instance.is_terminal

    def apply_decision(
        self,
        step_order: int,
        acting_user_id: str,
        decision: Decision,
        *,
        acted_at: datetime,
        comment: Optional[str] = None,
    ) -> DecisionOutcome:
        """
        Apply a decision to the chain.

        Args:
            step_order: Step the decision targets
            acting_user_id: User submitting the decision
            decision: Approve or reject
            acted_at: When the decision was made
            comment: Optional comment recorded on the entry

        Returns:
            DecisionOutcome with the successor instance

        Raises:
            AlreadyDecidedError: If the user already decided otherwise
            TerminalInstanceError: If the chain is approved or rejected
            UnauthorizedDecisionError: If the user has no pending entry at the step
            OutOfOrderDecisionError: If the step is not the current one
        """
        decision = Decision(decision)
        instance = self.instance
        outcome_status = DECISION_OUTCOMES[decision]
        mine = [e for e in instance.entries_at(step_order) if e.effective_approver_id == acting_user_id]

        # Redelivered decisions are answered before any other check
        decided = [e for e in mine if e.status in DECIDED_ENTRY_STATES]
        pending = [e for e in mine if e.status == EntryStatus.PENDING]
        if decided and not pending:
            same = [e for e in decided if e.status == outcome_status]
            if same:
                return DecisionOutcome(instance=instance, entry=same[0], idempotent=True)
            raise AlreadyDecidedError(
                f"{acting_user_id} already {decided[0].status.value} step {step_order}",
                step_order=step_order,
                status=decided[0].status.value,
            )

        if instance.is_terminal:
            raise TerminalInstanceError(
                f"Chain is {instance.status.value}; no further decisions are accepted",
                status=instance.status.value,
            )

        if not pending:
            raise UnauthorizedDecisionError(
                f"{acting_user_id} is not a pending approver at step {step_order}",
                step_order=step_order,
                acting_user_id=acting_user_id,
            )

        current = instance.current_step
        if step_order != current:
            raise OutOfOrderDecisionError(step_order, current)

        # One decision covers every slot the user holds at this step
        changed = [
            replace(e, status=outcome_status, decided_by=acting_user_id, decided_at=acted_at, comment=comment)
            for e in pending
        ]
        decided_entry = changed[0]
        positions = {e.position for e in changed}

        if decision == Decision.REJECT:
            changed.extend(
                replace(e, status=EntryStatus.SKIPPED)
                for e in instance.entries
                if e.status == EntryStatus.PENDING and e.position not in positions
            )

        successor = self._with_entries(instance, changed)
        trigger = self._trigger_for(decision, successor)
        new_status = get_target_state(instance.status, trigger)
        successor = replace(successor, status=new_status)

        events = self._events(instance, successor, changed, acted_at)
        return DecisionOutcome(instance=successor, entry=decided_entry, changed=changed, events=events)

    @staticmethod
    def _with_entries(instance: ChainInstance, changed: List[ChainEntry]) -> ChainInstance:
        by_position = {e.position: e for e in changed}
        entries = tuple(by_position.get(e.position, e) for e in instance.entries)
        return replace(instance, entries=entries)

    @staticmethod
    def _trigger_for(decision: Decision, successor: ChainInstance) -> ChainTrigger:
        if decision == Decision.REJECT:
            return ChainTrigger.REJECT
        if successor.current_step is None:
            return ChainTrigger.APPROVE_FINAL
        return ChainTrigger.APPROVE_STEP

    @staticmethod
    def _events(
        before: ChainInstance,
        after: ChainInstance,
        changed: List[ChainEntry],
        acted_at: datetime,
    ) -> List[ChainEvent]:
        previous = {e.position: e for e in before.entries}
        events = [
            ChainEvent(
                event_type=ChainEventType.ENTRY_STATUS_CHANGED,
                chain_id=after.chain_id,
                occurred_at=acted_at,
                step_order=entry.step_order,
                user_id=entry.effective_approver_id,
                role=entry.nominal_approver_role,
                from_status=previous[entry.position].status.value,
                to_status=entry.status.value,
            )
            for entry in changed
        ]

        if before.status != after.status:
            events.append(ChainEvent(
                event_type=ChainEventType.CHAIN_STATUS_CHANGED,
                chain_id=after.chain_id,
                occurred_at=acted_at,
                from_status=before.status.value,
                to_status=after.status.value,
            ))

        # A new current step means its approvers must be asked
        if after.current_step is not None and after.current_step != before.current_step:
            events.extend(approval_requests(after, acted_at))
        events.extend(notification_points(before, after, acted_at))
        return events


def approval_requests(instance: ChainInstance, occurred_at: datetime) -> List[ChainEvent]:
    """Events asking the approvers of the current step to act."""
    return [
        ChainEvent(
            event_type=ChainEventType.APPROVAL_REQUESTED,
            chain_id=instance.chain_id,
            occurred_at=occurred_at,
            step_order=entry.step_order,
            user_id=entry.effective_approver_id,
            role=entry.nominal_approver_role,
        )
        for entry in instance.awaiting()
    ]


def notification_points(
    before: Optional[ChainInstance],
    after: ChainInstance,
    occurred_at: datetime,
) -> List[ChainEvent]:
    """
    Notification steps the chain moved past.

    A notification at order N fires once every decision step before N is
    done; a rejected chain announces nothing further.
    """
    if after.status == ChainStatus.REJECTED:
        return []

    def reached(instance: Optional[ChainInstance], order: int) -> bool:
        if instance is None:
            return False
        current = instance.current_step
        return current is None or current > order

    return [
        ChainEvent(
            event_type=ChainEventType.NOTIFICATION_POINT,
            chain_id=after.chain_id,
            occurred_at=occurred_at,
            step_order=point["step_order"],
            role=point["role"],
        )
        for point in after.notifications
        if reached(after, point["step_order"]) and not reached(before, point["step_order"])
    ]
