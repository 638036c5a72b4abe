"""Approval chain states and transitions.

State Machine Diagram (chain instance):

    ┌──────────┐
    │ PENDING  │ ← Initial state (no entry decided yet)
    └────┬─────┘
         │ first approve
    ┌────▼────────┐
    │ IN_PROGRESS │ ◄─┐ approve (more entries pending)
    └────┬────────┘───┘
         │
         ├─────────────────────┐
         │ last approve        │ any reject
    ┌────▼─────┐         ┌─────▼────┐
    │ APPROVED │         │ REJECTED │
    └──────────┘         └──────────┘

PENDING may also go straight to APPROVED (single-entry chain) or REJECTED.

Entry states:
- PENDING → APPROVED | REJECTED (decided by the effective approver)
- PENDING → SKIPPED (branch not taken, or another entry rejected)
"""

from enum import Enum
from typing import Dict, NamedTuple, Optional, Set


class ChainStatus(str, Enum):
    """Overall status of an approval chain instance."""

    PENDING = "pending"            # No entry acted upon yet
    IN_PROGRESS = "in_progress"    # At least one entry decided, not all
    APPROVED = "approved"          # Every required entry approved
    REJECTED = "rejected"          # An entry was rejected


class EntryStatus(str, Enum):
    """Status of one resolved approver entry."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SKIPPED = "skipped"


class Decision(str, Enum):
    """Decisions an approver can submit."""

    APPROVE = "approve"
    REJECT = "reject"


class ChainTrigger(str, Enum):
    """Events that move a chain between states."""

    APPROVE_STEP = "approve_step"      # Approval, chain still has pending entries
    APPROVE_FINAL = "approve_final"    # Approval of the last pending entry
    REJECT = "reject"


class TransitionRule(NamedTuple):
    """Defines a valid chain state transition."""
    from_state: ChainStatus
    to_state: ChainStatus
    trigger: ChainTrigger


TRANSITION_RULES: list[TransitionRule] = [
    TransitionRule(ChainStatus.PENDING, ChainStatus.IN_PROGRESS, ChainTrigger.APPROVE_STEP),
    TransitionRule(ChainStatus.PENDING, ChainStatus.APPROVED, ChainTrigger.APPROVE_FINAL),
    TransitionRule(ChainStatus.PENDING, ChainStatus.REJECTED, ChainTrigger.REJECT),
    TransitionRule(ChainStatus.IN_PROGRESS, ChainStatus.IN_PROGRESS, ChainTrigger.APPROVE_STEP),
    TransitionRule(ChainStatus.IN_PROGRESS, ChainStatus.APPROVED, ChainTrigger.APPROVE_FINAL),
    TransitionRule(ChainStatus.IN_PROGRESS, ChainStatus.REJECTED, ChainTrigger.REJECT),
]

# Build lookup tables for efficient access
VALID_TRIGGERS: Dict[ChainStatus, Set[ChainTrigger]] = {}
TRANSITION_TARGETS: Dict[tuple[ChainStatus, ChainTrigger], TransitionRule] = {}

for rule in TRANSITION_RULES:
    VALID_TRIGGERS.setdefault(rule.from_state, set()).add(rule.trigger)
    TRANSITION_TARGETS[(rule.from_state, rule.trigger)] = rule


# Terminal states (no outgoing transitions)
TERMINAL_STATES: Set[ChainStatus] = {
    ChainStatus.APPROVED,
    ChainStatus.REJECTED,
}

# Entry states that record a real decision
DECIDED_ENTRY_STATES: Set[EntryStatus] = {
    EntryStatus.APPROVED,
    EntryStatus.REJECTED,
}

DECISION_OUTCOMES: Dict[Decision, EntryStatus] = {
    Decision.APPROVE: EntryStatus.APPROVED,
    Decision.REJECT: EntryStatus.REJECTED,
}


def can_transition(from_state: ChainStatus, trigger: ChainTrigger) -> bool:
    """Check if a trigger is valid from the given state."""
    return trigger in VALID_TRIGGERS.get(from_state, set())


def get_target_state(from_state: ChainStatus, trigger: ChainTrigger) -> Optional[ChainStatus]:
    """Get the target state for a trigger, or None if it is not allowed."""
    rule = TRANSITION_TARGETS.get((from_state, trigger))
    return rule.to_state if rule else None
