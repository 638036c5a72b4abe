"""Approval chain module for OpsFlow.

Implements chain instances and the approval decision state machine.
ApprovalService lives in opsflow.core.approval.service and is imported
from there directly.
"""

from .states import ChainStatus, EntryStatus, Decision, ChainTrigger, TERMINAL_STATES
from .chain import ChainEntry, ChainInstance
from .machine import ApprovalStateMachine, ChainEvent, ChainEventType, DecisionOutcome

__all__ = [
    "ChainStatus",
    "EntryStatus",
    "Decision",
    "ChainTrigger",
    "TERMINAL_STATES",
    "ChainEntry",
    "ChainInstance",
    "ApprovalStateMachine",
    "ChainEvent",
    "ChainEventType",
    "DecisionOutcome",
]
