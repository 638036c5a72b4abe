"""Resolved approval chain instances.

A chain instance is built once per submitted request. Its entry list and
pinned template version never change; only entry statuses and the overall
status move forward.
"""

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from .states import ChainStatus, EntryStatus, TERMINAL_STATES


@dataclass(frozen=True)
class ChainEntry:
    """One resolved approver slot. Parallel siblings share ``step_order``."""
    position: int
    step_order: int
    kind: str
    nominal_approver_role: str
    nominal_approver_id: Optional[str]
    effective_approver_id: Optional[str]
    status: EntryStatus = EntryStatus.PENDING
    delegation_rule_id: Optional[str] = None
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    comment: Optional[str] = None

    @property
    def is_delegated(self) -> bool:
        return (
            self.effective_approver_id is not None
            and self.effective_approver_id != self.nominal_approver_id
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "position": self.position,
            "step_order": self.step_order,
            "kind": self.kind,
            "nominal_approver_role": self.nominal_approver_role,
            "nominal_approver_id": self.nominal_approver_id,
            "effective_approver_id": self.effective_approver_id,
            "status": self.status.value,
            "delegation_rule_id": self.delegation_rule_id,
            "decided_by": self.decided_by,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
            "comment": self.comment,
        }


@dataclass(frozen=True)
class ChainInstance:
    """
    The frozen, per-request resolved sequence of approvers.

    ``chain_id`` and ``lock_version`` are assigned by persistence; a freshly
    built instance has neither, so building twice from the same inputs
    yields equal instances.
    """
    template_id: Any
    pinned_version: int
    category: str
    submitter_id: str
    submitted_at: datetime
    entries: Tuple[ChainEntry, ...]
    status: ChainStatus = ChainStatus.PENDING
    amount: Optional[Decimal] = None
    attributes: Dict[str, Any] = field(default_factory=dict)
    template_snapshot: Dict[str, Any] = field(default_factory=dict)
    notifications: Tuple[Dict[str, Any], ...] = ()
    warnings: Tuple[Dict[str, Any], ...] = ()
    chain_id: Any = None
    lock_version: Optional[int] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def current_step(self) -> Optional[int]:
        """Lowest step order that still has a pending entry."""
        pending = [e.step_order for e in self.entries if e.status == EntryStatus.PENDING]
        return min(pending) if pending else None

    def entries_at(self, step_order: int) -> List[ChainEntry]:
        return [e for e in self.entries if e.step_order == step_order]

    def awaiting(self) -> List[ChainEntry]:
        """Pending entries at the current step."""
        current = self.current_step
        if current is None or self.is_terminal:
            return []
        return [e for e in self.entries_at(current) if e.status == EntryStatus.PENDING]

    def step_orders(self) -> List[int]:
        return sorted({e.step_order for e in self.entries})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chain_id": str(self.chain_id) if self.chain_id is not None else None,
            "template_id": str(self.template_id),
            "pinned_version": self.pinned_version,
            "category": self.category,
            "submitter_id": self.submitter_id,
            "submitted_at": self.submitted_at.isoformat(),
            "amount": str(self.amount) if self.amount is not None else None,
            "attributes": self.attributes,
            "status": self.status.value,
            "current_step": self.current_step,
            "entries": [e.to_dict() for e in self.entries],
            "notifications": list(self.notifications),
            "warnings": list(self.warnings),
        }
