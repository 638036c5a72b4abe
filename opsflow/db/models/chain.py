"""Approval chain database models.

Stores built chain instances, their fixed entry lists and the audit
trail of every submission and decision.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from uuid import UUID
from sqlalchemy import (
    Column, DateTime, ForeignKey, Integer, JSON, Numeric, String, Text, UniqueConstraint, Uuid,
)
from sqlalchemy.orm import relationship

from opsflow.core.approval.chain import ChainEntry, ChainInstance
from opsflow.core.approval.states import ChainStatus, EntryStatus
from opsflow.db.base import Base


def json_safe(value):
    """Make request attributes storable as JSON; Decimals keep their exact text."""
    if isinstance(value, dict):
        return {str(k): json_safe(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [json_safe(v) for v in value]
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    return value


class ApprovalChain(Base):
    """
    One resolved approval chain, created once per submitted request.

    ``lock_version`` is the mapper version counter: every update is a
    compare-and-swap on it, so two racing decisions cannot both commit.
    """
    __tablename__ = "approval_chains"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=False, index=True)

    # Pinned template; the template row may change or disappear later
    template_id = Column(Uuid, nullable=False, index=True)
    pinned_version = Column(Integer, nullable=False)
    template_snapshot = Column(JSON, nullable=False, default=dict)

    # Request
    category = Column(String(50), nullable=False, index=True)
    submitter_id = Column(String(255), nullable=False, index=True)
    submitted_at = Column(DateTime, nullable=False)
    amount = Column(Numeric(14, 2), nullable=True)
    attributes = Column(JSON, nullable=False, default=dict)

    # Workflow state
    status = Column(String(50), nullable=False, default=ChainStatus.PENDING.value, index=True)
    notifications = Column(JSON, nullable=False, default=list)
    warnings = Column(JSON, nullable=False, default=list)
    lock_version = Column(Integer, nullable=False)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    archived_at = Column(DateTime, nullable=True)

    # Relationships
    entries = relationship(
        "ApprovalChainEntry",
        back_populates="chain",
        order_by="ApprovalChainEntry.position",
        cascade="all, delete-orphan",
    )
    history = relationship(
        "ApprovalChainHistory",
        back_populates="chain",
        order_by="ApprovalChainHistory.sequence",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": lock_version}

    @classmethod
    def from_domain(cls, org_id, instance: ChainInstance) -> "ApprovalChain":
        chain = cls(
            org_id=org_id,
            template_id=instance.template_id,
            pinned_version=instance.pinned_version,
            template_snapshot=json_safe(instance.template_snapshot),
            category=instance.category,
            submitter_id=instance.submitter_id,
            submitted_at=instance.submitted_at,
            amount=instance.amount,
            attributes=json_safe(instance.attributes),
            status=instance.status.value,
            notifications=list(instance.notifications),
            warnings=list(instance.warnings),
            updated_at=instance.submitted_at,
        )
        if instance.is_terminal:
            chain.completed_at = instance.submitted_at
        chain.entries = [ApprovalChainEntry.from_domain(entry) for entry in instance.entries]
        return chain

    def to_domain(self) -> ChainInstance:
        return ChainInstance(
            template_id=self.template_id,
            pinned_version=self.pinned_version,
            category=self.category,
            submitter_id=self.submitter_id,
            submitted_at=self.submitted_at,
            entries=tuple(entry.to_domain() for entry in sorted(self.entries, key=lambda e: e.position)),
            status=ChainStatus(self.status),
            amount=self.amount,
            attributes=dict(self.attributes or {}),
            template_snapshot=dict(self.template_snapshot or {}),
            notifications=tuple(self.notifications or ()),
            warnings=tuple(self.warnings or ()),
            chain_id=self.id,
            lock_version=self.lock_version,
        )

    def __repr__(self) -> str:
        return f"<ApprovalChain {self.id} {self.category} [{self.status}]>"


class ApprovalChainEntry(Base):
    """
    One resolved approver slot of a chain.

    Rows are fixed at creation; only the status and decision columns change.
    """
    __tablename__ = "approval_chain_entries"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    chain_id = Column(Uuid, ForeignKey("approval_chains.id", ondelete="CASCADE"), nullable=False, index=True)

    position = Column(Integer, nullable=False)
    step_order = Column(Integer, nullable=False)
    kind = Column(String(50), nullable=False)

    nominal_approver_role = Column(String(255), nullable=False)
    nominal_approver_id = Column(String(255), nullable=True)
    effective_approver_id = Column(String(255), nullable=True, index=True)
    delegation_rule_id = Column(String(64), nullable=True)

    status = Column(String(50), nullable=False, default=EntryStatus.PENDING.value, index=True)
    decided_by = Column(String(255), nullable=True)
    decided_at = Column(DateTime, nullable=True)
    comment = Column(Text, nullable=True)

    # Relationships
    chain = relationship("ApprovalChain", back_populates="entries")

    __table_args__ = (
        UniqueConstraint("chain_id", "position", name="uq_approval_chain_entry_position"),
    )

    @classmethod
    def from_domain(cls, entry: ChainEntry) -> "ApprovalChainEntry":
        return cls(
            position=entry.position,
            step_order=entry.step_order,
            kind=entry.kind,
            nominal_approver_role=entry.nominal_approver_role,
            nominal_approver_id=entry.nominal_approver_id,
            effective_approver_id=entry.effective_approver_id,
            delegation_rule_id=entry.delegation_rule_id,
            status=entry.status.value,
            decided_by=entry.decided_by,
            decided_at=entry.decided_at,
            comment=entry.comment,
        )

    def apply(self, entry: ChainEntry) -> None:
        """Copy the mutable decision state of ``entry`` onto the row."""
        self.status = entry.status.value
        self.decided_by = entry.decided_by
        self.decided_at = entry.decided_at
        self.comment = entry.comment

    def to_domain(self) -> ChainEntry:
        return ChainEntry(
            position=self.position,
            step_order=self.step_order,
            kind=self.kind,
            nominal_approver_role=self.nominal_approver_role,
            nominal_approver_id=self.nominal_approver_id,
            effective_approver_id=self.effective_approver_id,
            status=EntryStatus(self.status),
            delegation_rule_id=self.delegation_rule_id,
            decided_by=self.decided_by,
            decided_at=self.decided_at,
            comment=self.comment,
        )

    def __repr__(self) -> str:
        return f"<ApprovalChainEntry {self.step_order}:{self.nominal_approver_role} [{self.status}]>"


class ApprovalChainHistory(Base):
    """
    Append-only audit trail of chain actions.

    Provides a complete record of submissions, decisions, skips and proxy
    actions taken on behalf of a delegator.
    """
    __tablename__ = "approval_chain_history"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    chain_id = Column(Uuid, ForeignKey("approval_chains.id", ondelete="CASCADE"), nullable=False, index=True)

    sequence = Column(Integer, nullable=False)  # per-chain, ascending
    action = Column(String(50), nullable=False)  # submitted, approve, reject, skipped, archived
    step_order = Column(Integer, nullable=True)
    from_status = Column(String(50), nullable=True)
    to_status = Column(String(50), nullable=True)

    # Actor
    user_id = Column(String(255), nullable=True)
    on_behalf_of = Column(String(255), nullable=True)  # nominal approver when delegated
    delegation_rule_id = Column(String(64), nullable=True)

    comment = Column(Text, nullable=True)
    extra_data = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, default=datetime.utcnow, index=True)

    # Relationships
    chain = relationship("ApprovalChain", back_populates="history")

    __table_args__ = (
        UniqueConstraint("chain_id", "sequence", name="uq_approval_chain_history_sequence"),
    )

    def to_dict(self) -> dict:
        return {
            "id": str(self.id),
            "sequence": self.sequence,
            "action": self.action,
            "step_order": self.step_order,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "user_id": self.user_id,
            "on_behalf_of": self.on_behalf_of,
            "delegation_rule_id": self.delegation_rule_id,
            "comment": self.comment,
            "extra_data": self.extra_data or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<ApprovalChainHistory {self.action} {self.from_status} -> {self.to_status}>"
