"""Approval chain schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from opsflow.core.approval.states import ChainStatus, Decision, EntryStatus
from opsflow.core.workflow.templates import WorkflowCategory


class SubmissionRequest(BaseModel):
    category: WorkflowCategory
    attributes: Dict[str, Any] = Field(default_factory=dict)
    amount: Optional[Decimal] = None
    submitter_id: str = Field(..., min_length=1)
    submitted_at: Optional[datetime] = None


class DecisionRequest(BaseModel):
    step_order: int = Field(..., ge=1)
    acting_user_id: str = Field(..., min_length=1)
    decision: Decision
    acted_at: Optional[datetime] = None
    comment: Optional[str] = None


class ArchiveRequest(BaseModel):
    archived_by: Optional[str] = None


class ChainEntryResponse(BaseModel):
    position: int
    step_order: int
    kind: str
    nominal_approver_role: str
    nominal_approver_id: Optional[str]
    effective_approver_id: Optional[str]
    status: EntryStatus
    delegation_rule_id: Optional[str]
    decided_by: Optional[str]
    decided_at: Optional[datetime]
    comment: Optional[str]


class ChainResponse(BaseModel):
    chain_id: UUID
    template_id: UUID
    pinned_version: int
    category: str
    submitter_id: str
    submitted_at: datetime
    amount: Optional[str]
    attributes: Dict[str, Any]
    status: ChainStatus
    current_step: Optional[int]
    entries: List[ChainEntryResponse]
    notifications: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    completed_at: Optional[datetime] = None
    archived_at: Optional[datetime] = None


class InboxItem(BaseModel):
    chain_id: UUID
    category: str
    submitter_id: str
    submitted_at: datetime
    amount: Optional[str]
    step_order: int
    role: str
    on_behalf_of: Optional[str]


class HistoryResponse(BaseModel):
    id: UUID
    sequence: int
    action: str
    step_order: Optional[int]
    from_status: Optional[str]
    to_status: Optional[str]
    user_id: Optional[str]
    on_behalf_of: Optional[str]
    delegation_rule_id: Optional[str]
    comment: Optional[str]
    extra_data: Dict[str, Any] = {}
    created_at: Optional[datetime]
