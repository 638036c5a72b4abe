"""Approval chain API endpoints.

Handlers are plain functions so FastAPI runs them in its threadpool: the
service blocks on the database and on role directory retries.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from opsflow.api.deps import get_approval_service
from opsflow.api.schemas.approvals import (
    ArchiveRequest,
    ChainEntryResponse,
    ChainResponse,
    DecisionRequest,
    HistoryResponse,
    InboxItem,
    SubmissionRequest,
)
from opsflow.api.schemas.common import PaginationParams
from opsflow.core.approval.service import ApprovalService
from opsflow.core.approval.states import ChainStatus

router = APIRouter(prefix="/chains", tags=["approvals"])


@router.post("", response_model=ChainResponse, status_code=status.HTTP_201_CREATED)
def submit_request(
    request: SubmissionRequest,
    service: ApprovalService = Depends(get_approval_service),
):
    """Resolve and persist the approval chain of a new request."""
    instance = service.submit_request(
        request.category,
        request.attributes,
        submitter_id=request.submitter_id,
        amount=request.amount,
        submitted_at=request.submitted_at,
    )
    return instance.to_dict()


@router.get("", response_model=List[ChainResponse])
def list_chains(
    service: ApprovalService = Depends(get_approval_service),
    pagination: PaginationParams = Depends(),
    status_filter: Optional[ChainStatus] = Query(None, alias="status"),
    category: Optional[str] = None,
    submitter_id: Optional[str] = None,
    include_archived: bool = False,
):
    return service.list_chains(
        status=status_filter,
        category=category,
        submitter_id=submitter_id,
        include_archived=include_archived,
        limit=pagination.limit,
        offset=pagination.offset,
    )


@router.get("/inbox", response_model=List[InboxItem])
def list_inbox(
    user_id: str = Query(..., min_length=1),
    service: ApprovalService = Depends(get_approval_service),
    pagination: PaginationParams = Depends(),
):
    """Entries awaiting a user's decision, including ones delegated to them."""
    return service.list_pending_for_approver(user_id, limit=pagination.limit, offset=pagination.offset)


@router.get("/stats")
def get_stats(
    since: Optional[datetime] = None,
    service: ApprovalService = Depends(get_approval_service),
) -> Dict[str, Any]:
    return service.get_stats(since=since)


@router.get("/{chain_id}", response_model=ChainResponse)
def get_chain(
    chain_id: UUID,
    service: ApprovalService = Depends(get_approval_service),
):
    return service.describe_chain(chain_id)


@router.get("/{chain_id}/history", response_model=List[HistoryResponse])
def get_history(
    chain_id: UUID,
    service: ApprovalService = Depends(get_approval_service),
):
    return service.get_history(chain_id)


@router.post("/{chain_id}/decisions", response_model=ChainEntryResponse)
def apply_decision(
    chain_id: UUID,
    request: DecisionRequest,
    service: ApprovalService = Depends(get_approval_service),
):
    """
    Approve or reject an entry at the chain's current step.

    Repeating a decision already recorded returns the recorded entry.
    """
    entry = service.apply_decision(
        chain_id,
        request.step_order,
        request.acting_user_id,
        request.decision,
        acted_at=request.acted_at,
        comment=request.comment,
    )
    return entry.to_dict()


@router.post("/{chain_id}/archive", response_model=ChainResponse)
def archive_chain(
    chain_id: UUID,
    request: Optional[ArchiveRequest] = None,
    service: ApprovalService = Depends(get_approval_service),
):
    service.archive_chain(chain_id, archived_by=request.archived_by if request else None)
    return service.describe_chain(chain_id)
