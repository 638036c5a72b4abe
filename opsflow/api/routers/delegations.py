"""Delegation rule API endpoints."""

from datetime import date
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from opsflow.api.deps import get_delegation_service
from opsflow.api.schemas.delegations import DelegationCreate, DelegationUpdate
from opsflow.core.config import get_settings
from opsflow.core.workflow.delegation import DelegationStatus
from opsflow.services.delegations import DelegationService

router = APIRouter(prefix="/delegations", tags=["delegations"])


@router.get("")
def list_delegations(
    from_user_id: Optional[str] = None,
    to_user_id: Optional[str] = None,
    status_filter: Optional[DelegationStatus] = Query(None, alias="status"),
    as_of: Optional[date] = None,
    service: DelegationService = Depends(get_delegation_service),
) -> List[Dict[str, Any]]:
    return service.list_delegations(
        from_user_id=from_user_id,
        to_user_id=to_user_id,
        status=status_filter.value if status_filter else None,
        as_of=as_of,
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_delegation(
    request: DelegationCreate,
    service: DelegationService = Depends(get_delegation_service),
) -> Dict[str, Any]:
    return service.create_delegation(
        request.from_user_id,
        request.to_user_id,
        request.start_date,
        request.end_date,
        workflow_ids=request.workflow_ids,
        max_amount=request.max_amount,
        excluded_categories=request.excluded_categories,
        reason=request.reason,
        created_by=request.created_by,
    )


@router.get("/expiring")
def list_expiring(
    within_days: Optional[int] = Query(None, ge=0),
    as_of: Optional[date] = None,
    service: DelegationService = Depends(get_delegation_service),
) -> List[Dict[str, Any]]:
    """Active rules ending soon, so delegators can extend or replace them."""
    if within_days is None:
        within_days = get_settings().delegation_expiry_warning_days
    return service.expiring_delegations(within_days=within_days, as_of=as_of)


@router.get("/stats")
def get_stats(
    as_of: Optional[date] = None,
    service: DelegationService = Depends(get_delegation_service),
) -> Dict[str, Any]:
    return service.get_stats(as_of=as_of)


@router.get("/users/{user_id}")
def list_for_user(
    user_id: str,
    as_of: Optional[date] = None,
    service: DelegationService = Depends(get_delegation_service),
) -> List[Dict[str, Any]]:
    return service.list_for_user(user_id, as_of=as_of)


@router.get("/{rule_id}")
def get_delegation(
    rule_id: UUID,
    as_of: Optional[date] = None,
    service: DelegationService = Depends(get_delegation_service),
) -> Dict[str, Any]:
    return service.get_delegation(rule_id, as_of=as_of)


@router.patch("/{rule_id}")
def update_delegation(
    rule_id: UUID,
    request: DelegationUpdate,
    service: DelegationService = Depends(get_delegation_service),
) -> Dict[str, Any]:
    return service.update_delegation(
        rule_id,
        to_user_id=request.to_user_id,
        start_date=request.start_date,
        end_date=request.end_date,
        workflow_ids=request.workflow_ids,
        max_amount=request.max_amount,
        excluded_categories=request.excluded_categories,
        reason=request.reason,
    )


@router.post("/{rule_id}/revoke")
def revoke_delegation(
    rule_id: UUID,
    service: DelegationService = Depends(get_delegation_service),
) -> Dict[str, Any]:
    return service.revoke_delegation(rule_id)
