"""Delegation rule schemas."""

from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field

from opsflow.core.workflow.templates import WorkflowCategory


class DelegationCreate(BaseModel):
    from_user_id: str = Field(..., min_length=1)
    to_user_id: str = Field(..., min_length=1)
    start_date: date
    end_date: date
    workflow_ids: List[str] = Field(default_factory=list)
    max_amount: Optional[Decimal] = None
    excluded_categories: List[WorkflowCategory] = Field(default_factory=list)
    reason: Optional[str] = None
    created_by: Optional[str] = None


class DelegationUpdate(BaseModel):
    to_user_id: Optional[str] = Field(None, min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    workflow_ids: Optional[List[str]] = None
    max_amount: Optional[Decimal] = None
    excluded_categories: Optional[List[WorkflowCategory]] = None
    reason: Optional[str] = None
