"""Workflow template schemas."""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from opsflow.core.workflow.conditions import Comparator
from opsflow.core.workflow.templates import StepKind, WorkflowCategory


class ConditionSchema(BaseModel):
    attribute: str = Field(..., min_length=1)
    comparator: Comparator
    value: Any = None


class StepSchema(BaseModel):
    order: int = Field(..., ge=1)
    kind: StepKind
    name: Optional[str] = None
    approver_role: Optional[str] = None
    condition: Optional[ConditionSchema] = None
    branch_target: Optional[int] = None
    parallel_roles: List[str] = Field(default_factory=list)


class TemplateCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    category: WorkflowCategory
    description: Optional[str] = None
    steps: List[StepSchema] = Field(default_factory=list)
    conditions: List[ConditionSchema] = Field(default_factory=list)
    uses_tiers: bool = False
    is_active: bool = True
    is_default: bool = False
    created_by: Optional[str] = None


class TemplateUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = None
    steps: Optional[List[StepSchema]] = None
    conditions: Optional[List[ConditionSchema]] = None
    uses_tiers: Optional[bool] = None


class SetDefaultRequest(BaseModel):
    replace_existing: bool = False


class TierRuleSchema(BaseModel):
    threshold_amount: Decimal = Field(..., ge=0)
    approver_roles: List[str] = Field(..., min_length=1)
    name: Optional[str] = None


def dump_steps(steps: List[StepSchema]) -> List[Dict[str, Any]]:
    return [step.model_dump(mode="json") for step in steps]


def dump_conditions(conditions: List[ConditionSchema]) -> List[Dict[str, Any]]:
    return [condition.model_dump(mode="json") for condition in conditions]
