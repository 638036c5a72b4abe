"""Workflow template definitions.

A template is the versioned definition of the approval process for one
request category. Templates are validated on construction so a malformed
definition can never reach the chain builder.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple
from uuid import UUID

from opsflow.core.errors import InvalidTemplateError
from opsflow.core.workflow.conditions import Condition, parse_conditions


class WorkflowCategory(str, Enum):
    """Request categories that can carry an approval workflow."""

    PURCHASE = "purchase"
    TIME_OFF = "time_off"
    PERMIT = "permit"
    EXPENSE = "expense"
    CONTRACT = "contract"
    CUSTOM = "custom"


class StepKind(str, Enum):
    """Kinds of template steps."""

    APPROVAL = "approval"          # One approver must approve
    REVIEW = "review"              # One reviewer must sign off
    NOTIFICATION = "notification"  # Inform a role, no decision required
    CONDITION = "condition"        # Branch on request attributes
    PARALLEL = "parallel"          # All sibling roles must approve


# Steps that resolve to an approver who must decide
DECISION_KINDS = {StepKind.APPROVAL, StepKind.REVIEW, StepKind.PARALLEL}


@dataclass(frozen=True)
class Step:
    """
    One unit of a template's process.

    ``branch_target`` is the order of the step to continue from when a
    condition step evaluates False; ``len(steps) + 1`` means "end of
    template". When the condition holds, evaluation continues with the next
    step.
    """
    order: int
    kind: StepKind
    approver_role: Optional[str] = None
    condition: Optional[Condition] = None
    branch_target: Optional[int] = None
    parallel_roles: Tuple[str, ...] = ()
    name: Optional[str] = None
    step_id: Optional[UUID] = None

    def __post_init__(self):
        if self.kind in (StepKind.APPROVAL, StepKind.REVIEW, StepKind.NOTIFICATION):
            if not self.approver_role:
                raise InvalidTemplateError(f"Step {self.order} ({self.kind.value}) requires an approver role")
        elif self.kind == StepKind.PARALLEL:
            if not self.parallel_roles:
                raise InvalidTemplateError(f"Parallel step {self.order} requires at least one role")
            if len(set(self.parallel_roles)) != len(self.parallel_roles):
                raise InvalidTemplateError(f"Parallel step {self.order} lists a role twice")
        elif self.kind == StepKind.CONDITION:
            if self.condition is None:
                raise InvalidTemplateError(f"Condition step {self.order} requires a condition")
            if self.branch_target is None:
                raise InvalidTemplateError(f"Condition step {self.order} requires a branch target")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order": self.order,
            "kind": self.kind.value,
            "name": self.name,
            "approver_role": self.approver_role,
            "condition": self.condition.to_dict() if self.condition else None,
            "branch_target": self.branch_target,
            "parallel_roles": list(self.parallel_roles),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Step":
        try:
            kind = StepKind(data["kind"])
        except (KeyError, ValueError):
            raise InvalidTemplateError(f"Unsupported step kind: {data.get('kind')!r}") from None
        if "order" not in data:
            raise InvalidTemplateError("Step definition requires an order")
        condition = data.get("condition")
        return cls(
            order=int(data["order"]),
            kind=kind,
            approver_role=data.get("approver_role"),
            condition=Condition.from_dict(condition) if condition else None,
            branch_target=data.get("branch_target"),
            parallel_roles=tuple(data.get("parallel_roles") or ()),
            name=data.get("name"),
        )


@dataclass(frozen=True)
class WorkflowTemplate:
    """
    A named, versioned definition of an approval process.

    ``uses_tiers`` marks templates whose category contributes the monetary
    tier ladder; its roles are appended after the fixed steps.
    """
    template_id: UUID
    name: str
    category: WorkflowCategory
    steps: Tuple[Step, ...] = ()
    conditions: Tuple[Condition, ...] = ()
    version: int = 1
    is_active: bool = True
    is_default: bool = False
    uses_tiers: bool = False
    usage_count: int = 0

    def __post_init__(self):
        validate_steps(self.steps)
        if self.version < 1:
            raise InvalidTemplateError(f"Template version must be positive, got {self.version}")
        if not self.steps and not self.uses_tiers:
            raise InvalidTemplateError(f"Template {self.name!r} defines no steps and no tiers")

    def to_dict(self) -> Dict[str, Any]:
        """Snapshot of the definition, as pinned on chain instances."""
        return {
            "template_id": str(self.template_id),
            "name": self.name,
            "category": self.category.value,
            "version": self.version,
            "uses_tiers": self.uses_tiers,
            "conditions": [c.to_dict() for c in self.conditions],
            "steps": [s.to_dict() for s in self.steps],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "WorkflowTemplate":
        try:
            category = WorkflowCategory(data["category"])
        except (KeyError, ValueError):
            raise InvalidTemplateError(f"Unsupported category: {data.get('category')!r}") from None
        return cls(
            template_id=UUID(str(data["template_id"])),
            name=data.get("name", ""),
            category=category,
            steps=tuple(sorted((Step.from_dict(s) for s in data.get("steps", [])), key=lambda s: s.order)),
            conditions=parse_conditions(data.get("conditions", [])),
            version=int(data.get("version", 1)),
            is_active=data.get("is_active", True),
            is_default=data.get("is_default", False),
            uses_tiers=data.get("uses_tiers", False),
        )


def validate_steps(steps: Tuple[Step, ...]) -> None:
    """
    Validate step ordering and branch targets.

    Orders must be unique and contiguous from 1. A condition step may only
    branch forward, at most to one past the last step.

    Raises:
        InvalidTemplateError: If the steps are inconsistent
    """
    orders = [step.order for step in steps]
    if orders != list(range(1, len(steps) + 1)):
        raise InvalidTemplateError(
            f"Step orders must be contiguous from 1 and sorted, got {orders}"
        )

    end = len(steps) + 1
    for step in steps:
        if step.kind == StepKind.CONDITION:
            if not step.order < step.branch_target <= end:
                raise InvalidTemplateError(
                    f"Condition step {step.order} branches to {step.branch_target}, "
                    f"expected a target in {step.order + 1}..{end}"
                )
