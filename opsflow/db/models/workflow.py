"""Workflow template database models.

Stores versioned template definitions and their ordered steps. Chains
never reference step rows: they carry a snapshot of the template as it
was when they were built.
"""

import uuid
from datetime import datetime
from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, JSON, String, Text,
    UniqueConstraint, Uuid,
)
from sqlalchemy.orm import relationship

from opsflow.core.workflow.conditions import Condition, parse_conditions
from opsflow.core.workflow.templates import Step, StepKind, WorkflowCategory, WorkflowTemplate as TemplateDefinition
from opsflow.db.base import Base


class WorkflowTemplate(Base):
    """
    A versioned approval process for one request category.

    At most one template per organization and category may be the default;
    the partial unique index enforces it at write time.
    """
    __tablename__ = "workflow_templates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=False, index=True)

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    category = Column(String(50), nullable=False, index=True)

    # Definition
    version = Column(Integer, nullable=False, default=1)
    conditions = Column(JSON, nullable=False, default=list)
    uses_tiers = Column(Boolean, nullable=False, default=False)

    # Lifecycle
    is_active = Column(Boolean, nullable=False, default=True)
    is_default = Column(Boolean, nullable=False, default=False)
    usage_count = Column(Integer, nullable=False, default=0)

    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    steps = relationship(
        "WorkflowStep",
        back_populates="template",
        order_by="WorkflowStep.step_order",
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index(
            "uq_workflow_templates_default",
            org_id,
            category,
            unique=True,
            sqlite_where=is_default == True,  # noqa: E712
            postgresql_where=is_default == True,  # noqa: E712
        ),
    )

    def to_domain(self) -> TemplateDefinition:
        """Build the validated template definition."""
        return TemplateDefinition(
            template_id=self.id,
            name=self.name,
            category=WorkflowCategory(self.category),
            steps=tuple(step.to_domain() for step in sorted(self.steps, key=lambda s: s.step_order)),
            conditions=parse_conditions(self.conditions or []),
            version=self.version,
            is_active=self.is_active,
            is_default=self.is_default,
            uses_tiers=self.uses_tiers,
            usage_count=self.usage_count or 0,
        )

    def __repr__(self) -> str:
        return f"<WorkflowTemplate {self.name} v{self.version} [{self.category}]>"


class WorkflowStep(Base):
    """One step of a workflow template."""
    __tablename__ = "workflow_steps"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    template_id = Column(Uuid, ForeignKey("workflow_templates.id", ondelete="CASCADE"), nullable=False, index=True)

    step_order = Column(Integer, nullable=False)
    kind = Column(String(50), nullable=False)
    name = Column(String(255), nullable=True)

    approver_role = Column(String(255), nullable=True)   # approval, review, notification
    condition = Column(JSON, nullable=True)               # condition
    branch_target = Column(Integer, nullable=True)        # condition
    parallel_roles = Column(JSON, nullable=False, default=list)  # parallel

    # Relationships
    template = relationship("WorkflowTemplate", back_populates="steps")

    __table_args__ = (
        UniqueConstraint("template_id", "step_order", name="uq_workflow_steps_order"),
    )

    @classmethod
    def from_domain(cls, step: Step) -> "WorkflowStep":
        return cls(
            step_order=step.order,
            kind=step.kind.value,
            name=step.name,
            approver_role=step.approver_role,
            condition=step.condition.to_dict() if step.condition else None,
            branch_target=step.branch_target,
            parallel_roles=list(step.parallel_roles),
        )

    def to_domain(self) -> Step:
        return Step(
            order=self.step_order,
            kind=StepKind(self.kind),
            approver_role=self.approver_role,
            condition=Condition.from_dict(self.condition) if self.condition else None,
            branch_target=self.branch_target,
            parallel_roles=tuple(self.parallel_roles or ()),
            name=self.name,
            step_id=self.id,
        )

    def __repr__(self) -> str:
        return f"<WorkflowStep {self.step_order} {self.kind}>"
