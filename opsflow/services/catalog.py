"""Workflow template catalog administration.

Template edits never touch chains that were already built: a definition
change bumps ``version`` and only chains built afterwards see it. The
per-category default invariant is enforced here, at write time, instead
of surfacing as an ambiguity at match time.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union
from uuid import UUID

from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from opsflow.core.errors import (
    ApprovalEngineError,
    DefaultTemplateError,
    DependencyError,
    TemplateNotFoundError,
)
from opsflow.core.workflow.conditions import Condition
from opsflow.core.workflow.matcher import parse_category
from opsflow.core.workflow.templates import Step, WorkflowTemplate as TemplateDefinition
from opsflow.core.workflow.tiers import TierRule, validate_tier_rules
from opsflow.db.models import ApprovalTierRule, WorkflowStep, WorkflowTemplate
from opsflow.db.models.chain import json_safe

logger = logging.getLogger(__name__)

StepInput = Union[Step, Mapping[str, Any]]
ConditionInput = Union[Condition, Mapping[str, Any]]


class TemplateCatalogService:
    """
    Service for managing workflow templates and tier ladders.

    Every public write commits on success and rolls back on failure.
    """

    def __init__(self, db: Session, org_id: UUID):
        self.db = db
        self.org_id = org_id

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    def create_template(
        self,
        name: str,
        category: Any,
        *,
        steps: Iterable[StepInput] = (),
        conditions: Iterable[ConditionInput] = (),
        uses_tiers: bool = False,
        is_active: bool = True,
        is_default: bool = False,
        description: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a template at version 1.

        Raises:
            InvalidTemplateError: If the definition is malformed
            DefaultTemplateError: If the category already has a default
        """
        category = parse_category(category)
        definition = TemplateDefinition(
            template_id=uuid.uuid4(),
            name=name,
            category=category,
            steps=_parse_steps(steps),
            conditions=_parse_conditions(conditions),
            uses_tiers=uses_tiers,
            is_active=is_active,
            is_default=is_default,
        )

        def write():
            if definition.is_default:
                self._check_default_allowed(category.value, definition.is_active, exclude_id=None)
            template = WorkflowTemplate(
                id=definition.template_id,
                org_id=self.org_id,
                name=definition.name,
                description=description,
                category=category.value,
                version=1,
                conditions=json_safe([c.to_dict() for c in definition.conditions]),
                uses_tiers=definition.uses_tiers,
                is_active=definition.is_active,
                is_default=definition.is_default,
                created_by=created_by,
            )
            template.steps = [_step_row(step) for step in definition.steps]
            self.db.add(template)
            return template

        template = self._commit(write, f"create template {name!r}")
        logger.info("Created %s template %s (%s)", template.category, template.id, template.name)
        return self._template_to_dict(template)

    def update_template(
        self,
        template_id: UUID,
        *,
        name: Optional[str] = None,
        description: Optional[str] = None,
        steps: Optional[Iterable[StepInput]] = None,
        conditions: Optional[Iterable[ConditionInput]] = None,
        uses_tiers: Optional[bool] = None,
    ) -> Dict[str, Any]:
        """
        Update a template.

        Changing steps, conditions or ``uses_tiers`` replaces the definition
        and bumps ``version``; renaming does not.

        Raises:
            TemplateNotFoundError: If the template does not exist
            InvalidTemplateError: If the new definition is malformed
        """
        template = self._get_template_row(template_id)
        current = template.to_domain()
        definition_changed = steps is not None or conditions is not None or (
            uses_tiers is not None and uses_tiers != current.uses_tiers
        )

        new_steps = _parse_steps(steps) if steps is not None else current.steps
        new_conditions = _parse_conditions(conditions) if conditions is not None else current.conditions
        new_version = current.version + 1 if definition_changed else current.version
        # Validate the whole new definition before touching any row
        definition = TemplateDefinition(
            template_id=current.template_id,
            name=name if name is not None else current.name,
            category=current.category,
            steps=new_steps,
            conditions=new_conditions,
            version=new_version,
            is_active=current.is_active,
            is_default=current.is_default,
            uses_tiers=uses_tiers if uses_tiers is not None else current.uses_tiers,
        )

        def write():
            template.name = definition.name
            if description is not None:
                template.description = description
            if definition_changed:
                template.version = definition.version
                template.conditions = json_safe([c.to_dict() for c in definition.conditions])
                template.uses_tiers = definition.uses_tiers
                # Old rows must be gone before new ones reuse their orders
                template.steps = []
                self.db.flush()
                template.steps = [_step_row(step) for step in definition.steps]
            template.updated_at = datetime.utcnow()
            return template

        template = self._commit(write, f"update template {template_id}")
        if definition_changed:
            logger.info("Template %s bumped to version %d", template_id, template.version)
        return self._template_to_dict(template)

    def set_default(self, template_id: UUID, *, replace_existing: bool = False) -> Dict[str, Any]:
        """
        Make a template the default of its category.

        Args:
            template_id: Template to promote
            replace_existing: Demote the current default instead of failing

        Raises:
            DefaultTemplateError: If another template is default and
                ``replace_existing`` is False, or the template is inactive
        """
        template = self._get_template_row(template_id)

        def write():
            if template.is_default:
                return template
            if not template.is_active:
                raise DefaultTemplateError(
                    f"Inactive template {template_id} cannot be the default",
                    template_id=template_id,
                )
            current = self._current_default(template.category, exclude_id=template.id)
            if current is not None:
                if not replace_existing:
                    raise DefaultTemplateError(
                        f"Template {current.id} is already the default for {template.category!r}",
                        template_id=template_id,
                        current_default=current.id,
                    )
                current.is_default = False
                # Demotion must reach the database before the promotion
                self.db.flush()
            template.is_default = True
            return template

        template = self._commit(write, f"set default template {template_id}")
        logger.info("Template %s is now the default for %s", template_id, template.category)
        return self._template_to_dict(template)

    def unset_default(self, template_id: UUID) -> Dict[str, Any]:
        template = self._get_template_row(template_id)

        def write():
            template.is_default = False
            return template

        return self._template_to_dict(self._commit(write, f"unset default template {template_id}"))

    def deactivate_template(self, template_id: UUID) -> Dict[str, Any]:
        """
        Deactivate a template.

        Raises:
            DefaultTemplateError: If the template is the category default
        """
        template = self._get_template_row(template_id)
        if template.is_default:
            raise DefaultTemplateError(
                f"Template {template_id} is the default for {template.category!r}; "
                "unset it before deactivating",
                template_id=template_id,
            )

        def write():
            template.is_active = False
            return template

        return self._template_to_dict(self._commit(write, f"deactivate template {template_id}"))

    def activate_template(self, template_id: UUID) -> Dict[str, Any]:
        template = self._get_template_row(template_id)

        def write():
            template.is_active = True
            return template

        return self._template_to_dict(self._commit(write, f"activate template {template_id}"))

    def delete_template(self, template_id: UUID) -> None:
        """
        Delete a template. Chains built from it keep their snapshot.

        Raises:
            DefaultTemplateError: If the template is the category default
        """
        template = self._get_template_row(template_id)
        if template.is_default:
            raise DefaultTemplateError(
                f"Template {template_id} is the default for {template.category!r} and cannot be deleted",
                template_id=template_id,
            )

        def write():
            self.db.delete(template)

        self._commit(write, f"delete template {template_id}")
        logger.info("Deleted template %s", template_id)

    def get_template(self, template_id: UUID) -> Dict[str, Any]:
        return self._template_to_dict(self._get_template_row(template_id))

    def get_definition(self, template_id: UUID) -> TemplateDefinition:
        """The validated domain definition of a stored template."""
        return self._get_template_row(template_id).to_domain()

    def list_templates(
        self,
        *,
        category: Optional[Any] = None,
        include_inactive: bool = False,
    ) -> List[Dict[str, Any]]:
        query = self.db.query(WorkflowTemplate).filter(WorkflowTemplate.org_id == self.org_id)
        if category is not None:
            query = query.filter(WorkflowTemplate.category == parse_category(category).value)
        if not include_inactive:
            query = query.filter(WorkflowTemplate.is_active == True)  # noqa: E712
        query = query.order_by(WorkflowTemplate.category.asc(), WorkflowTemplate.name.asc())
        return [self._template_to_dict(t) for t in query.all()]

    def increment_usage(self, template_id: UUID) -> bool:
        """
        Best-effort usage counter.

        Returns:
            True if the counter was incremented; failures are logged, never raised
        """
        try:
            self.db.query(WorkflowTemplate).filter(
                and_(
                    WorkflowTemplate.id == template_id,
                    WorkflowTemplate.org_id == self.org_id,
                )
            ).update(
                {WorkflowTemplate.usage_count: WorkflowTemplate.usage_count + 1},
                synchronize_session=False,
            )
            self.db.commit()
            return True
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.warning("Failed to increment usage count of template %s: %s", template_id, e)
            return False

    # ------------------------------------------------------------------
    # Tier ladders
    # ------------------------------------------------------------------

    def get_tier_ladder(self, category: Any) -> List[TierRule]:
        category = parse_category(category)
        rows = self.db.query(ApprovalTierRule).filter(
            and_(
                ApprovalTierRule.org_id == self.org_id,
                ApprovalTierRule.category == category.value,
            )
        ).order_by(ApprovalTierRule.threshold_amount.asc()).all()
        return [row.to_domain() for row in rows]

    def replace_tier_ladder(
        self,
        category: Any,
        rules: Iterable[Union[TierRule, Mapping[str, Any]]],
    ) -> List[TierRule]:
        """
        Replace the tier ladder of a category.

        Raises:
            InvalidTemplateError: If a rung is malformed or thresholds repeat
        """
        category = parse_category(category)
        ladder = validate_tier_rules(
            r if isinstance(r, TierRule) else TierRule.from_dict(r) for r in rules
        )

        def write():
            self.db.query(ApprovalTierRule).filter(
                and_(
                    ApprovalTierRule.org_id == self.org_id,
                    ApprovalTierRule.category == category.value,
                )
            ).delete(synchronize_session=False)
            for rule in ladder:
                self.db.add(ApprovalTierRule(
                    org_id=self.org_id,
                    category=category.value,
                    name=rule.name,
                    threshold_amount=rule.threshold_amount,
                    approver_roles=list(rule.approver_roles),
                ))

        self._commit(write, f"replace tier ladder for {category.value}")
        logger.info("Replaced %s tier ladder with %d rungs", category.value, len(ladder))
        return list(ladder)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _commit(self, write, action: str):
        try:
            result = write()
            self.db.commit()
            return result
        except ApprovalEngineError:
            self.db.rollback()
            raise
        except IntegrityError as e:
            self.db.rollback()
            # The partial unique index lost a race with another writer
            if "uq_workflow_templates_default" in str(e.orig) or "is_default" in str(e.orig):
                raise DefaultTemplateError(f"Cannot {action}: category already has a default") from e
            raise DependencyError(f"Cannot {action}: {e.orig}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DependencyError(f"Cannot {action}: {e}") from e

    def _get_template_row(self, template_id: UUID) -> WorkflowTemplate:
        template = self.db.query(WorkflowTemplate).filter(
            and_(
                WorkflowTemplate.id == template_id,
                WorkflowTemplate.org_id == self.org_id,
            )
        ).first()
        if not template:
            raise TemplateNotFoundError(f"Workflow template {template_id} not found", template_id=template_id)
        return template

    def _current_default(self, category: str, exclude_id: Optional[UUID]) -> Optional[WorkflowTemplate]:
        query = self.db.query(WorkflowTemplate).filter(
            and_(
                WorkflowTemplate.org_id == self.org_id,
                WorkflowTemplate.category == category,
                WorkflowTemplate.is_default == True,  # noqa: E712
            )
        )
        if exclude_id is not None:
            query = query.filter(WorkflowTemplate.id != exclude_id)
        return query.first()

    def _check_default_allowed(self, category: str, is_active: bool, exclude_id: Optional[UUID]) -> None:
        if not is_active:
            raise DefaultTemplateError("An inactive template cannot be the default")
        current = self._current_default(category, exclude_id)
        if current is not None:
            raise DefaultTemplateError(
                f"Template {current.id} is already the default for {category!r}",
                current_default=current.id,
            )

    def _template_to_dict(self, template: WorkflowTemplate) -> Dict[str, Any]:
        return {
            "id": str(template.id),
            "org_id": str(template.org_id),
            "name": template.name,
            "description": template.description,
            "category": template.category,
            "version": template.version,
            "is_active": template.is_active,
            "is_default": template.is_default,
            "uses_tiers": template.uses_tiers,
            "usage_count": template.usage_count,
            "conditions": template.conditions or [],
            "steps": [
                {
                    "id": str(step.id),
                    "order": step.step_order,
                    "kind": step.kind,
                    "name": step.name,
                    "approver_role": step.approver_role,
                    "condition": step.condition,
                    "branch_target": step.branch_target,
                    "parallel_roles": step.parallel_roles or [],
                }
                for step in sorted(template.steps, key=lambda s: s.step_order)
            ],
            "created_by": template.created_by,
            "created_at": template.created_at.isoformat() if template.created_at else None,
            "updated_at": template.updated_at.isoformat() if template.updated_at else None,
        }


def _parse_steps(steps: Iterable[StepInput]):
    parsed = [s if isinstance(s, Step) else Step.from_dict(s) for s in steps]
    return tuple(sorted(parsed, key=lambda s: s.order))


def _parse_conditions(conditions: Iterable[ConditionInput]):
    return tuple(c if isinstance(c, Condition) else Condition.from_dict(c) for c in conditions)


def _step_row(step: Step) -> WorkflowStep:
    row = WorkflowStep.from_domain(step)
    if row.condition is not None:
        row.condition = json_safe(row.condition)
    return row
