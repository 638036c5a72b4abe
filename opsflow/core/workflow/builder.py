"""Chain building.

Expands a matched template (and the category tier ladder) into an
immutable, ordered chain of resolved approvers. The template version in
force at build time is pinned onto the instance together with a snapshot
of its definition.
"""

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Sequence

from opsflow.core.approval.chain import ChainEntry, ChainInstance
from opsflow.core.approval.states import ChainStatus, EntryStatus
from opsflow.core.errors import (
    ApprovalEngineError,
    DependencyError,
    InvalidRequestError,
    InvalidTemplateError,
)
from opsflow.core.workflow.delegation import DelegationResolver
from opsflow.core.workflow.templates import Step, StepKind, WorkflowTemplate
from opsflow.core.workflow.tiers import TierRule, normalize_amount, resolve_tier
from opsflow.services.directory import RoleDirectory

logger = logging.getLogger(__name__)


class ChainBuilder:
    """
    Builds approval chain instances.

    Role holders come from the organizational directory and pass through
    the delegation resolver, using the submission date as the as-of date.
    """

    def __init__(self, directory: RoleDirectory, delegations: DelegationResolver):
        self.directory = directory
        self.delegations = delegations

    def build_chain(
        self,
        template: WorkflowTemplate,
        attributes: Mapping[str, Any],
        amount: Optional[Any],
        submitted_at: datetime,
        *,
        submitter_id: str = "",
        tier_rules: Sequence[TierRule] = (),
    ) -> ChainInstance:
        """
        Build the chain for one request.

        Args:
            template: Matched workflow template
            attributes: Request attributes for condition steps
            amount: Request amount; required when the template uses tiers
            submitted_at: Submission time, also the delegation as-of date
            submitter_id: User who submitted the request
            tier_rules: Tier ladder of the template's category

        Returns:
            ChainInstance with entries and pinned version

        Raises:
            InvalidRequestError: If the amount is missing or invalid
            InvalidTemplateError: If a tier template has no ladder
            AmbiguousDelegationError: If delegation cannot be resolved
            DependencyError: If the role directory fails
        """
        value = normalize_amount(amount) if amount is not None else None
        if template.uses_tiers and value is None:
            raise InvalidRequestError(
                f"Template {template.name!r} uses monetary tiers; an amount is required",
                template_id=template.template_id,
            )
        if template.uses_tiers and not tier_rules:
            raise InvalidTemplateError(
                f"No tier ladder configured for category {template.category.value!r}",
                category=template.category.value,
            )

        context = _BuildContext(template, submitted_at, value)
        steps = template.steps
        index = 0

        while index < len(steps):
            step = steps[index]

            if step.kind == StepKind.CONDITION:
                if step.condition.evaluate(attributes):
                    index += 1
                    continue
                # Steps between the condition and its target are only
                # reachable through the branch that was not taken
                for skipped in steps[index + 1:step.branch_target - 1]:
                    context.entries.extend(self._skipped_entries(skipped))
                logger.debug(
                    "Condition step %d false, continuing at %d", step.order, step.branch_target,
                )
                index = step.branch_target - 1
                continue

            if step.kind == StepKind.NOTIFICATION:
                context.notifications.append({"step_order": step.order, "role": step.approver_role})
            elif step.kind == StepKind.PARALLEL:
                for role in step.parallel_roles:
                    context.entries.append(self._resolve_entry(context, step.order, step.kind, role))
            else:
                context.entries.append(self._resolve_entry(context, step.order, step.kind, step.approver_role))
            index += 1

        if template.uses_tiers:
            next_order = len(steps) + 1
            for offset, role in enumerate(resolve_tier(value, tier_rules)):
                context.entries.append(
                    self._resolve_entry(context, next_order + offset, StepKind.APPROVAL, role)
                )

        return context.finish(attributes, submitter_id)

    def _resolve_entry(self, context: "_BuildContext", step_order: int, kind: StepKind, role: str) -> ChainEntry:
        nominal = context.holder_of(role, self._lookup)
        resolution = self.delegations.resolve(
            nominal,
            context.as_of,
            context.template.template_id,
            amount=context.amount,
            category=context.template.category.value,
        )
        context.warnings.extend(w.to_dict() for w in resolution.warnings)
        return ChainEntry(
            position=0,
            step_order=step_order,
            kind=kind.value,
            nominal_approver_role=role,
            nominal_approver_id=nominal,
            effective_approver_id=resolution.effective_user_id,
            delegation_rule_id=str(resolution.rule.rule_id) if resolution.rule else None,
        )

    def _skipped_entries(self, step: Step) -> List[ChainEntry]:
        if step.kind == StepKind.PARALLEL:
            roles = step.parallel_roles
        elif step.kind in (StepKind.APPROVAL, StepKind.REVIEW):
            roles = (step.approver_role,)
        else:
            return []
        return [
            ChainEntry(
                position=0,
                step_order=step.order,
                kind=step.kind.value,
                nominal_approver_role=role,
                nominal_approver_id=None,
                effective_approver_id=None,
                status=EntryStatus.SKIPPED,
            )
            for role in roles
        ]

    def _lookup(self, role: str) -> str:
        try:
            user_id = self.directory.resolve_role(role)
        except ApprovalEngineError:
            raise
        except Exception as e:
            raise DependencyError(f"Role lookup failed for {role!r}: {e}", role=role) from e
        if not user_id:
            raise DependencyError(f"No user currently holds role {role!r}", role=role)
        return user_id


class _BuildContext:
    """Accumulates entries while one chain is being built."""

    def __init__(self, template: WorkflowTemplate, submitted_at: datetime, amount: Optional[Decimal]):
        self.template = template
        self.submitted_at = submitted_at
        self.as_of = submitted_at.date()
        self.amount = amount
        self.entries: List[ChainEntry] = []
        self.notifications: List[Dict[str, Any]] = []
        self.warnings: List[Dict[str, Any]] = []
        self._holders: Dict[str, str] = {}

    def holder_of(self, role: str, lookup) -> str:
        # One directory lookup per role per chain
        if role not in self._holders:
            self._holders[role] = lookup(role)
        return self._holders[role]

    def finish(self, attributes: Mapping[str, Any], submitter_id: str) -> ChainInstance:
        entries = tuple(
            replace(entry, position=position)
            for position, entry in enumerate(self.entries)
        )
        required = [e for e in entries if e.status == EntryStatus.PENDING]
        status = ChainStatus.PENDING if required else ChainStatus.APPROVED
        if not required:
            logger.info("Template %s resolved no approvers; chain approved on submission", self.template.template_id)

        return ChainInstance(
            template_id=self.template.template_id,
            pinned_version=self.template.version,
            category=self.template.category.value,
            submitter_id=submitter_id,
            submitted_at=self.submitted_at,
            entries=entries,
            status=status,
            amount=self.amount,
            attributes=dict(attributes),
            template_snapshot=self.template.to_dict(),
            notifications=tuple(self.notifications),
            warnings=tuple(self.warnings),
        )
