"""Approval service for submitting requests and deciding chains.

Provides the persisted API around the chain builder and the approval
state machine. Every public operation is one unit of work: it commits on
success and rolls back on any error, so a failure leaves no partial state.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import and_, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from opsflow.core.config import Settings, get_settings
from opsflow.core.errors import (
    ApprovalEngineError,
    ChainNotFoundError,
    ConcurrentDecisionError,
    DependencyError,
    InvalidRequestError,
)
from opsflow.core.workflow.builder import ChainBuilder
from opsflow.core.workflow.delegation import DelegationResolver
from opsflow.core.workflow.matcher import TemplateMatcher, parse_category
from opsflow.services.directory import RoleDirectory

from .chain import ChainEntry, ChainInstance
from .machine import ApprovalStateMachine, ChainEvent, DecisionOutcome, approval_requests, notification_points
from .states import ChainStatus, Decision, EntryStatus, TERMINAL_STATES

logger = logging.getLogger(__name__)


class ApprovalService:
    """
    High-level service for approval chains.

    Handles:
    - Matching a request to a template and building its chain
    - Applying decisions with optimistic compare-and-swap
    - Querying chains, history and approver inboxes
    - Archival and statistics
    """

    def __init__(
        self,
        db: Session,
        org_id: UUID,
        *,
        directory: RoleDirectory,
        publisher=None,
        settings: Optional[Settings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the approval service.

        Args:
            db: Database session
            org_id: Organization ID for scoping
            directory: Organizational role directory
            publisher: Optional EventPublisher for chain events
            settings: Runtime settings (defaults to get_settings())
            clock: Source of the current time (defaults to utcnow)
        """
        self.db = db
        self.org_id = org_id
        self.directory = directory
        self.publisher = publisher
        self.settings = settings or get_settings()
        self.clock = clock or datetime.utcnow

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit_request(
        self,
        category: Any,
        attributes: Optional[Mapping[str, Any]] = None,
        *,
        submitter_id: str,
        amount: Optional[Any] = None,
        submitted_at: Optional[datetime] = None,
    ) -> ChainInstance:
        """
        Match a request to a template and persist its approval chain.

        Args:
            category: Request category
            attributes: Request attributes for template and step conditions
            submitter_id: User submitting the request
            amount: Request amount, required by tier-driven templates
            submitted_at: Submission time (defaults to the clock)

        Returns:
            The persisted ChainInstance

        Raises:
            NoTemplateError: If no template matches
            AmbiguousTemplateError: If several templates match without a default
            InvalidRequestError: If the request is malformed
            AmbiguousDelegationError: If an approver's delegation is ambiguous
            DependencyError: If the role directory or database fails
        """
        from opsflow.db.models import ApprovalChain, ApprovalChainHistory

        attributes = dict(attributes or {})
        submitted_at = submitted_at or self.clock()

        try:
            category = parse_category(category)
            templates = self._load_templates(category.value)
            template = TemplateMatcher(templates).match(category, attributes)

            tier_rules = self._load_tier_rules(category.value) if template.uses_tiers else []
            resolver = DelegationResolver(self._load_delegations())
            instance = ChainBuilder(self.directory, resolver).build_chain(
                template,
                attributes,
                amount,
                submitted_at,
                submitter_id=submitter_id,
                tier_rules=tier_rules,
            )

            chain = ApprovalChain.from_domain(self.org_id, instance)
            chain.history.append(ApprovalChainHistory(
                sequence=1,
                action="submitted",
                to_status=instance.status.value,
                user_id=submitter_id,
                created_at=submitted_at,
                extra_data={
                    "template_version": instance.pinned_version,
                    "warnings": list(instance.warnings),
                },
            ))
            self.db.add(chain)
            self.db.commit()
        except ApprovalEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DependencyError(f"Failed to persist approval chain: {e}") from e

        persisted = chain.to_domain()
        logger.info(
            "Submitted %s chain %s from template %s v%d with %d entries",
            persisted.category, persisted.chain_id, persisted.template_id,
            persisted.pinned_version, len(persisted.entries),
        )

        self._increment_usage(template.template_id)
        self._publish(
            approval_requests(persisted, submitted_at)
            + notification_points(None, persisted, submitted_at)
        )
        return persisted

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    def apply_decision(
        self,
        chain_id: UUID,
        step_order: int,
        acting_user_id: str,
        decision: Any,
        *,
        acted_at: Optional[datetime] = None,
        comment: Optional[str] = None,
    ) -> ChainEntry:
        """
        Apply an approve/reject decision to a chain.

        The read-modify-write is guarded by the chain's lock version. A
        concurrent update forces a reload and a fresh evaluation, so a
        redelivered decision that lost the race comes back idempotent.

        Returns:
            The decided (or previously decided) entry

        Raises:
            ChainNotFoundError: If the chain does not exist
            AlreadyDecidedError: If the user already decided otherwise
            UnauthorizedDecisionError: If the user is not a pending approver
            OutOfOrderDecisionError: If the step is not the current one
            TerminalInstanceError: If the chain is already approved or rejected
            ConcurrentDecisionError: If retries are exhausted
            DependencyError: If the database fails
        """
        try:
            decision = Decision(decision)
        except ValueError:
            raise InvalidRequestError(f"Unknown decision: {decision!r}", decision=decision) from None
        acted_at = acted_at or self.clock()
        attempts = max(1, self.settings.decision_max_attempts)

        for attempt in range(1, attempts + 1):
            try:
                chain = self._get_chain_row(chain_id)
                instance = chain.to_domain()
                outcome = ApprovalStateMachine(instance).apply_decision(
                    step_order, acting_user_id, decision, acted_at=acted_at, comment=comment,
                )
                if outcome.idempotent:
                    logger.info(
                        "Repeated %s by %s on chain %s step %d ignored",
                        decision.value, acting_user_id, chain_id, step_order,
                    )
                    return outcome.entry

                self._record_outcome(chain, instance, outcome, decision, acting_user_id, acted_at)
                self.db.commit()
            except StaleDataError:
                self.db.rollback()
                logger.info(
                    "Chain %s changed concurrently, re-evaluating decision (attempt %d/%d)",
                    chain_id, attempt, attempts,
                )
                continue
            except ApprovalEngineError:
                self.db.rollback()
                raise
            except SQLAlchemyError as e:
                self.db.rollback()
                raise DependencyError(f"Failed to record decision on chain {chain_id}: {e}") from e

            logger.info(
                "Applied %s by %s on chain %s step %d: %s -> %s",
                decision.value, acting_user_id, chain_id, step_order,
                instance.status.value, outcome.instance.status.value,
            )
            self._publish(outcome.events)
            return outcome.entry

        raise ConcurrentDecisionError(
            f"Chain {chain_id} kept changing; decision not applied after {attempts} attempts",
            chain_id=chain_id,
            attempts=attempts,
        )

    def _record_outcome(
        self,
        chain,
        before: ChainInstance,
        outcome: DecisionOutcome,
        decision: Decision,
        acting_user_id: str,
        acted_at: datetime,
    ) -> None:
        from opsflow.db.models import ApprovalChainHistory

        rows = {row.position: row for row in chain.entries}
        for entry in outcome.changed:
            rows[entry.position].apply(entry)

        after = outcome.instance
        chain.status = after.status.value
        chain.updated_at = acted_at
        # Forces the UPDATE (and the lock version check) even when no column changed
        flag_modified(chain, "updated_at")
        if after.status in TERMINAL_STATES:
            chain.completed_at = acted_at

        sequence = max((h.sequence for h in chain.history), default=0)
        for decided in outcome.changed:
            if decided.status == EntryStatus.SKIPPED:
                continue
            sequence += 1
            chain.history.append(ApprovalChainHistory(
                sequence=sequence,
                action=decision.value,
                step_order=decided.step_order,
                from_status=before.status.value,
                to_status=after.status.value,
                user_id=acting_user_id,
                on_behalf_of=decided.nominal_approver_id if decided.is_delegated else None,
                delegation_rule_id=decided.delegation_rule_id,
                comment=decided.comment,
                created_at=acted_at,
                extra_data={"role": decided.nominal_approver_role},
            ))

        skipped = [e for e in outcome.changed if e.status == EntryStatus.SKIPPED]
        if skipped:
            sequence += 1
            chain.history.append(ApprovalChainHistory(
                sequence=sequence,
                action="skipped",
                from_status=after.status.value,
                to_status=after.status.value,
                user_id=acting_user_id,
                created_at=acted_at,
                extra_data={"positions": [e.position for e in skipped]},
            ))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_chain(self, chain_id: UUID) -> ChainInstance:
        """Get a chain snapshot by ID."""
        return self._get_chain_row(chain_id).to_domain()

    def describe_chain(self, chain_id: UUID) -> Dict[str, Any]:
        """Serialized chain, with its completion and archival times."""
        return self._chain_to_dict(self._get_chain_row(chain_id))

    def get_history(self, chain_id: UUID) -> List[Dict[str, Any]]:
        """Audit trail of a chain, oldest first."""
        chain = self._get_chain_row(chain_id)
        return [h.to_dict() for h in chain.history]

    def list_chains(
        self,
        *,
        status: Optional[str] = None,
        category: Optional[str] = None,
        submitter_id: Optional[str] = None,
        include_archived: bool = False,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """List chain snapshots, newest first."""
        from opsflow.db.models import ApprovalChain

        query = self.db.query(ApprovalChain).filter(ApprovalChain.org_id == self.org_id)
        if status:
            query = query.filter(ApprovalChain.status == ChainStatus(status).value)
        if category:
            query = query.filter(ApprovalChain.category == parse_category(category).value)
        if submitter_id:
            query = query.filter(ApprovalChain.submitter_id == submitter_id)
        if not include_archived:
            query = query.filter(ApprovalChain.archived_at.is_(None))

        query = query.order_by(ApprovalChain.submitted_at.desc()).offset(offset).limit(limit)
        return [self._chain_to_dict(chain) for chain in query.all()]

    def list_pending_for_approver(
        self,
        user_id: str,
        *,
        limit: int = 100,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        """
        Entries awaiting ``user_id`` at the current step of open chains.

        Entries at later steps are not listed; they become actionable only
        once the steps before them are approved.
        """
        from opsflow.db.models import ApprovalChain, ApprovalChainEntry

        chains = (
            self.db.query(ApprovalChain)
            .join(ApprovalChainEntry, ApprovalChainEntry.chain_id == ApprovalChain.id)
            .filter(
                and_(
                    ApprovalChain.org_id == self.org_id,
                    ApprovalChain.status.in_([ChainStatus.PENDING.value, ChainStatus.IN_PROGRESS.value]),
                    ApprovalChain.archived_at.is_(None),
                    ApprovalChainEntry.effective_approver_id == user_id,
                    ApprovalChainEntry.status == EntryStatus.PENDING.value,
                )
            )
            .order_by(ApprovalChain.submitted_at.asc())
            .distinct()
            .all()
        )

        items = []
        for chain in chains:
            instance = chain.to_domain()
            for entry in instance.awaiting():
                if entry.effective_approver_id != user_id:
                    continue
                items.append({
                    "chain_id": str(instance.chain_id),
                    "category": instance.category,
                    "submitter_id": instance.submitter_id,
                    "submitted_at": instance.submitted_at.isoformat(),
                    "amount": str(instance.amount) if instance.amount is not None else None,
                    "step_order": entry.step_order,
                    "role": entry.nominal_approver_role,
                    "on_behalf_of": entry.nominal_approver_id if entry.is_delegated else None,
                })
        return items[offset:offset + limit]

    def get_stats(self, *, since: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Per-category chain counts and approval rates.

        The approval rate is approved / (approved + rejected), or None when
        nothing in the category has been decided yet.
        """
        from opsflow.db.models import ApprovalChain

        query = self.db.query(
            ApprovalChain.category, ApprovalChain.status, func.count(ApprovalChain.id),
        ).filter(ApprovalChain.org_id == self.org_id)
        if since:
            query = query.filter(ApprovalChain.submitted_at >= since)

        categories: Dict[str, Dict[str, Any]] = {}
        for category, status, count in query.group_by(ApprovalChain.category, ApprovalChain.status).all():
            bucket = categories.setdefault(category, {s.value: 0 for s in ChainStatus})
            bucket[status] = count

        totals = {s.value: 0 for s in ChainStatus}
        for bucket in categories.values():
            for status in ChainStatus:
                totals[status.value] += bucket[status.value]
            _summarize(bucket)
        _summarize(totals)

        return {"categories": categories, "totals": totals}

    # ------------------------------------------------------------------
    # Archival
    # ------------------------------------------------------------------

    def archive_chain(self, chain_id: UUID, *, archived_by: Optional[str] = None) -> ChainInstance:
        """
        Archive a terminal chain. Chains are never deleted.

        Raises:
            ChainNotFoundError: If the chain does not exist
            InvalidRequestError: If the chain is still open
        """
        from opsflow.db.models import ApprovalChainHistory

        try:
            chain = self._get_chain_row(chain_id)
            if ChainStatus(chain.status) not in TERMINAL_STATES:
                raise InvalidRequestError(
                    f"Chain {chain_id} is {chain.status}; only approved or rejected chains can be archived",
                    chain_id=chain_id,
                    status=chain.status,
                )
            if chain.archived_at is None:
                now = self.clock()
                chain.archived_at = now
                chain.updated_at = now
                chain.history.append(ApprovalChainHistory(
                    sequence=max((h.sequence for h in chain.history), default=0) + 1,
                    action="archived",
                    from_status=chain.status,
                    to_status=chain.status,
                    user_id=archived_by,
                    created_at=now,
                ))
                self.db.commit()
                logger.info("Archived chain %s", chain_id)
        except ApprovalEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DependencyError(f"Failed to archive chain {chain_id}: {e}") from e

        return chain.to_domain()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_chain_row(self, chain_id: UUID):
        from opsflow.db.models import ApprovalChain

        chain = self.db.query(ApprovalChain).filter(
            and_(
                ApprovalChain.id == chain_id,
                ApprovalChain.org_id == self.org_id,
            )
        ).first()
        if not chain:
            raise ChainNotFoundError(f"Approval chain {chain_id} not found", chain_id=chain_id)
        return chain

    def _load_templates(self, category: str):
        from opsflow.db.models import WorkflowTemplate

        rows = self.db.query(WorkflowTemplate).filter(
            and_(
                WorkflowTemplate.org_id == self.org_id,
                WorkflowTemplate.category == category,
                WorkflowTemplate.is_active == True,  # noqa: E712
            )
        ).all()
        return [row.to_domain() for row in rows]

    def _load_tier_rules(self, category: str):
        from opsflow.db.models import ApprovalTierRule

        rows = self.db.query(ApprovalTierRule).filter(
            and_(
                ApprovalTierRule.org_id == self.org_id,
                ApprovalTierRule.category == category,
            )
        ).order_by(ApprovalTierRule.threshold_amount.asc()).all()
        return [row.to_domain() for row in rows]

    def _load_delegations(self):
        from opsflow.db.models import DelegationRule

        rows = self.db.query(DelegationRule).filter(
            and_(
                DelegationRule.org_id == self.org_id,
                DelegationRule.is_active == True,  # noqa: E712
            )
        ).all()
        return [row.to_domain() for row in rows]

    def _increment_usage(self, template_id: UUID) -> None:
        from opsflow.services.catalog import TemplateCatalogService

        TemplateCatalogService(self.db, self.org_id).increment_usage(template_id)

    def _publish(self, events: List[ChainEvent]) -> None:
        if self.publisher is not None and events:
            self.publisher.publish(events)

    def _chain_to_dict(self, chain) -> Dict[str, Any]:
        data = chain.to_domain().to_dict()
        data["archived_at"] = chain.archived_at.isoformat() if chain.archived_at else None
        data["completed_at"] = chain.completed_at.isoformat() if chain.completed_at else None
        return data


def _summarize(bucket: Dict[str, Any]) -> None:
    approved = bucket[ChainStatus.APPROVED.value]
    decided = approved + bucket[ChainStatus.REJECTED.value]
    bucket["total"] = sum(bucket[s.value] for s in ChainStatus)
    bucket["open"] = bucket[ChainStatus.PENDING.value] + bucket[ChainStatus.IN_PROGRESS.value]
    bucket["approval_rate"] = round(approved / decided, 4) if decided else None
