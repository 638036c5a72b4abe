"""Delegation rule administration.

Overlapping rules of the same delegator are rejected at write time when
their scopes intersect, so the resolver only ever has to break ties
between a scoped and an unscoped rule.
"""

import logging
import uuid
from collections import Counter
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional
from uuid import UUID

from sqlalchemy import and_, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from opsflow.core.approval.states import EntryStatus
from opsflow.core.errors import (
    ApprovalEngineError,
    DelegationConflictError,
    DelegationNotFoundError,
    DependencyError,
    InvalidDelegationError,
)
from opsflow.core.workflow.conditions import to_decimal
from opsflow.core.workflow.delegation import (
    DelegationResolver,
    DelegationRule as DelegationDefinition,
    DelegationStatus,
)
from opsflow.core.workflow.matcher import parse_category
from opsflow.core.workflow.tiers import MAX_MONEY, fits_money
from opsflow.db.models import ApprovalChain, ApprovalChainEntry, DelegationRule

logger = logging.getLogger(__name__)


class DelegationService:
    """
    Service for managing delegation rules.

    Handles:
    - Creating and updating rules with conflict detection
    - Revoking rules (kept for audit, never deleted)
    - Listing rules by delegator or delegate with computed status
    - Finding rules about to expire
    - Summarizing rules and the proxy decisions taken under them
    """

    def __init__(self, db: Session, org_id: UUID):
        self.db = db
        self.org_id = org_id

    def create_delegation(
        self,
        from_user_id: str,
        to_user_id: str,
        start_date: date,
        end_date: date,
        *,
        workflow_ids: Iterable[Any] = (),
        max_amount: Optional[Any] = None,
        excluded_categories: Iterable[Any] = (),
        reason: Optional[str] = None,
        created_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a delegation rule.

        Raises:
            InvalidDelegationError: If the dates or users are invalid
            DelegationConflictError: If it overlaps an active rule of the
                same delegator with an intersecting scope
        """
        definition = DelegationDefinition(
            rule_id=uuid.uuid4(),
            from_user_id=from_user_id,
            to_user_id=to_user_id,
            start_date=start_date,
            end_date=end_date,
            workflow_ids=frozenset(str(w) for w in workflow_ids),
            max_amount=_parse_limit(max_amount),
            excluded_categories=frozenset(parse_category(c).value for c in excluded_categories),
            reason=reason,
        )
        self._check_conflicts(definition)

        rule = DelegationRule(
            id=definition.rule_id,
            org_id=self.org_id,
            created_by=created_by,
        )
        _apply_definition(rule, definition)

        def write():
            self.db.add(rule)
            return rule

        rule = self._commit(write, f"create delegation from {from_user_id}")
        logger.info(
            "Delegation %s: %s -> %s from %s to %s",
            rule.id, from_user_id, to_user_id, start_date, end_date,
        )
        return self._rule_to_dict(rule)

    def update_delegation(
        self,
        rule_id: UUID,
        *,
        to_user_id: Optional[str] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        workflow_ids: Optional[Iterable[Any]] = None,
        max_amount: Optional[Any] = None,
        excluded_categories: Optional[Iterable[Any]] = None,
        reason: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Update a delegation rule. Revoked rules cannot be edited.

        Raises:
            DelegationNotFoundError: If the rule does not exist
            InvalidDelegationError: If the rule is revoked or the result is invalid
            DelegationConflictError: If the result clashes with another rule
        """
        rule = self._get_rule_row(rule_id)
        if not rule.is_active:
            raise InvalidDelegationError(f"Delegation {rule_id} is revoked and cannot be edited", rule_id=rule_id)

        current = rule.to_domain()
        definition = DelegationDefinition(
            rule_id=current.rule_id,
            from_user_id=current.from_user_id,
            to_user_id=to_user_id if to_user_id is not None else current.to_user_id,
            start_date=start_date if start_date is not None else current.start_date,
            end_date=end_date if end_date is not None else current.end_date,
            workflow_ids=(
                frozenset(str(w) for w in workflow_ids) if workflow_ids is not None else current.workflow_ids
            ),
            max_amount=_parse_limit(max_amount) if max_amount is not None else current.max_amount,
            excluded_categories=(
                frozenset(parse_category(c).value for c in excluded_categories)
                if excluded_categories is not None else current.excluded_categories
            ),
            reason=reason if reason is not None else current.reason,
        )
        self._check_conflicts(definition)

        def write():
            _apply_definition(rule, definition)
            return rule

        return self._rule_to_dict(self._commit(write, f"update delegation {rule_id}"))

    def revoke_delegation(self, rule_id: UUID) -> Dict[str, Any]:
        """Revoke a rule. Chains already built keep the delegate they resolved."""
        rule = self._get_rule_row(rule_id)

        def write():
            if rule.is_active:
                rule.is_active = False
                rule.revoked_at = datetime.utcnow()
            return rule

        rule = self._commit(write, f"revoke delegation {rule_id}")
        logger.info("Revoked delegation %s", rule_id)
        return self._rule_to_dict(rule)

    def get_delegation(self, rule_id: UUID, *, as_of: Optional[date] = None) -> Dict[str, Any]:
        return self._rule_to_dict(self._get_rule_row(rule_id), as_of=as_of)

    def list_delegations(
        self,
        *,
        from_user_id: Optional[str] = None,
        to_user_id: Optional[str] = None,
        status: Optional[str] = None,
        as_of: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """
        List rules, optionally by delegator, delegate and computed status.

        Status is evaluated relative to ``as_of`` (default: today).
        """
        as_of = as_of or date.today()
        wanted = DelegationStatus(status) if status else None

        query = self.db.query(DelegationRule).filter(DelegationRule.org_id == self.org_id)
        if from_user_id:
            query = query.filter(DelegationRule.from_user_id == from_user_id)
        if to_user_id:
            query = query.filter(DelegationRule.to_user_id == to_user_id)
        query = query.order_by(DelegationRule.start_date.asc(), DelegationRule.created_at.asc())

        return [
            self._rule_to_dict(rule, as_of=as_of)
            for rule in query.all()
            if wanted is None or rule.to_domain().status(as_of) == wanted
        ]

    def list_for_user(self, user_id: str, *, as_of: Optional[date] = None) -> List[Dict[str, Any]]:
        """Rules where the user is either delegator or delegate."""
        as_of = as_of or date.today()
        rules = self.db.query(DelegationRule).filter(
            and_(
                DelegationRule.org_id == self.org_id,
                or_(DelegationRule.from_user_id == user_id, DelegationRule.to_user_id == user_id),
            )
        ).order_by(DelegationRule.start_date.asc()).all()
        return [self._rule_to_dict(rule, as_of=as_of) for rule in rules]

    def expiring_delegations(self, *, within_days: int, as_of: Optional[date] = None) -> List[Dict[str, Any]]:
        """Active rules that end within ``within_days`` of ``as_of``."""
        as_of = as_of or date.today()
        rows = self.db.query(DelegationRule).filter(
            and_(
                DelegationRule.org_id == self.org_id,
                DelegationRule.is_active == True,  # noqa: E712
                DelegationRule.end_date >= as_of,
                DelegationRule.end_date <= as_of + timedelta(days=within_days),
            )
        ).all()
        resolver = DelegationResolver(row.to_domain() for row in rows)
        return [
            {**rule.to_dict(), "status": rule.status(as_of).value}
            for rule in resolver.expiring(as_of, within_days)
        ]

    def get_stats(self, *, as_of: Optional[date] = None, top: int = 5) -> Dict[str, Any]:
        """
        Rule counts by status and a summary of proxy decisions.

        A proxy decision is a decided chain entry whose approver came from a
        delegation rule. Amounts are summed once per chain and delegate, so a
        deputy covering two parallel slots is not counted twice.
        """
        as_of = as_of or date.today()
        rules = self.db.query(DelegationRule).filter(DelegationRule.org_id == self.org_id).all()

        by_status = {s.value: 0 for s in DelegationStatus}
        delegators: Counter = Counter()
        delegates: Counter = Counter()
        for rule in rules:
            by_status[rule.to_domain().status(as_of).value] += 1
            delegators[rule.from_user_id] += 1
            delegates[rule.to_user_id] += 1

        rows = self.db.query(
            ApprovalChainEntry.chain_id,
            ApprovalChainEntry.delegation_rule_id,
            ApprovalChainEntry.decided_by,
            ApprovalChainEntry.status,
            ApprovalChain.category,
            ApprovalChain.amount,
        ).join(ApprovalChain, ApprovalChain.id == ApprovalChainEntry.chain_id).filter(
            and_(
                ApprovalChain.org_id == self.org_id,
                ApprovalChainEntry.delegation_rule_id.isnot(None),
                ApprovalChainEntry.status.in_([EntryStatus.APPROVED.value, EntryStatus.REJECTED.value]),
            )
        ).all()

        outcomes: Counter = Counter()
        by_category: Counter = Counter()
        by_rule: Counter = Counter()
        proxies: Dict[str, Dict[str, Any]] = {}
        counted = set()
        total_amount = Decimal("0")
        for chain_id, rule_id, proxy_id, status, category, amount in rows:
            outcomes[status] += 1
            by_category[category] += 1
            by_rule[rule_id] += 1
            proxy = proxies.setdefault(proxy_id, {"user_id": proxy_id, "count": 0, "amount": Decimal("0")})
            proxy["count"] += 1
            if amount is not None and (chain_id, proxy_id) not in counted:
                counted.add((chain_id, proxy_id))
                proxy["amount"] += amount
                total_amount += amount

        ranked = sorted(proxies.values(), key=lambda p: (-p["count"], p["user_id"]))[:top]
        return {
            "total": len(rules),
            "by_status": by_status,
            "top_delegators": _ranked(delegators, top),
            "top_delegates": _ranked(delegates, top),
            "proxy_decisions": {
                "total": len(rows),
                "approved": outcomes[EntryStatus.APPROVED.value],
                "rejected": outcomes[EntryStatus.REJECTED.value],
                "total_amount": str(total_amount),
                "by_category": dict(by_category),
                "by_rule": dict(by_rule),
                "top_proxies": [{**p, "amount": str(p["amount"])} for p in ranked],
            },
        }

    def resolver(self) -> DelegationResolver:
        """Resolver over every active rule of the organization."""
        rows = self.db.query(DelegationRule).filter(
            and_(
                DelegationRule.org_id == self.org_id,
                DelegationRule.is_active == True,  # noqa: E712
            )
        ).all()
        return DelegationResolver(row.to_domain() for row in rows)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_conflicts(self, candidate: DelegationDefinition) -> None:
        rows = self.db.query(DelegationRule).filter(
            and_(
                DelegationRule.org_id == self.org_id,
                DelegationRule.from_user_id == candidate.from_user_id,
                DelegationRule.is_active == True,  # noqa: E712
            )
        ).all()
        conflicts = DelegationResolver(row.to_domain() for row in rows).find_conflicts(candidate)
        if conflicts:
            ids = sorted(str(r.rule_id) for r in conflicts)
            logger.warning("Rejected delegation from %s overlapping %s", candidate.from_user_id, ids)
            raise DelegationConflictError(candidate.from_user_id, ids)

    def _commit(self, write, action: str):
        try:
            result = write()
            self.db.commit()
            return result
        except ApprovalEngineError:
            self.db.rollback()
            raise
        except SQLAlchemyError as e:
            self.db.rollback()
            raise DependencyError(f"Cannot {action}: {e}") from e

    def _get_rule_row(self, rule_id: UUID) -> DelegationRule:
        rule = self.db.query(DelegationRule).filter(
            and_(
                DelegationRule.id == rule_id,
                DelegationRule.org_id == self.org_id,
            )
        ).first()
        if not rule:
            raise DelegationNotFoundError(f"Delegation {rule_id} not found", rule_id=rule_id)
        return rule

    def _rule_to_dict(self, rule: DelegationRule, *, as_of: Optional[date] = None) -> Dict[str, Any]:
        definition = rule.to_domain()
        data = definition.to_dict()
        data.update({
            "id": str(rule.id),
            "status": definition.status(as_of or date.today()).value,
            "created_by": rule.created_by,
            "created_at": rule.created_at.isoformat() if rule.created_at else None,
            "revoked_at": rule.revoked_at.isoformat() if rule.revoked_at else None,
        })
        return data


def _parse_limit(value: Any) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        amount = to_decimal(value)
    except ValueError as e:
        raise InvalidDelegationError(f"Invalid delegation amount limit: {e}") from None
    if amount < 0:
        raise InvalidDelegationError(f"Delegation amount limit {amount} is negative")
    if not fits_money(amount):
        raise InvalidDelegationError(f"Delegation amount limit {amount} must be whole cents up to {MAX_MONEY}")
    return amount


def _apply_definition(rule: DelegationRule, definition: DelegationDefinition) -> None:
    rule.from_user_id = definition.from_user_id
    rule.to_user_id = definition.to_user_id
    rule.start_date = definition.start_date
    rule.end_date = definition.end_date
    rule.is_active = definition.is_active
    rule.workflow_ids = sorted(definition.workflow_ids)
    rule.max_amount = definition.max_amount
    rule.excluded_categories = sorted(definition.excluded_categories)
    rule.reason = definition.reason


def _ranked(counts: Counter, top: int) -> List[Dict[str, Any]]:
    ordered = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:top]
    return [{"user_id": user_id, "count": count} for user_id, count in ordered]
