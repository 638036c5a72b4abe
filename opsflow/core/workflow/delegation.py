"""Delegation of approval authority.

A delegation rule reassigns one user's approval authority to another for
an inclusive date range, optionally scoped to specific workflow templates
and bounded by limits. Resolution is single-hop: only rules of the nominal
approver are consulted.
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, List, Optional
from uuid import UUID

from opsflow.core.errors import (
    AmbiguousDelegationError,
    ChainedDelegationWarning,
    InvalidDelegationError,
)
from opsflow.core.workflow.tiers import MAX_MONEY, fits_money

logger = logging.getLogger(__name__)


class DelegationStatus(str, Enum):
    """Status of a delegation rule relative to a date."""

    SCHEDULED = "scheduled"  # Starts in the future
    ACTIVE = "active"        # Covers the date
    EXPIRED = "expired"      # Ended before the date
    REVOKED = "revoked"      # Deactivated by an administrator


@dataclass(frozen=True)
class DelegationRule:
    """
    Time-bounded reassignment of approval authority.

    An empty ``workflow_ids`` applies to every template. ``max_amount`` and
    ``excluded_categories`` limit which requests the delegate may act on.
    """
    rule_id: Any
    from_user_id: str
    to_user_id: str
    start_date: date
    end_date: date
    is_active: bool = True
    workflow_ids: FrozenSet[str] = frozenset()
    max_amount: Optional[Decimal] = None
    excluded_categories: FrozenSet[str] = frozenset()
    reason: Optional[str] = None

    def __post_init__(self):
        if self.start_date > self.end_date:
            raise InvalidDelegationError(
                f"Delegation starts {self.start_date} after it ends {self.end_date}"
            )
        if self.from_user_id == self.to_user_id:
            raise InvalidDelegationError(f"{self.from_user_id} cannot delegate to themselves")
        if self.max_amount is not None and not fits_money(self.max_amount):
            raise InvalidDelegationError(
                f"Delegation amount limit {self.max_amount} must be whole cents up to {MAX_MONEY}"
            )
        # Scopes are compared as strings so UUIDs and their text form match
        object.__setattr__(self, "workflow_ids", frozenset(str(w) for w in self.workflow_ids))
        object.__setattr__(self, "excluded_categories", frozenset(str(c) for c in self.excluded_categories))

    @property
    def is_scoped(self) -> bool:
        return bool(self.workflow_ids)

    def status(self, as_of: date) -> DelegationStatus:
        if not self.is_active:
            return DelegationStatus.REVOKED
        if as_of < self.start_date:
            return DelegationStatus.SCHEDULED
        if as_of > self.end_date:
            return DelegationStatus.EXPIRED
        return DelegationStatus.ACTIVE

    def covers(self, as_of: date, workflow_id: Optional[Any] = None) -> bool:
        """Check the rule is active on the date and in scope for the workflow."""
        if self.status(as_of) != DelegationStatus.ACTIVE:
            return False
        if not self.is_scoped:
            return True
        return workflow_id is not None and str(workflow_id) in self.workflow_ids

    def permits(self, amount: Optional[Decimal] = None, category: Optional[str] = None) -> bool:
        """Check the request falls within the rule's limits."""
        if self.max_amount is not None and amount is not None and amount > self.max_amount:
            return False
        if category is not None and str(category) in self.excluded_categories:
            return False
        return True

    def overlaps(self, other: "DelegationRule") -> bool:
        """Check two rules of the same delegator clash on dates and scope."""
        if self.from_user_id != other.from_user_id:
            return False
        if self.start_date > other.end_date or other.start_date > self.end_date:
            return False
        if not self.is_scoped and not other.is_scoped:
            return True
        # A scoped rule next to an unscoped one is resolved by precedence
        if self.is_scoped and other.is_scoped:
            return bool(self.workflow_ids & other.workflow_ids)
        return False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "rule_id": str(self.rule_id),
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "is_active": self.is_active,
            "workflow_ids": sorted(self.workflow_ids),
            "max_amount": str(self.max_amount) if self.max_amount is not None else None,
            "excluded_categories": sorted(self.excluded_categories),
            "reason": self.reason,
        }


@dataclass
class DelegationResolution:
    """Outcome of resolving one nominal approver."""
    nominal_user_id: str
    effective_user_id: str
    rule: Optional[DelegationRule] = None
    warnings: List[ChainedDelegationWarning] = field(default_factory=list)

    @property
    def delegated(self) -> bool:
        return self.rule is not None


class DelegationResolver:
    """
    Maps a nominal approver and date to the effective approver.

    Precedence when several rules cover the same request:
    1. A rule scoped to the workflow beats an unscoped rule
    2. The latest ``start_date`` wins
    3. Anything still tied raises AmbiguousDelegationError
    """

    def __init__(self, rules: Iterable[DelegationRule]):
        self._by_delegator: Dict[str, List[DelegationRule]] = {}
        for rule in rules:
            self._by_delegator.setdefault(rule.from_user_id, []).append(rule)

    def rules_for(self, user_id: str) -> List[DelegationRule]:
        return list(self._by_delegator.get(user_id, []))

    def covering_rules(
        self,
        user_id: str,
        as_of: date,
        workflow_id: Optional[Any] = None,
        *,
        amount: Optional[Decimal] = None,
        category: Optional[str] = None,
    ) -> List[DelegationRule]:
        """Rules of a delegator that apply to a request on a date."""
        return [
            rule for rule in self._by_delegator.get(user_id, [])
            if rule.covers(as_of, workflow_id) and rule.permits(amount, category)
        ]

    def resolve(
        self,
        nominal_user_id: str,
        as_of: date,
        workflow_id: Optional[Any] = None,
        *,
        amount: Optional[Decimal] = None,
        category: Optional[str] = None,
    ) -> DelegationResolution:
        """
        Resolve the user who must act for ``nominal_user_id``.

        Args:
            nominal_user_id: Holder of the approver role
            as_of: Date the request was submitted
            workflow_id: Template the chain is built from
            amount: Request amount, checked against rule limits
            category: Request category, checked against rule limits

        Returns:
            DelegationResolution; identity when no rule applies

        Raises:
            AmbiguousDelegationError: If precedence cannot pick one rule
        """
        candidates = self.covering_rules(
            nominal_user_id, as_of, workflow_id, amount=amount, category=category,
        )
        if not candidates:
            return DelegationResolution(nominal_user_id=nominal_user_id, effective_user_id=nominal_user_id)

        rule = self._select(nominal_user_id, candidates)
        resolution = DelegationResolution(
            nominal_user_id=nominal_user_id,
            effective_user_id=rule.to_user_id,
            rule=rule,
        )

        # Single hop: an onward delegation is reported, never followed
        onward = self.covering_rules(rule.to_user_id, as_of, workflow_id, amount=amount, category=category)
        if onward:
            onward_ids = sorted({r.to_user_id for r in onward})
            warning = ChainedDelegationWarning(
                nominal_user_id, rule.to_user_id, ", ".join(onward_ids), rule.rule_id,
            )
            logger.warning("Chained delegation: %s", warning)
            resolution.warnings.append(warning)

        return resolution

    def _select(self, nominal_user_id: str, candidates: List[DelegationRule]) -> DelegationRule:
        if len(candidates) == 1:
            return candidates[0]

        scoped = [r for r in candidates if r.is_scoped]
        pool = scoped or candidates

        latest = max(r.start_date for r in pool)
        pool = [r for r in pool if r.start_date == latest]
        if len(pool) == 1:
            return pool[0]

        rule_ids = sorted(str(r.rule_id) for r in pool)
        logger.error("Ambiguous delegation for %s between rules %s", nominal_user_id, rule_ids)
        raise AmbiguousDelegationError(nominal_user_id, rule_ids)

    def find_conflicts(self, candidate: DelegationRule) -> List[DelegationRule]:
        """Active rules of the same delegator that clash with ``candidate``."""
        return [
            rule for rule in self._by_delegator.get(candidate.from_user_id, [])
            if rule.is_active and rule.rule_id != candidate.rule_id and rule.overlaps(candidate)
        ]

    def expiring(self, as_of: date, within_days: int) -> List[DelegationRule]:
        """Active rules ending within ``within_days`` of ``as_of``."""
        horizon = as_of + timedelta(days=within_days)
        return sorted(
            (
                rule for rules in self._by_delegator.values() for rule in rules
                if rule.status(as_of) == DelegationStatus.ACTIVE and rule.end_date <= horizon
            ),
            key=lambda r: (r.end_date, str(r.rule_id)),
        )
