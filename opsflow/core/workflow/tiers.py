"""Monetary tier threshold resolution.

A tier ladder maps a request amount to the approver roles it requires.
Thresholds are inclusive lower bounds and accumulate: an amount qualifies
for every tier whose threshold it reaches, and roles come out lowest tier
first. All arithmetic is Decimal.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from opsflow.core.errors import InvalidRequestError, InvalidTemplateError
from opsflow.core.workflow.conditions import to_decimal

# Money columns are Numeric(14, 2); anything finer would be rounded on write
CENT = Decimal("0.01")
MAX_MONEY = Decimal("999999999999.99")


def fits_money(value: Decimal) -> bool:
    """True when ``value`` is stored without rounding: whole cents within the column range."""
    return abs(value) <= MAX_MONEY and value == value.quantize(CENT)


@dataclass(frozen=True)
class TierRule:
    """One rung of a tier ladder."""
    threshold_amount: Decimal
    approver_roles: Tuple[str, ...]
    name: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.threshold_amount, Decimal):
            raise InvalidTemplateError(
                f"Tier threshold must be a Decimal, got {type(self.threshold_amount).__name__}"
            )
        if self.threshold_amount < 0:
            raise InvalidTemplateError(f"Tier threshold {self.threshold_amount} is negative")
        if not fits_money(self.threshold_amount):
            raise InvalidTemplateError(
                f"Tier threshold {self.threshold_amount} must be whole cents up to {MAX_MONEY}"
            )
        if not self.approver_roles:
            raise InvalidTemplateError(f"Tier at {self.threshold_amount} lists no approver roles")

    def qualifies(self, amount: Decimal) -> bool:
        return amount >= self.threshold_amount

    def to_dict(self) -> Dict[str, Any]:
        return {
            "threshold_amount": str(self.threshold_amount),
            "approver_roles": list(self.approver_roles),
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "TierRule":
        try:
            threshold = to_decimal(data["threshold_amount"])
        except (KeyError, ValueError) as e:
            raise InvalidTemplateError(f"Invalid tier threshold: {e}") from None
        return cls(
            threshold_amount=threshold,
            approver_roles=tuple(data.get("approver_roles") or ()),
            name=data.get("name"),
        )


def validate_tier_rules(rules: Iterable[TierRule]) -> Tuple[TierRule, ...]:
    """
    Validate a ladder and return it sorted by ascending threshold.

    Raises:
        InvalidTemplateError: If two rungs share a threshold
    """
    ordered = tuple(sorted(rules, key=lambda r: r.threshold_amount))
    seen = set()
    for rule in ordered:
        if rule.threshold_amount in seen:
            raise InvalidTemplateError(f"Duplicate tier threshold {rule.threshold_amount}")
        seen.add(rule.threshold_amount)
    return ordered


def normalize_amount(amount: Any) -> Decimal:
    """
    Convert a request amount to Decimal.

    Raises:
        InvalidRequestError: If the amount is not a non-negative number of whole cents
    """
    try:
        value = to_decimal(amount)
    except ValueError as e:
        raise InvalidRequestError(f"Invalid amount: {e}", amount=amount) from None
    if value < 0:
        raise InvalidRequestError(f"Amount {value} is negative", amount=amount)
    if not fits_money(value):
        raise InvalidRequestError(f"Amount {value} must be whole cents up to {MAX_MONEY}", amount=amount)
    return value


def qualifying_tiers(amount: Any, tier_rules: Sequence[TierRule]) -> List[TierRule]:
    """Tiers the amount reaches, in ascending threshold order."""
    value = normalize_amount(amount)
    qualified = []
    # Highest threshold first; once a tier qualifies every lower one does too
    for rule in sorted(tier_rules, key=lambda r: r.threshold_amount, reverse=True):
        if rule.qualifies(value):
            qualified.append(rule)
    qualified.reverse()
    return qualified


def match_tier(amount: Any, tier_rules: Sequence[TierRule]) -> Optional[TierRule]:
    """The highest tier the amount reaches, or None below the lowest threshold."""
    qualified = qualifying_tiers(amount, tier_rules)
    return qualified[-1] if qualified else None


def tier_level(amount: Any, tier_rules: Sequence[TierRule]) -> int:
    """1-based level of the highest qualifying tier, 0 when none qualifies."""
    return len(qualifying_tiers(amount, tier_rules))


def resolve_tier(amount: Any, tier_rules: Sequence[TierRule]) -> List[str]:
    """
    Resolve the approver roles an amount requires.

    Args:
        amount: Request amount (Decimal, int, numeric string or float)
        tier_rules: The category's tier ladder, in any order

    Returns:
        Roles of every qualifying tier, lowest tier first, duplicates removed
        (a role keeps its first, lowest-tier position)
    """
    roles: List[str] = []
    for rule in qualifying_tiers(amount, tier_rules):
        for role in rule.approver_roles:
            if role not in roles:
                roles.append(role)
    return roles
