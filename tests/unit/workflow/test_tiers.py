"""Tests for monetary tier resolution."""

from decimal import Decimal

import pytest

from opsflow.core.errors import InvalidRequestError, InvalidTemplateError
from opsflow.core.workflow.tiers import (
    TierRule,
    match_tier,
    normalize_amount,
    resolve_tier,
    tier_level,
    validate_tier_rules,
)
from tests.factories import tier


LADDER = [tier(0, "manager"), tier(10000, "director"), tier(50000, "cfo")]


class TestResolveTier:
    """Test cumulative role resolution."""

    def test_purchase_of_45000(self):
        """Amounts accumulate every reached tier, lowest first."""
        ladder = [tier(0, "manager"), tier(10000, "director")]
        assert resolve_tier(Decimal("45000"), ladder) == ["manager", "director"]

    def test_threshold_is_inclusive(self):
        assert resolve_tier(Decimal("10000.00"), LADDER) == ["manager", "director"]
        assert resolve_tier(Decimal("9999.99"), LADDER) == ["manager"]

    def test_order_of_ladder_does_not_matter(self):
        assert resolve_tier("60000", list(reversed(LADDER))) == ["manager", "director", "cfo"]

    def test_float_amount_has_no_binary_drift(self):
        ladder = [tier("0.3", "manager")]
        assert resolve_tier(0.3, ladder) == ["manager"]
        assert resolve_tier(10000.0, LADDER) == ["manager", "director"]

    def test_sub_cent_amount_is_refused(self):
        # 9999.999 would be stored as 10000.00 and land in the other tier
        with pytest.raises(InvalidRequestError):
            resolve_tier(Decimal("9999.999"), LADDER)
        with pytest.raises(InvalidRequestError):
            resolve_tier(0.1 + 0.2, LADDER)  # 0.30000000000000004
        assert resolve_tier(Decimal("9999.990"), LADDER) == ["manager"]

    def test_below_lowest_threshold(self):
        ladder = [tier(100, "manager")]
        assert resolve_tier(Decimal("99.99"), ladder) == []
        assert match_tier(Decimal("99.99"), ladder) is None
        assert tier_level(Decimal("99.99"), ladder) == 0

    def test_duplicate_roles_keep_lowest_position(self):
        ladder = [tier(0, "manager"), tier(1000, "director", "manager"), tier(5000, "cfo")]
        assert resolve_tier(6000, ladder) == ["manager", "director", "cfo"]

    def test_match_and_level(self):
        assert match_tier(Decimal("45000"), LADDER).threshold_amount == Decimal("10000")
        assert tier_level(Decimal("45000"), LADDER) == 2
        assert tier_level(Decimal("50000"), LADDER) == 3

    def test_empty_ladder(self):
        assert resolve_tier(Decimal("1"), []) == []


class TestValidation:
    """Test ladder and amount validation."""

    def test_duplicate_threshold_rejected(self):
        with pytest.raises(InvalidTemplateError):
            validate_tier_rules([tier(100, "manager"), tier("100.00", "director")])

    def test_ladder_is_sorted(self):
        ordered = validate_tier_rules([tier(500, "director"), tier(0, "manager")])
        assert [r.threshold_amount for r in ordered] == [Decimal(0), Decimal(500)]

    def test_rung_needs_roles(self):
        with pytest.raises(InvalidTemplateError):
            TierRule(threshold_amount=Decimal(0), approver_roles=())

    def test_negative_threshold_rejected(self):
        with pytest.raises(InvalidTemplateError):
            tier(-1, "manager")

    def test_threshold_must_be_decimal(self):
        with pytest.raises(InvalidTemplateError):
            TierRule(threshold_amount=100.0, approver_roles=("manager",))

    def test_from_dict(self):
        rule = TierRule.from_dict({"threshold_amount": "2500.50", "approver_roles": ["director"], "name": "T2"})
        assert rule.threshold_amount == Decimal("2500.50")
        assert rule.to_dict() == {"threshold_amount": "2500.50", "approver_roles": ["director"], "name": "T2"}

    def test_from_dict_bad_threshold(self):
        with pytest.raises(InvalidTemplateError):
            TierRule.from_dict({"threshold_amount": "lots", "approver_roles": ["director"]})

    @pytest.mark.parametrize("threshold", ["10000.005", "1000000000000"])
    def test_threshold_must_fit_money_column(self, threshold):
        with pytest.raises(InvalidTemplateError):
            TierRule.from_dict({"threshold_amount": threshold, "approver_roles": ["director"]})

    @pytest.mark.parametrize("amount", [-1, "-0.01", "abc", None, True])
    def test_invalid_amounts(self, amount):
        with pytest.raises(InvalidRequestError):
            normalize_amount(amount)
