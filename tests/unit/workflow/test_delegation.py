"""Tests for delegation rules and resolution."""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from opsflow.core.errors import AmbiguousDelegationError, InvalidDelegationError
from opsflow.core.workflow.delegation import DelegationResolver, DelegationStatus
from tests.factories import make_delegation


WORKFLOW_ID = uuid.uuid4()


class TestDelegationRule:
    """Test rule construction and status."""

    def test_start_after_end_rejected(self):
        with pytest.raises(InvalidDelegationError):
            make_delegation(start_date=date(2024, 3, 10), end_date=date(2024, 3, 1))

    def test_self_delegation_rejected(self):
        with pytest.raises(InvalidDelegationError):
            make_delegation(from_user_id="U1", to_user_id="U1")

    def test_sub_cent_limit_rejected(self):
        with pytest.raises(InvalidDelegationError):
            make_delegation(max_amount=Decimal("5000.005"))
        assert make_delegation(max_amount=Decimal("5000.50")).max_amount == Decimal("5000.50")

    def test_single_day_rule(self):
        rule = make_delegation(start_date=date(2024, 3, 1), end_date=date(2024, 3, 1))
        assert rule.covers(date(2024, 3, 1))

    def test_status(self):
        rule = make_delegation()
        assert rule.status(date(2024, 2, 29)) == DelegationStatus.SCHEDULED
        assert rule.status(date(2024, 3, 1)) == DelegationStatus.ACTIVE
        assert rule.status(date(2024, 3, 10)) == DelegationStatus.ACTIVE
        assert rule.status(date(2024, 3, 11)) == DelegationStatus.EXPIRED

    def test_revoked_rule_never_covers(self):
        rule = make_delegation(is_active=False)
        assert rule.status(date(2024, 3, 5)) == DelegationStatus.REVOKED
        assert not rule.covers(date(2024, 3, 5))

    def test_scope_compares_ids_as_text(self):
        rule = make_delegation(workflow_ids=[WORKFLOW_ID])
        assert rule.covers(date(2024, 3, 5), str(WORKFLOW_ID))
        assert rule.covers(date(2024, 3, 5), WORKFLOW_ID)
        assert not rule.covers(date(2024, 3, 5), uuid.uuid4())
        assert not rule.covers(date(2024, 3, 5))

    def test_limits(self):
        rule = make_delegation(max_amount=Decimal("5000"), excluded_categories=["contract"])
        assert rule.permits(Decimal("5000"), "purchase")
        assert not rule.permits(Decimal("5000.01"), "purchase")
        assert not rule.permits(Decimal("10"), "contract")
        assert rule.permits(None, None)


class TestResolver:
    """Test effective approver resolution."""

    def test_active_unscoped_delegation(self):
        """U1 delegated to U2 for 2024-03-01..2024-03-10; a request on 03-05 goes to U2."""
        rule = make_delegation("U1", "U2")
        resolution = DelegationResolver([rule]).resolve("U1", date(2024, 3, 5), WORKFLOW_ID)

        assert resolution.effective_user_id == "U2"
        assert resolution.delegated
        assert resolution.rule == rule

    def test_inclusive_end_date(self):
        resolver = DelegationResolver([make_delegation("U1", "U2", date(2024, 1, 1), date(2024, 1, 7))])
        assert resolver.resolve("U1", date(2024, 1, 7)).effective_user_id == "U2"
        assert resolver.resolve("U1", date(2024, 1, 8)).effective_user_id == "U1"

    def test_no_rule_is_identity(self):
        resolution = DelegationResolver([]).resolve("U1", date(2024, 3, 5))
        assert resolution.effective_user_id == "U1"
        assert not resolution.delegated

    def test_out_of_scope_rule_ignored(self):
        rule = make_delegation(workflow_ids=[uuid.uuid4()])
        assert DelegationResolver([rule]).resolve("U1", date(2024, 3, 5), WORKFLOW_ID).effective_user_id == "U1"

    def test_scoped_rule_beats_unscoped(self):
        unscoped = make_delegation("U1", "U2", date(2024, 3, 4), date(2024, 3, 10))
        scoped = make_delegation("U1", "U3", date(2024, 3, 1), date(2024, 3, 10), workflow_ids=[WORKFLOW_ID])
        resolution = DelegationResolver([unscoped, scoped]).resolve("U1", date(2024, 3, 5), WORKFLOW_ID)
        assert resolution.effective_user_id == "U3"

    def test_latest_start_wins(self):
        older = make_delegation("U1", "U2", date(2024, 3, 1), date(2024, 3, 10))
        newer = make_delegation("U1", "U3", date(2024, 3, 4), date(2024, 3, 10))
        resolution = DelegationResolver([older, newer]).resolve("U1", date(2024, 3, 5))
        assert resolution.effective_user_id == "U3"

    def test_tie_is_ambiguous(self):
        first = make_delegation("U1", "U2")
        second = make_delegation("U1", "U3")
        with pytest.raises(AmbiguousDelegationError) as exc_info:
            DelegationResolver([first, second]).resolve("U1", date(2024, 3, 5))
        assert exc_info.value.nominal_user_id == "U1"
        assert sorted(exc_info.value.rule_ids) == sorted([str(first.rule_id), str(second.rule_id)])

    def test_single_hop_with_warning(self):
        resolver = DelegationResolver([make_delegation("U1", "U2"), make_delegation("U2", "U3")])
        resolution = resolver.resolve("U1", date(2024, 3, 5))

        assert resolution.effective_user_id == "U2"
        assert len(resolution.warnings) == 1
        warning = resolution.warnings[0]
        assert warning.delegate_id == "U2"
        assert warning.onward_user_id == "U3"
        assert warning.to_dict()["warning"] == "chained_delegation"

    def test_amount_over_limit_stays_with_nominal(self):
        resolver = DelegationResolver([make_delegation(max_amount=Decimal("1000"))])
        assert resolver.resolve("U1", date(2024, 3, 5), amount=Decimal("999")).effective_user_id == "U2"
        assert resolver.resolve("U1", date(2024, 3, 5), amount=Decimal("1001")).effective_user_id == "U1"

    def test_excluded_category_stays_with_nominal(self):
        resolver = DelegationResolver([make_delegation(excluded_categories=["contract"])])
        assert resolver.resolve("U1", date(2024, 3, 5), category="contract").effective_user_id == "U1"
        assert resolver.resolve("U1", date(2024, 3, 5), category="purchase").effective_user_id == "U2"


class TestConflictsAndExpiry:
    """Test write-time conflict detection and expiry listing."""

    def test_overlapping_unscoped_rules_conflict(self):
        existing = make_delegation("U1", "U2", date(2024, 3, 1), date(2024, 3, 10))
        candidate = make_delegation("U1", "U3", date(2024, 3, 10), date(2024, 3, 20))
        assert DelegationResolver([existing]).find_conflicts(candidate) == [existing]

    def test_adjacent_rules_do_not_conflict(self):
        existing = make_delegation("U1", "U2", date(2024, 3, 1), date(2024, 3, 10))
        candidate = make_delegation("U1", "U3", date(2024, 3, 11), date(2024, 3, 20))
        assert DelegationResolver([existing]).find_conflicts(candidate) == []

    def test_scoped_next_to_unscoped_is_allowed(self):
        existing = make_delegation("U1", "U2")
        candidate = make_delegation("U1", "U3", workflow_ids=[WORKFLOW_ID])
        assert DelegationResolver([existing]).find_conflicts(candidate) == []

    def test_intersecting_scopes_conflict(self):
        existing = make_delegation("U1", "U2", workflow_ids=[WORKFLOW_ID])
        candidate = make_delegation("U1", "U3", workflow_ids=[WORKFLOW_ID, uuid.uuid4()])
        assert DelegationResolver([existing]).find_conflicts(candidate) == [existing]

    def test_rule_does_not_conflict_with_itself(self):
        existing = make_delegation("U1", "U2")
        assert DelegationResolver([existing]).find_conflicts(existing) == []

    def test_expiring(self):
        soon = make_delegation("U1", "U2", date(2024, 3, 1), date(2024, 3, 7))
        later = make_delegation("U4", "U5", date(2024, 3, 1), date(2024, 3, 30))
        ended = make_delegation("U6", "U7", date(2024, 2, 1), date(2024, 3, 4))
        resolver = DelegationResolver([later, soon, ended])
        assert resolver.expiring(date(2024, 3, 5), 3) == [soon]
