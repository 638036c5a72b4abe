"""Integration tests for DelegationService."""

import uuid
from datetime import date, datetime

import pytest

from opsflow.core.errors import DelegationConflictError, DelegationNotFoundError, InvalidDelegationError
from tests.factories import approval_step, create_template, parallel_step


pytestmark = pytest.mark.integration

MARCH_1 = date(2024, 3, 1)
MARCH_10 = date(2024, 3, 10)


class TestDelegationService:
    """Test delegation administration."""

    def test_create(self, delegations):
        rule = delegations.create_delegation(
            "U1", "U2", MARCH_1, MARCH_10,
            max_amount="5000", excluded_categories=["contract"], reason="vacation",
        )

        assert rule["from_user_id"] == "U1"
        assert rule["max_amount"] == "5000.00"
        assert rule["excluded_categories"] == ["contract"]
        assert rule["is_active"] is True

    def test_invalid_rules(self, delegations):
        with pytest.raises(InvalidDelegationError):
            delegations.create_delegation("U1", "U2", MARCH_10, MARCH_1)
        with pytest.raises(InvalidDelegationError):
            delegations.create_delegation("U1", "U1", MARCH_1, MARCH_10)
        with pytest.raises(InvalidDelegationError):
            delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10, max_amount="-1")
        with pytest.raises(InvalidDelegationError):
            delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10, max_amount="5000.005")
        assert delegations.list_delegations() == []

    def test_overlapping_rules_conflict(self, delegations):
        existing = delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10)

        with pytest.raises(DelegationConflictError) as exc_info:
            delegations.create_delegation("U1", "U3", date(2024, 3, 8), date(2024, 3, 20))
        assert exc_info.value.conflicting_ids == [existing["id"]]

        # Adjacent ranges and a scoped rule next to an unscoped one are fine
        delegations.create_delegation("U1", "U3", date(2024, 3, 11), date(2024, 3, 20))
        delegations.create_delegation("U1", "U4", MARCH_1, MARCH_10, workflow_ids=[uuid.uuid4()])

    def test_revoked_rule_does_not_conflict(self, delegations):
        existing = delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10)
        revoked = delegations.revoke_delegation(uuid.UUID(existing["id"]))

        assert revoked["is_active"] is False
        assert revoked["status"] == "revoked"
        assert revoked["revoked_at"] is not None
        delegations.create_delegation("U1", "U3", MARCH_1, MARCH_10)

    def test_update(self, delegations):
        rule = delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10)
        updated = delegations.update_delegation(uuid.UUID(rule["id"]), end_date=date(2024, 3, 15), reason="extended")

        assert updated["end_date"] == "2024-03-15"
        assert updated["reason"] == "extended"
        assert updated["to_user_id"] == "U2"

    def test_revoked_rule_cannot_be_edited(self, delegations):
        rule = delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10)
        delegations.revoke_delegation(uuid.UUID(rule["id"]))

        with pytest.raises(InvalidDelegationError):
            delegations.update_delegation(uuid.UUID(rule["id"]), to_user_id="U3")

    def test_update_into_conflict(self, delegations):
        delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10)
        later = delegations.create_delegation("U1", "U3", date(2024, 4, 1), date(2024, 4, 10))

        with pytest.raises(DelegationConflictError):
            delegations.update_delegation(uuid.UUID(later["id"]), start_date=date(2024, 3, 5))

    def test_list_by_status(self, delegations):
        delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10)
        delegations.create_delegation("U5", "U6", date(2024, 4, 1), date(2024, 4, 10))
        delegations.create_delegation("U7", "U8", date(2024, 1, 1), date(2024, 1, 31))

        as_of = date(2024, 3, 5)
        assert [r["from_user_id"] for r in delegations.list_delegations(status="active", as_of=as_of)] == ["U1"]
        assert [r["from_user_id"] for r in delegations.list_delegations(status="scheduled", as_of=as_of)] == ["U5"]
        assert [r["from_user_id"] for r in delegations.list_delegations(status="expired", as_of=as_of)] == ["U7"]
        assert len(delegations.list_delegations(as_of=as_of)) == 3
        assert [r["to_user_id"] for r in delegations.list_delegations(to_user_id="U6")] == ["U6"]

    def test_list_for_user(self, delegations):
        delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10)
        delegations.create_delegation("U3", "U1", date(2024, 4, 1), date(2024, 4, 10))
        delegations.create_delegation("U4", "U5", MARCH_1, MARCH_10)

        rules = delegations.list_for_user("U1", as_of=date(2024, 3, 5))
        assert [(r["from_user_id"], r["status"]) for r in rules] == [("U1", "active"), ("U3", "scheduled")]

    def test_expiring(self, delegations):
        delegations.create_delegation("U1", "U2", MARCH_1, MARCH_10)
        delegations.create_delegation("U3", "U4", MARCH_1, date(2024, 3, 31))
        revoked = delegations.create_delegation("U5", "U6", MARCH_1, date(2024, 3, 8))
        delegations.revoke_delegation(uuid.UUID(revoked["id"]))

        expiring = delegations.expiring_delegations(within_days=7, as_of=date(2024, 3, 5))
        assert [r["from_user_id"] for r in expiring] == ["U1"]
        assert expiring[0]["status"] == "active"

    def test_stats_without_rules(self, delegations):
        stats = delegations.get_stats(as_of=date(2024, 3, 5))
        assert stats["total"] == 0
        assert stats["top_delegates"] == []
        assert stats["proxy_decisions"]["total"] == 0
        assert stats["proxy_decisions"]["total_amount"] == "0"

    def test_unknown_rule(self, delegations):
        with pytest.raises(DelegationNotFoundError):
            delegations.get_delegation(uuid.uuid4())


class TestDelegationStats:
    """Test rule and proxy decision statistics."""

    def test_counts_rules_and_proxy_decisions(self, db_session, org_id, delegations, approval_service):
        create_template(db_session, org_id, steps=[parallel_step(1, "legal", "finance"), approval_step(2, "director")])
        legal = delegations.create_delegation("L1", "U2", MARCH_1, MARCH_10)
        delegations.create_delegation("F1", "U2", MARCH_1, MARCH_10)
        delegations.create_delegation("D1", "U3", MARCH_1, MARCH_10)
        delegations.create_delegation("U5", "U6", date(2024, 4, 1), date(2024, 4, 10))
        revoked = delegations.create_delegation("U7", "U8", MARCH_1, MARCH_10)
        delegations.revoke_delegation(uuid.UUID(revoked["id"]))

        chain = approval_service.submit_request(
            "purchase", {}, amount="1200", submitter_id="E1", submitted_at=datetime(2024, 3, 5, 9, 0),
        )
        approval_service.apply_decision(chain.chain_id, 1, "U2", "approve", acted_at=datetime(2024, 3, 5, 10, 0))
        approval_service.apply_decision(chain.chain_id, 2, "U3", "reject", acted_at=datetime(2024, 3, 5, 11, 0))

        stats = delegations.get_stats(as_of=date(2024, 3, 5))

        assert stats["total"] == 5
        assert stats["by_status"] == {"active": 3, "scheduled": 1, "expired": 0, "revoked": 1}
        assert stats["top_delegates"][0] == {"user_id": "U2", "count": 2}
        assert [d["user_id"] for d in stats["top_delegators"]] == ["D1", "F1", "L1", "U5", "U7"]

        proxy = stats["proxy_decisions"]
        assert proxy["total"] == 3
        assert proxy["approved"] == 2
        assert proxy["rejected"] == 1
        assert proxy["by_category"] == {"purchase": 3}
        assert proxy["by_rule"][legal["id"]] == 1
        # U2 covered two slots of one chain; its amount counts once
        assert proxy["top_proxies"] == [
            {"user_id": "U2", "count": 2, "amount": "1200.00"},
            {"user_id": "U3", "count": 1, "amount": "1200.00"},
        ]
        assert proxy["total_amount"] == "2400.00"
