"""Integration tests for TemplateCatalogService."""

import uuid
from decimal import Decimal

import pytest

from opsflow.core.errors import DefaultTemplateError, InvalidTemplateError, TemplateNotFoundError
from opsflow.db.models import WorkflowTemplate


pytestmark = pytest.mark.integration

MANAGER_STEP = {"order": 1, "kind": "approval", "approver_role": "manager"}
DIRECTOR_STEP = {"order": 2, "kind": "approval", "approver_role": "director"}


class TestTemplates:
    """Test template administration."""

    def test_create_template(self, catalog):
        created = catalog.create_template(
            "Standard purchase", "purchase",
            steps=[DIRECTOR_STEP, MANAGER_STEP],
            conditions=[{"attribute": "cost_center", "comparator": "exists"}],
            created_by="admin",
        )

        assert created["version"] == 1
        assert created["category"] == "purchase"
        assert [s["approver_role"] for s in created["steps"]] == ["manager", "director"]
        assert created["conditions"][0]["comparator"] == "exists"
        assert created["created_by"] == "admin"

    def test_create_rejects_invalid_definition(self, catalog, db_session):
        with pytest.raises(InvalidTemplateError):
            catalog.create_template("Broken", "purchase", steps=[{"order": 1, "kind": "approval"}])
        with pytest.raises(InvalidTemplateError):
            catalog.create_template("Empty", "purchase")
        assert db_session.query(WorkflowTemplate).count() == 0

    def test_second_default_rejected(self, catalog):
        catalog.create_template("A", "purchase", steps=[MANAGER_STEP], is_default=True)
        with pytest.raises(DefaultTemplateError):
            catalog.create_template("B", "purchase", steps=[MANAGER_STEP], is_default=True)

        # Other categories keep their own default
        other = catalog.create_template("C", "permit", steps=[MANAGER_STEP], is_default=True)
        assert other["is_default"] is True

    def test_update_definition_bumps_version(self, catalog):
        created = catalog.create_template("A", "purchase", steps=[MANAGER_STEP])

        updated = catalog.update_template(uuid.UUID(created["id"]), steps=[MANAGER_STEP, DIRECTOR_STEP])
        assert updated["version"] == 2
        assert len(updated["steps"]) == 2

        renamed = catalog.update_template(uuid.UUID(created["id"]), name="A (renamed)")
        assert renamed["version"] == 2
        assert renamed["name"] == "A (renamed)"

    def test_invalid_update_changes_nothing(self, catalog):
        created = catalog.create_template("A", "purchase", steps=[MANAGER_STEP])
        template_id = uuid.UUID(created["id"])

        with pytest.raises(InvalidTemplateError):
            catalog.update_template(template_id, steps=[{"order": 1, "kind": "parallel"}])

        current = catalog.get_template(template_id)
        assert current["version"] == 1
        assert [s["approver_role"] for s in current["steps"]] == ["manager"]

    def test_set_default(self, catalog):
        first = catalog.create_template("A", "purchase", steps=[MANAGER_STEP], is_default=True)
        second = catalog.create_template("B", "purchase", steps=[dict(DIRECTOR_STEP, order=1)])
        second_id = uuid.UUID(second["id"])

        with pytest.raises(DefaultTemplateError):
            catalog.set_default(second_id)

        promoted = catalog.set_default(second_id, replace_existing=True)
        assert promoted["is_default"] is True
        assert catalog.get_template(uuid.UUID(first["id"]))["is_default"] is False

    def test_unset_default(self, catalog):
        created = catalog.create_template("A", "purchase", steps=[MANAGER_STEP], is_default=True)
        assert catalog.unset_default(uuid.UUID(created["id"]))["is_default"] is False

    def test_inactive_template_cannot_be_default(self, catalog):
        created = catalog.create_template("A", "purchase", steps=[MANAGER_STEP], is_active=False)
        with pytest.raises(DefaultTemplateError):
            catalog.set_default(uuid.UUID(created["id"]))

    def test_default_cannot_be_deactivated_or_deleted(self, catalog):
        created = catalog.create_template("A", "purchase", steps=[MANAGER_STEP], is_default=True)
        template_id = uuid.UUID(created["id"])

        with pytest.raises(DefaultTemplateError):
            catalog.deactivate_template(template_id)
        with pytest.raises(DefaultTemplateError):
            catalog.delete_template(template_id)

    def test_deactivate_and_list(self, catalog):
        created = catalog.create_template("A", "purchase", steps=[MANAGER_STEP])
        catalog.create_template("B", "time_off", steps=[MANAGER_STEP])
        catalog.deactivate_template(uuid.UUID(created["id"]))

        assert [t["name"] for t in catalog.list_templates()] == ["B"]
        assert len(catalog.list_templates(include_inactive=True)) == 2
        assert catalog.list_templates(category="purchase") == []

        catalog.activate_template(uuid.UUID(created["id"]))
        assert [t["name"] for t in catalog.list_templates(category="purchase")] == ["A"]

    def test_delete(self, catalog):
        created = catalog.create_template("A", "purchase", steps=[MANAGER_STEP])
        catalog.delete_template(uuid.UUID(created["id"]))

        with pytest.raises(TemplateNotFoundError):
            catalog.get_template(uuid.UUID(created["id"]))

    def test_other_org_is_isolated(self, catalog, db_session):
        from opsflow.services.catalog import TemplateCatalogService

        created = catalog.create_template("A", "purchase", steps=[MANAGER_STEP])
        other = TemplateCatalogService(db_session, uuid.uuid4())

        with pytest.raises(TemplateNotFoundError):
            other.get_template(uuid.UUID(created["id"]))
        assert other.list_templates() == []


class TestTierLadders:
    """Test tier ladder storage."""

    def test_replace_and_get(self, catalog):
        catalog.replace_tier_ladder("purchase", [
            {"threshold_amount": "10000", "approver_roles": ["director"]},
            {"threshold_amount": "0", "approver_roles": ["manager"], "name": "base"},
        ])
        ladder = catalog.get_tier_ladder("purchase")

        assert [r.threshold_amount for r in ladder] == [Decimal("0"), Decimal("10000")]
        assert ladder[0].name == "base"
        assert ladder[1].approver_roles == ("director",)

        catalog.replace_tier_ladder("purchase", [{"threshold_amount": "0", "approver_roles": ["cfo"]}])
        assert [r.approver_roles for r in catalog.get_tier_ladder("purchase")] == [("cfo",)]
        assert catalog.get_tier_ladder("expense") == []

    def test_duplicate_threshold_rejected(self, catalog):
        catalog.replace_tier_ladder("purchase", [{"threshold_amount": "0", "approver_roles": ["manager"]}])

        with pytest.raises(InvalidTemplateError):
            catalog.replace_tier_ladder("purchase", [
                {"threshold_amount": "500", "approver_roles": ["manager"]},
                {"threshold_amount": "500.00", "approver_roles": ["director"]},
            ])
        assert len(catalog.get_tier_ladder("purchase")) == 1

    def test_sub_cent_threshold_rejected(self, catalog):
        catalog.replace_tier_ladder("purchase", [{"threshold_amount": "10000.00", "approver_roles": ["director"]}])

        with pytest.raises(InvalidTemplateError):
            catalog.replace_tier_ladder("purchase", [{"threshold_amount": "10000.005", "approver_roles": ["director"]}])
        assert [r.threshold_amount for r in catalog.get_tier_ladder("purchase")] == [Decimal("10000.00")]
