"""Database seeding for OpsFlow.

Loads a YAML catalog (templates, tier ladders, delegation rules) into an
organization. Seeding is idempotent: templates are matched by category
and name, delegations by delegator, delegate and dates.
"""

import logging
import uuid
from typing import Dict

from sqlalchemy import and_
from sqlalchemy.orm import Session

from opsflow.core.errors import DefaultTemplateError, DelegationConflictError
from opsflow.core.workflow.conditions import to_decimal
from opsflow.core.workflow.delegation import DelegationResolver
from opsflow.db.models import ApprovalTierRule, DelegationRule, WorkflowStep, WorkflowTemplate
from opsflow.db.models.chain import json_safe
from src.common.config import CatalogConfig, TemplateConfig

logger = logging.getLogger(__name__)


def seed_template(db: Session, org_id: uuid.UUID, config: TemplateConfig) -> WorkflowTemplate:
    """
    Create a template unless one with the same category and name exists.

    Raises:
        DefaultTemplateError: If the template is default and the category
            already has a different default
    """
    existing = db.query(WorkflowTemplate).filter(
        and_(
            WorkflowTemplate.org_id == org_id,
            WorkflowTemplate.category == config.category.value,
            WorkflowTemplate.name == config.name,
        )
    ).first()
    if existing:
        return existing

    if config.is_default:
        current = db.query(WorkflowTemplate).filter(
            and_(
                WorkflowTemplate.org_id == org_id,
                WorkflowTemplate.category == config.category.value,
                WorkflowTemplate.is_default == True,  # noqa: E712
            )
        ).first()
        if current:
            raise DefaultTemplateError(
                f"{current.name!r} is already the default for {config.category.value!r}",
                current_default=current.id,
            )

    template = WorkflowTemplate(
        id=uuid.uuid4(),
        org_id=org_id,
        name=config.name,
        description=config.description,
        category=config.category.value,
        version=1,
        conditions=json_safe([c.to_dict() for c in config.conditions]),
        uses_tiers=config.uses_tiers,
        is_active=config.is_active,
        is_default=config.is_default,
        created_by="seed",
    )
    template.steps = [WorkflowStep.from_domain(step) for step in config.steps]
    for step in template.steps:
        if step.condition is not None:
            step.condition = json_safe(step.condition)
    db.add(template)
    db.flush()
    return template


def seed_tiers(db: Session, org_id: uuid.UUID, category: str, ladder) -> int:
    """Replace the tier ladder of a category. Returns the number of rungs."""
    db.query(ApprovalTierRule).filter(
        and_(
            ApprovalTierRule.org_id == org_id,
            ApprovalTierRule.category == category,
        )
    ).delete(synchronize_session=False)
    for rule in ladder:
        db.add(ApprovalTierRule(
            id=uuid.uuid4(),
            org_id=org_id,
            category=category,
            name=rule.name,
            threshold_amount=rule.threshold_amount,
            approver_roles=list(rule.approver_roles),
        ))
    db.flush()
    return len(ladder)


def seed_catalog(db: Session, org_id: uuid.UUID, catalog: CatalogConfig) -> Dict[str, int]:
    """
    Seed a whole catalog into an organization.

    Args:
        db: Database session (the caller commits)
        org_id: Organization to seed
        catalog: Parsed catalog

    Returns:
        Counts of seeded templates, tier rungs and delegations
    """
    summary = {"templates": 0, "tiers": 0, "delegations": 0}

    for config in catalog.templates:
        seed_template(db, org_id, config)
        summary["templates"] += 1

    for category, ladder in catalog.tiers.items():
        summary["tiers"] += seed_tiers(db, org_id, category, ladder)

    for config in catalog.delegations:
        existing = db.query(DelegationRule).filter(
            and_(
                DelegationRule.org_id == org_id,
                DelegationRule.from_user_id == config.from_user_id,
                DelegationRule.to_user_id == config.to_user_id,
                DelegationRule.start_date == config.start_date,
                DelegationRule.end_date == config.end_date,
            )
        ).first()
        if existing:
            continue

        rule = DelegationRule(
            id=uuid.uuid4(),
            org_id=org_id,
            from_user_id=config.from_user_id,
            to_user_id=config.to_user_id,
            start_date=config.start_date,
            end_date=config.end_date,
            is_active=True,
            workflow_ids=sorted(config.workflow_ids),
            max_amount=to_decimal(config.max_amount) if config.max_amount is not None else None,
            excluded_categories=sorted(config.excluded_categories),
            reason=config.reason,
            created_by="seed",
        )
        active = db.query(DelegationRule).filter(
            and_(
                DelegationRule.org_id == org_id,
                DelegationRule.from_user_id == config.from_user_id,
                DelegationRule.is_active == True,  # noqa: E712
            )
        ).all()
        conflicts = DelegationResolver(r.to_domain() for r in active).find_conflicts(rule.to_domain())
        if conflicts:
            raise DelegationConflictError(config.from_user_id, [r.rule_id for r in conflicts])
        db.add(rule)
        db.flush()
        summary["delegations"] += 1

    logger.info(
        "Seeded org %s: %d templates, %d tier rungs, %d delegations",
        org_id, summary["templates"], summary["tiers"], summary["delegations"],
    )
    return summary


def main():
    """Entry point: python -m opsflow.db.seed <catalog.yaml> <org-uuid>"""
    import sys
    from opsflow.core.config import get_settings
    from opsflow.db.base import Base
    from opsflow.db.session import SessionLocal, engine
    from src.common.config import load_catalog
    from src.common.logger import setup_logger

    if len(sys.argv) < 3:
        print("Usage: python -m opsflow.db.seed <catalog.yaml> <org-uuid>", file=sys.stderr)
        sys.exit(1)

    settings = get_settings()
    try:
        catalog = load_catalog(sys.argv[1])
        org_id = uuid.UUID(sys.argv[2])
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logger("opsflow", log_dir=catalog.log_dir, level=settings.log_level, file_logging=False)

    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        summary = seed_catalog(db, org_id, catalog)
        db.commit()
        print(f"Seeded organization {org_id}:")
        for key, count in summary.items():
            print(f"  - {key}: {count}")
    except Exception as e:
        db.rollback()
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    finally:
        db.close()


if __name__ == "__main__":
    main()
