import uuid
from datetime import datetime
from sqlalchemy import Boolean, Column, Date, DateTime, JSON, Numeric, String, Text, Uuid

from opsflow.core.workflow.delegation import DelegationRule as DelegationDefinition
from opsflow.db.base import Base


class DelegationRule(Base):
    """
    Time-bounded reassignment of one user's approval authority.

    Revoked rules are kept (``is_active`` false, ``revoked_at`` set) so
    chains built while they applied remain explainable.
    """
    __tablename__ = "delegation_rules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=False, index=True)

    from_user_id = Column(String(255), nullable=False, index=True)
    to_user_id = Column(String(255), nullable=False, index=True)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    # Scope and limits
    workflow_ids = Column(JSON, nullable=False, default=list)  # empty = every template
    max_amount = Column(Numeric(14, 2), nullable=True)
    excluded_categories = Column(JSON, nullable=False, default=list)

    reason = Column(Text, nullable=True)
    created_by = Column(String(255), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    revoked_at = Column(DateTime, nullable=True)

    def to_domain(self) -> DelegationDefinition:
        return DelegationDefinition(
            rule_id=self.id,
            from_user_id=self.from_user_id,
            to_user_id=self.to_user_id,
            start_date=self.start_date,
            end_date=self.end_date,
            is_active=self.is_active,
            workflow_ids=frozenset(self.workflow_ids or ()),
            max_amount=self.max_amount,
            excluded_categories=frozenset(self.excluded_categories or ()),
            reason=self.reason,
        )

    def __repr__(self) -> str:
        return f"<DelegationRule {self.from_user_id} -> {self.to_user_id} {self.start_date}..{self.end_date}>"
