import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, JSON, Numeric, String, UniqueConstraint, Uuid

from opsflow.core.workflow.tiers import TierRule
from opsflow.db.base import Base


class ApprovalTierRule(Base):
    """One rung of a category's monetary tier ladder."""
    __tablename__ = "approval_tier_rules"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    org_id = Column(Uuid, nullable=False, index=True)
    category = Column(String(50), nullable=False, index=True)

    name = Column(String(255), nullable=True)
    threshold_amount = Column(Numeric(14, 2), nullable=False)
    approver_roles = Column(JSON, nullable=False, default=list)

    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("org_id", "category", "threshold_amount", name="uq_approval_tier_threshold"),
    )

    def to_domain(self) -> TierRule:
        return TierRule(
            threshold_amount=self.threshold_amount,
            approver_roles=tuple(self.approver_roles or ()),
            name=self.name,
        )

    def __repr__(self) -> str:
        return f"<ApprovalTierRule {self.category} >= {self.threshold_amount}>"
