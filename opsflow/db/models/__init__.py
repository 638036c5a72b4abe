"""Database models for OpsFlow."""

from opsflow.db.models.workflow import WorkflowTemplate, WorkflowStep
from opsflow.db.models.tier import ApprovalTierRule
from opsflow.db.models.delegation import DelegationRule
from opsflow.db.models.chain import ApprovalChain, ApprovalChainEntry, ApprovalChainHistory

__all__ = [
    "WorkflowTemplate",
    "WorkflowStep",
    "ApprovalTierRule",
    "DelegationRule",
    "ApprovalChain",
    "ApprovalChainEntry",
    "ApprovalChainHistory",
]
