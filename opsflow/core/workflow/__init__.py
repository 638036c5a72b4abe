"""Workflow rule evaluation for OpsFlow.

Templates, conditions, tier ladders and delegation rules, plus the chain
builder that combines them into approval chain instances.
"""

from .conditions import Comparator, Condition, conditions_satisfied
from .templates import Step, StepKind, WorkflowCategory, WorkflowTemplate
from .tiers import TierRule, resolve_tier
from .delegation import DelegationResolver, DelegationRule, DelegationStatus
from .matcher import TemplateMatcher
from .builder import ChainBuilder

__all__ = [
    "Comparator",
    "Condition",
    "conditions_satisfied",
    "Step",
    "StepKind",
    "WorkflowCategory",
    "WorkflowTemplate",
    "TierRule",
    "resolve_tier",
    "DelegationResolver",
    "DelegationRule",
    "DelegationStatus",
    "TemplateMatcher",
    "ChainBuilder",
]
