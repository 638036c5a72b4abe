"""Error taxonomy for the approval chain engine.

Every error aborts the operation that raised it without changing persisted
state. ``ChainedDelegationWarning`` is the only non-fatal kind: it is
collected on resolution results and logged, never raised.
"""

from typing import Any, Iterable, Optional


class ApprovalEngineError(Exception):
    """Base class for all engine errors."""

    code = "approval_engine_error"

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        return {"error": self.code, "detail": self.message, **self._serializable_details()}

    def _serializable_details(self) -> dict:
        return {key: _jsonable(value) for key, value in self.details.items()}


def _jsonable(value: Any) -> Any:
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if value is None or isinstance(value, (bool, int, float, str)):
        return value
    return str(value)


# ---------------------------------------------------------------------------
# Submission-time errors
# ---------------------------------------------------------------------------


class NoTemplateError(ApprovalEngineError):
    """No active template of the category matches the request."""

    code = "no_template"

    def __init__(self, category: str):
        super().__init__(f"No active workflow template matches category {category!r}", category=category)
        self.category = category


class AmbiguousTemplateError(ApprovalEngineError):
    """Several templates match and none is the category default."""

    code = "ambiguous_template"

    def __init__(self, category: str, candidates: Iterable[Any]):
        self.candidate_ids = [str(c) for c in candidates]
        super().__init__(
            f"{len(self.candidate_ids)} templates match category {category!r} "
            f"and none is the default: {', '.join(self.candidate_ids)}",
            category=category,
            candidates=self.candidate_ids,
        )
        self.category = category


class AmbiguousDelegationError(ApprovalEngineError):
    """Several delegation rules tie for the same approver and date."""

    code = "ambiguous_delegation"

    def __init__(self, nominal_user_id: str, rule_ids: Iterable[Any]):
        self.rule_ids = [str(r) for r in rule_ids]
        super().__init__(
            f"Delegation for {nominal_user_id} is ambiguous between rules {', '.join(self.rule_ids)}",
            nominal_user_id=nominal_user_id,
            rule_ids=self.rule_ids,
        )
        self.nominal_user_id = nominal_user_id


class InvalidRequestError(ApprovalEngineError):
    """A submission or lifecycle request is malformed."""

    code = "invalid_request"


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


class InvalidTemplateError(ApprovalEngineError):
    """A template, step or tier definition is malformed."""

    code = "invalid_template"


class InvalidConditionError(InvalidTemplateError):
    """A condition uses an unsupported comparator or value."""

    code = "invalid_condition"


class DefaultTemplateError(ApprovalEngineError):
    """The per-category default template invariant would be violated."""

    code = "default_template_conflict"


class InvalidDelegationError(ApprovalEngineError):
    """A delegation rule is malformed."""

    code = "invalid_delegation"


class DelegationConflictError(ApprovalEngineError):
    """A delegation overlaps an existing one with an intersecting scope."""

    code = "delegation_conflict"

    def __init__(self, from_user_id: str, conflicting_ids: Iterable[Any]):
        self.conflicting_ids = [str(c) for c in conflicting_ids]
        super().__init__(
            f"Delegation from {from_user_id} overlaps rules {', '.join(self.conflicting_ids)}",
            from_user_id=from_user_id,
            conflicting_ids=self.conflicting_ids,
        )


# ---------------------------------------------------------------------------
# Decision-time errors
# ---------------------------------------------------------------------------


class AlreadyDecidedError(ApprovalEngineError):
    """The entry was already decided by the same user with another outcome."""

    code = "already_decided"


class UnauthorizedDecisionError(ApprovalEngineError):
    """The acting user is not the effective approver of a pending entry."""

    code = "unauthorized_decision"


class OutOfOrderDecisionError(ApprovalEngineError):
    """The decision targets a step that is not the current one."""

    code = "out_of_order_decision"

    def __init__(self, step_order: int, current_step: Optional[int]):
        super().__init__(
            f"Step {step_order} cannot be decided while step {current_step} is current",
            step_order=step_order,
            current_step=current_step,
        )
        self.step_order = step_order
        self.current_step = current_step


class TerminalInstanceError(ApprovalEngineError):
    """The chain already reached a terminal status."""

    code = "terminal_instance"


class ConcurrentDecisionError(ApprovalEngineError):
    """Optimistic-lock retries were exhausted for a decision."""

    code = "concurrent_decision"


# ---------------------------------------------------------------------------
# Lookup and collaborator errors
# ---------------------------------------------------------------------------


class ChainNotFoundError(ApprovalEngineError):
    code = "chain_not_found"


class TemplateNotFoundError(ApprovalEngineError):
    code = "template_not_found"


class DelegationNotFoundError(ApprovalEngineError):
    code = "delegation_not_found"


class DependencyError(ApprovalEngineError):
    """A collaborator (role directory, persistence) failed."""

    code = "dependency_failure"


class ChainedDelegationWarning(UserWarning):
    """The delegate of a resolved delegation has an active delegation too.

    Only the immediate delegate is used; the warning is surfaced to
    administrators as a configuration problem.
    """

    def __init__(self, nominal_user_id: str, delegate_id: str, onward_user_id: str, rule_id: Any = None):
        super().__init__(
            f"{delegate_id} acts for {nominal_user_id} but has delegated to {onward_user_id}"
        )
        self.nominal_user_id = nominal_user_id
        self.delegate_id = delegate_id
        self.onward_user_id = onward_user_id
        self.rule_id = rule_id

    def to_dict(self) -> dict:
        return {
            "warning": "chained_delegation",
            "nominal_user_id": self.nominal_user_id,
            "delegate_id": self.delegate_id,
            "onward_user_id": self.onward_user_id,
            "rule_id": str(self.rule_id) if self.rule_id is not None else None,
        }
