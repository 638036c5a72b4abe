"""Condition definitions for workflow templates.

Conditions select a template among candidates and gate conditional steps.
Each comparator kind is its own condition class with an explicit evaluator;
an unknown comparator or an unrepresentable value fails at construction
instead of quietly evaluating to False.
"""

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Mapping, Tuple

from opsflow.core.errors import InvalidConditionError, InvalidRequestError


class Comparator(str, Enum):
    """Operators for condition comparisons."""

    EQUALS = "eq"
    NOT_EQUALS = "ne"
    GREATER_THAN = "gt"
    GREATER_THAN_OR_EQUAL = "gte"
    LESS_THAN = "lt"
    LESS_THAN_OR_EQUAL = "lte"
    IN = "in"
    NOT_IN = "not_in"
    EXISTS = "exists"
    NOT_EXISTS = "not_exists"


def to_decimal(value: Any) -> Decimal:
    """Convert a numeric value to Decimal without going through binary float.

    Floats are converted from their shortest repr, so ``10000.0`` becomes
    ``Decimal("10000.0")`` rather than its binary expansion.

    Raises:
        ValueError: If the value is not numeric
    """
    if isinstance(value, bool):
        raise ValueError(f"Boolean {value!r} is not a numeric value")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(repr(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"{value!r} is not a numeric value") from None
    else:
        raise ValueError(f"{type(value).__name__} is not a numeric value")
    if not result.is_finite():
        raise ValueError(f"{value!r} is not a finite number")
    return result


@dataclass(frozen=True)
class Condition:
    """Base class: a predicate over one request attribute."""

    attribute: str

    comparators: ClassVar[Tuple[Comparator, ...]] = ()

    def __post_init__(self):
        if not self.attribute or not isinstance(self.attribute, str):
            raise InvalidConditionError("Condition requires an attribute name")

    def evaluate(self, attributes: Mapping[str, Any]) -> bool:
        raise NotImplementedError

    def to_dict(self) -> Dict[str, Any]:
        raise NotImplementedError

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "Condition":
        """Create a condition from its serialized form.

        Raises:
            InvalidConditionError: If the comparator is unsupported or the
                value does not fit the comparator
        """
        if not isinstance(data, Mapping):
            raise InvalidConditionError(f"Condition must be a mapping, got {type(data).__name__}")
        try:
            comparator = Comparator(data.get("comparator"))
        except ValueError:
            raise InvalidConditionError(f"Unsupported comparator: {data.get('comparator')!r}") from None

        condition_cls = CONDITION_TYPES[comparator]
        return condition_cls.build(data.get("attribute"), comparator, data.get("value"))


@dataclass(frozen=True)
class EqualityCondition(Condition):
    """``attribute == value`` (or ``!=`` when negated)."""

    value: Any = None
    negate: bool = False

    comparators: ClassVar[Tuple[Comparator, ...]] = (Comparator.EQUALS, Comparator.NOT_EQUALS)

    @classmethod
    def build(cls, attribute: str, comparator: Comparator, value: Any) -> "EqualityCondition":
        if isinstance(value, (list, dict)):
            raise InvalidConditionError(f"Equality condition on {attribute!r} needs a scalar value")
        return cls(attribute=attribute, value=value, negate=comparator == Comparator.NOT_EQUALS)

    def evaluate(self, attributes: Mapping[str, Any]) -> bool:
        if self.attribute not in attributes:
            return self.negate
        matched = _scalar_equal(attributes[self.attribute], self.value)
        return not matched if self.negate else matched

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "comparator": (Comparator.NOT_EQUALS if self.negate else Comparator.EQUALS).value,
            "value": self.value,
        }


@dataclass(frozen=True)
class ThresholdCondition(Condition):
    """Numeric ordering comparison, evaluated in Decimal arithmetic."""

    comparator: Comparator = Comparator.GREATER_THAN_OR_EQUAL
    value: Decimal = Decimal(0)

    comparators: ClassVar[Tuple[Comparator, ...]] = (
        Comparator.GREATER_THAN,
        Comparator.GREATER_THAN_OR_EQUAL,
        Comparator.LESS_THAN,
        Comparator.LESS_THAN_OR_EQUAL,
    )

    @classmethod
    def build(cls, attribute: str, comparator: Comparator, value: Any) -> "ThresholdCondition":
        try:
            threshold = to_decimal(value)
        except ValueError as e:
            raise InvalidConditionError(f"Threshold for {attribute!r} must be numeric: {e}") from None
        return cls(attribute=attribute, comparator=comparator, value=threshold)

    def evaluate(self, attributes: Mapping[str, Any]) -> bool:
        if attributes.get(self.attribute) is None:
            return False
        try:
            actual = to_decimal(attributes[self.attribute])
        except ValueError:
            raise InvalidRequestError(
                f"Attribute {self.attribute!r} must be numeric for a {self.comparator.value} comparison",
                attribute=self.attribute,
            ) from None

        if self.comparator == Comparator.GREATER_THAN:
            return actual > self.value
        if self.comparator == Comparator.GREATER_THAN_OR_EQUAL:
            return actual >= self.value
        if self.comparator == Comparator.LESS_THAN:
            return actual < self.value
        return actual <= self.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "comparator": self.comparator.value,
            "value": str(self.value),
        }


@dataclass(frozen=True)
class MembershipCondition(Condition):
    """``attribute in values`` (or ``not in`` when negated)."""

    values: Tuple[Any, ...] = ()
    negate: bool = False

    comparators: ClassVar[Tuple[Comparator, ...]] = (Comparator.IN, Comparator.NOT_IN)

    @classmethod
    def build(cls, attribute: str, comparator: Comparator, value: Any) -> "MembershipCondition":
        if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
            raise InvalidConditionError(f"Membership condition on {attribute!r} needs a list of values")
        return cls(attribute=attribute, values=tuple(value), negate=comparator == Comparator.NOT_IN)

    def evaluate(self, attributes: Mapping[str, Any]) -> bool:
        if self.attribute not in attributes:
            return self.negate
        actual = attributes[self.attribute]
        matched = any(_scalar_equal(actual, v) for v in self.values)
        return not matched if self.negate else matched

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "comparator": (Comparator.NOT_IN if self.negate else Comparator.IN).value,
            "value": list(self.values),
        }


@dataclass(frozen=True)
class PresenceCondition(Condition):
    """Attribute is present and not null (or absent when ``present`` is False)."""

    present: bool = True

    comparators: ClassVar[Tuple[Comparator, ...]] = (Comparator.EXISTS, Comparator.NOT_EXISTS)

    @classmethod
    def build(cls, attribute: str, comparator: Comparator, value: Any) -> "PresenceCondition":
        return cls(attribute=attribute, present=comparator == Comparator.EXISTS)

    def evaluate(self, attributes: Mapping[str, Any]) -> bool:
        exists = attributes.get(self.attribute) is not None
        return exists if self.present else not exists

    def to_dict(self) -> Dict[str, Any]:
        return {
            "attribute": self.attribute,
            "comparator": (Comparator.EXISTS if self.present else Comparator.NOT_EXISTS).value,
            "value": None,
        }


# Every comparator maps to exactly one condition class
CONDITION_TYPES: Dict[Comparator, type] = {}

for condition_cls in (EqualityCondition, ThresholdCondition, MembershipCondition, PresenceCondition):
    for comparator in condition_cls.comparators:
        CONDITION_TYPES[comparator] = condition_cls


def _scalar_equal(actual: Any, expected: Any) -> bool:
    """Equality that compares numbers by value, never via float."""
    numeric = (int, float, Decimal)
    if isinstance(actual, numeric) and isinstance(expected, numeric):
        if isinstance(actual, bool) or isinstance(expected, bool):
            return actual is expected
        try:
            return to_decimal(actual) == to_decimal(expected)
        except ValueError:
            return False
    return actual == expected


def conditions_satisfied(conditions: Iterable[Condition], attributes: Mapping[str, Any]) -> bool:
    """Check that every condition holds. An empty list is always satisfied."""
    return all(condition.evaluate(attributes) for condition in conditions)


def parse_conditions(data: Iterable[Mapping[str, Any]]) -> Tuple[Condition, ...]:
    """Parse a list of serialized conditions."""
    return tuple(Condition.from_dict(item) for item in (data or []))
