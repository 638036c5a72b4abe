"""Template selection for incoming requests."""

import logging
from typing import Any, Iterable, List, Mapping

from opsflow.core.errors import AmbiguousTemplateError, InvalidRequestError, NoTemplateError
from opsflow.core.workflow.conditions import conditions_satisfied
from opsflow.core.workflow.templates import WorkflowCategory, WorkflowTemplate

logger = logging.getLogger(__name__)


def parse_category(value: Any) -> WorkflowCategory:
    try:
        return WorkflowCategory(value)
    except ValueError:
        raise InvalidRequestError(f"Unknown request category: {value!r}", category=value) from None


class TemplateMatcher:
    """
    Selects the single workflow template applicable to a request.

    Candidates are active templates of the category whose conditions all
    hold. Several candidates are narrowed to the category default; if that
    does not leave exactly one, matching fails rather than picking one.
    """

    def __init__(self, templates: Iterable[WorkflowTemplate]):
        self.templates = list(templates)

    def candidates(self, category: Any, attributes: Mapping[str, Any]) -> List[WorkflowTemplate]:
        """Active templates of the category whose conditions are satisfied."""
        category = parse_category(category)
        matched = [
            template for template in self.templates
            if template.is_active
            and template.category == category
            and conditions_satisfied(template.conditions, attributes)
        ]
        return sorted(matched, key=lambda t: str(t.template_id))

    def match(self, category: Any, attributes: Mapping[str, Any]) -> WorkflowTemplate:
        """
        Match a request to a template.

        Args:
            category: Request category
            attributes: Request attributes the template conditions test

        Returns:
            The matching template

        Raises:
            NoTemplateError: If no template matches
            AmbiguousTemplateError: If several match and no single default
        """
        category = parse_category(category)
        candidates = self.candidates(category, attributes)

        if not candidates:
            raise NoTemplateError(category.value)

        if len(candidates) == 1:
            template = candidates[0]
        else:
            defaults = [t for t in candidates if t.is_default]
            if len(defaults) != 1:
                ids = [t.template_id for t in candidates]
                logger.error("Ambiguous template match for %s: %s", category.value, ids)
                raise AmbiguousTemplateError(category.value, ids)
            template = defaults[0]

        logger.info(
            "Matched %s request to template %s v%d", category.value, template.template_id, template.version,
        )
        return template
