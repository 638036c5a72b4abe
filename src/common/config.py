"""Configuration management for OpsFlow.

Handles loading and validation of YAML catalog files: workflow templates,
tier ladders, delegation rules and a static role directory. Parsing goes
through the engine's own constructors, so an invalid catalog fails at
load time.
"""

import os
import uuid
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import yaml

from opsflow.core.errors import InvalidDelegationError, InvalidTemplateError
from opsflow.core.workflow.conditions import Condition, parse_conditions, to_decimal
from opsflow.core.workflow.delegation import DelegationRule
from opsflow.core.workflow.templates import Step, WorkflowCategory, WorkflowTemplate
from opsflow.core.workflow.tiers import TierRule, validate_tier_rules


@dataclass
class TemplateConfig:
    """Configuration for a single workflow template."""

    name: str
    category: WorkflowCategory
    steps: Tuple[Step, ...] = ()
    conditions: Tuple[Condition, ...] = ()
    description: Optional[str] = None
    uses_tiers: bool = False
    is_active: bool = True
    is_default: bool = False


@dataclass
class DelegationConfig:
    """Configuration for a delegation rule."""

    from_user_id: str
    to_user_id: str
    start_date: date
    end_date: date
    workflow_ids: List[str] = field(default_factory=list)
    max_amount: Optional[Any] = None
    excluded_categories: List[str] = field(default_factory=list)
    reason: Optional[str] = None


@dataclass
class CatalogConfig:
    """Top-level catalog configuration."""

    templates: List[TemplateConfig] = field(default_factory=list)
    tiers: Dict[str, Tuple[TierRule, ...]] = field(default_factory=dict)
    delegations: List[DelegationConfig] = field(default_factory=list)
    roles: Dict[str, str] = field(default_factory=dict)
    log_dir: str = "/var/log/opsflow"


def parse_template_config(template_dict: Dict[str, Any]) -> TemplateConfig:
    """Parse a template configuration dictionary.

    Args:
        template_dict: Template configuration dictionary

    Returns:
        TemplateConfig instance

    Raises:
        InvalidTemplateError: If the template definition is malformed
    """
    try:
        category = WorkflowCategory(template_dict.get("category"))
    except ValueError:
        raise InvalidTemplateError(
            f"Template {template_dict.get('name')!r} has unknown category {template_dict.get('category')!r}"
        ) from None

    steps = tuple(sorted(
        (Step.from_dict(step) for step in template_dict.get("steps", []) or []),
        key=lambda s: s.order,
    ))
    config = TemplateConfig(
        name=template_dict.get("name", ""),
        category=category,
        steps=steps,
        conditions=parse_conditions(template_dict.get("conditions", []) or []),
        description=template_dict.get("description"),
        uses_tiers=template_dict.get("uses_tiers", False),
        is_active=template_dict.get("is_active", True),
        is_default=template_dict.get("is_default", False),
    )

    if not config.name:
        raise InvalidTemplateError("Template definition requires a name")
    # Validate ordering, branch targets and emptiness the same way the engine does
    WorkflowTemplate(
        template_id=uuid.uuid4(),
        name=config.name,
        category=config.category,
        steps=config.steps,
        conditions=config.conditions,
        uses_tiers=config.uses_tiers,
    )
    return config


def parse_tier_config(tier_dict: Dict[str, Any]) -> Dict[str, Tuple[TierRule, ...]]:
    """Parse tier ladders keyed by category.

    Raises:
        InvalidTemplateError: If a category or rung is malformed
    """
    ladders = {}
    for category, rungs in (tier_dict or {}).items():
        try:
            key = WorkflowCategory(category).value
        except ValueError:
            raise InvalidTemplateError(f"Tier ladder for unknown category {category!r}") from None
        ladders[key] = validate_tier_rules(TierRule.from_dict(rung) for rung in rungs or [])
    return ladders


def parse_delegation_config(delegation_dict: Dict[str, Any]) -> DelegationConfig:
    """Parse a delegation configuration dictionary.

    Raises:
        InvalidDelegationError: If the rule is malformed
    """
    try:
        config = DelegationConfig(
            from_user_id=str(delegation_dict["from_user_id"]),
            to_user_id=str(delegation_dict["to_user_id"]),
            start_date=_parse_date(delegation_dict["start_date"]),
            end_date=_parse_date(delegation_dict["end_date"]),
            workflow_ids=[str(w) for w in delegation_dict.get("workflow_ids", []) or []],
            max_amount=delegation_dict.get("max_amount"),
            excluded_categories=list(delegation_dict.get("excluded_categories", []) or []),
            reason=delegation_dict.get("reason"),
        )
    except KeyError as e:
        raise InvalidDelegationError(f"Delegation definition is missing {e.args[0]!r}") from None
    except ValueError as e:
        raise InvalidDelegationError(f"Invalid delegation definition: {e}") from None

    if config.max_amount is not None:
        try:
            to_decimal(config.max_amount)
        except ValueError as e:
            raise InvalidDelegationError(f"Invalid delegation amount limit: {e}") from None

    # Checks dates and self-delegation
    DelegationRule(
        rule_id=None,
        from_user_id=config.from_user_id,
        to_user_id=config.to_user_id,
        start_date=config.start_date,
        end_date=config.end_date,
    )
    return config


def parse_catalog(config_dict: Dict[str, Any]) -> CatalogConfig:
    """Parse the full catalog dictionary.

    Args:
        config_dict: Full configuration dictionary

    Returns:
        CatalogConfig instance
    """
    templates = [parse_template_config(t) for t in config_dict.get("templates", []) or []]

    defaults: Dict[WorkflowCategory, str] = {}
    for template in templates:
        if template.is_default:
            if template.category in defaults:
                raise InvalidTemplateError(
                    f"Templates {defaults[template.category]!r} and {template.name!r} "
                    f"are both default for {template.category.value!r}"
                )
            defaults[template.category] = template.name

    return CatalogConfig(
        templates=templates,
        tiers=parse_tier_config(config_dict.get("tiers", {})),
        delegations=[parse_delegation_config(d) for d in config_dict.get("delegations", []) or []],
        roles={str(role): str(user) for role, user in (config_dict.get("roles", {}) or {}).items()},
        log_dir=config_dict.get("log_dir", "/var/log/opsflow"),
    )


def load_config(config_path: str = "/etc/opsflow/catalog.yaml") -> Dict[str, Any]:
    """Load configuration from YAML file.

    Args:
        config_path: Path to configuration file

    Returns:
        Configuration dictionary

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
    """
    config_file = Path(config_path)

    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    with config_file.open("r") as f:
        config = yaml.safe_load(f)

    # Validate config structure
    if config is None:
        config = {}

    if not isinstance(config, dict):
        raise TypeError(
            f"Configuration root must be a mapping, got {type(config).__name__}"
        )

    # Expand environment variables
    config = _expand_env_vars(config)

    return config


def _expand_env_vars(obj: Any) -> Any:
    """Recursively expand environment variables in configuration."""
    if isinstance(obj, dict):
        return {key: _expand_env_vars(value) for key, value in obj.items()}
    elif isinstance(obj, list):
        return [_expand_env_vars(item) for item in obj]
    elif isinstance(obj, str):
        return os.path.expandvars(obj)
    else:
        return obj


def _parse_date(value: Any) -> date:
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def load_catalog(config_path: str = "/etc/opsflow/catalog.yaml") -> CatalogConfig:
    """Load and parse a catalog file into typed dataclasses.

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If config file is invalid YAML
        InvalidTemplateError: If a template or tier ladder is malformed
        InvalidDelegationError: If a delegation rule is malformed
    """
    return parse_catalog(load_config(config_path))
