"""Workflow template and tier ladder API endpoints."""

from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status

from opsflow.api.deps import get_catalog_service
from opsflow.api.schemas.templates import (
    SetDefaultRequest,
    TemplateCreate,
    TemplateUpdate,
    TierRuleSchema,
    dump_conditions,
    dump_steps,
)
from opsflow.core.workflow.templates import WorkflowCategory
from opsflow.services.catalog import TemplateCatalogService

router = APIRouter(prefix="/templates", tags=["templates"])


# Tier ladders are declared before /{template_id} so the path is not
# captured as a template ID.
@router.get("/tiers/{category}")
def get_tier_ladder(
    category: WorkflowCategory,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> List[Dict[str, Any]]:
    return [rule.to_dict() for rule in service.get_tier_ladder(category)]


@router.put("/tiers/{category}")
def replace_tier_ladder(
    category: WorkflowCategory,
    rules: List[TierRuleSchema],
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> List[Dict[str, Any]]:
    """Replace the whole ladder of a category; rungs are sorted by threshold."""
    ladder = service.replace_tier_ladder(category, [rule.model_dump() for rule in rules])
    return [rule.to_dict() for rule in ladder]


@router.get("")
def list_templates(
    category: Optional[WorkflowCategory] = None,
    include_inactive: bool = False,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> List[Dict[str, Any]]:
    return service.list_templates(category=category, include_inactive=include_inactive)


@router.post("", status_code=status.HTTP_201_CREATED)
def create_template(
    request: TemplateCreate,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    return service.create_template(
        request.name,
        request.category,
        steps=dump_steps(request.steps),
        conditions=dump_conditions(request.conditions),
        uses_tiers=request.uses_tiers,
        is_active=request.is_active,
        is_default=request.is_default,
        description=request.description,
        created_by=request.created_by,
    )


@router.get("/{template_id}")
def get_template(
    template_id: UUID,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    return service.get_template(template_id)


@router.patch("/{template_id}")
def update_template(
    template_id: UUID,
    request: TemplateUpdate,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    """
    Update a template.

    Changing steps, conditions or tier usage publishes a new version;
    chains already submitted keep the version they pinned.
    """
    return service.update_template(
        template_id,
        name=request.name,
        description=request.description,
        steps=dump_steps(request.steps) if request.steps is not None else None,
        conditions=dump_conditions(request.conditions) if request.conditions is not None else None,
        uses_tiers=request.uses_tiers,
    )


@router.post("/{template_id}/deactivate")
def deactivate_template(
    template_id: UUID,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    return service.deactivate_template(template_id)


@router.post("/{template_id}/activate")
def activate_template(
    template_id: UUID,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    return service.activate_template(template_id)


@router.post("/{template_id}/default")
def set_default(
    template_id: UUID,
    request: Optional[SetDefaultRequest] = None,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    replace_existing = request.replace_existing if request else False
    return service.set_default(template_id, replace_existing=replace_existing)


@router.delete("/{template_id}/default")
def unset_default(
    template_id: UUID,
    service: TemplateCatalogService = Depends(get_catalog_service),
) -> Dict[str, Any]:
    return service.unset_default(template_id)


@router.delete("/{template_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    template_id: UUID,
    service: TemplateCatalogService = Depends(get_catalog_service),
):
    service.delete_template(template_id)
