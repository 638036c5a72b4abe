from functools import lru_cache
from typing import Generator
from uuid import UUID

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from opsflow.core.approval.service import ApprovalService
from opsflow.core.config import get_settings
from opsflow.db.session import SessionLocal
from opsflow.services.catalog import TemplateCatalogService
from opsflow.services.delegations import DelegationService
from opsflow.services.directory import HttpRoleDirectory, RoleDirectory, StaticRoleDirectory
from opsflow.services.notifications import EventPublisher, WebhookSink


def get_db() -> Generator:
    """Database session dependency."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_org_id(x_org_id: str = Header(..., alias="X-Org-ID")) -> UUID:
    """Organization scope of the request."""
    try:
        return UUID(x_org_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Org-ID must be a UUID",
        )


@lru_cache
def get_directory() -> RoleDirectory:
    """Role directory shared by all requests."""
    settings = get_settings()
    if settings.directory_url:
        return HttpRoleDirectory(
            settings.directory_url,
            timeout=settings.directory_timeout,
            max_retries=settings.directory_max_retries,
        )
    return StaticRoleDirectory({})


@lru_cache
def get_publisher() -> EventPublisher:
    """Event publisher shared by all requests."""
    settings = get_settings()
    publisher = EventPublisher()
    if settings.event_webhook_url:
        publisher.register_sink(WebhookSink(settings.event_webhook_url, timeout=settings.directory_timeout))
    return publisher


def get_approval_service(
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
    directory: RoleDirectory = Depends(get_directory),
    publisher: EventPublisher = Depends(get_publisher),
) -> ApprovalService:
    return ApprovalService(db, org_id, directory=directory, publisher=publisher)


def get_catalog_service(
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
) -> TemplateCatalogService:
    return TemplateCatalogService(db, org_id)


def get_delegation_service(
    db: Session = Depends(get_db),
    org_id: UUID = Depends(get_org_id),
) -> DelegationService:
    return DelegationService(db, org_id)
