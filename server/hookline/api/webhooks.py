"""Webhook configuration and management API endpoints."""
from __future__ import annotations

import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from hookline.core.db import get_session
from hookline.core.errors import (
    ConfigurationError,
    DuplicateEndpointError,
    EndpointNotFoundError,
)
from hookline.models.webhook_delivery import DeliveryStatus
from hookline.schemas.webhook import (
    DeliveryAttemptResponse,
    DeliveryFilters,
    DeliveryPage,
    SecretRotationResponse,
    WebhookCreate,
    WebhookCreatedResponse,
    WebhookHealth,
    WebhookResponse,
    WebhookTestResponse,
    WebhookUpdate,
)
from hookline.services.delivery_store import DeliveryStore
from hookline.services.dispatcher import DeliveryDispatcher
from hookline.services.health_tracker import HealthTracker
from hookline.services.webhook_registry import WebhookRegistry

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organizations/{organization_id}/webhooks", tags=["webhooks"])


def get_webhook_registry(session: Session = Depends(get_session)) -> WebhookRegistry:
    """Dependency to get WebhookRegistry instance."""
    return WebhookRegistry(session)


def get_dispatcher(session: Session = Depends(get_session)) -> DeliveryDispatcher:
    """Dependency to get DeliveryDispatcher instance."""
    return DeliveryDispatcher(session)


def raise_for_configuration_error(error: ConfigurationError) -> NoReturn:
    """Translate registry errors into HTTP errors."""
    if isinstance(error, EndpointNotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error)) from error
    if isinstance(error, DuplicateEndpointError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error)) from error
    raise HTTPException(status_code=422, detail=str(error)) from error


@router.get(
    "",
    response_model=list[WebhookResponse],
    summary="List webhooks",
    description="Retrieve the organization's webhooks (archived ones only on request).",
)
async def list_webhooks(
    organization_id: str,
    include_archived: bool = Query(default=False),
    search: str | None = Query(default=None, description="Part of the name or URL, or an exact event name"),
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> list[WebhookResponse]:
    webhooks = registry.list_for_organization(organization_id, include_archived=include_archived, search=search)
    return [WebhookResponse.model_validate(w) for w in webhooks]


@router.post(
    "",
    response_model=WebhookCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new webhook",
    description="Register an endpoint. The signing secret is returned in this response only.",
)
async def create_webhook(
    organization_id: str,
    webhook: WebhookCreate,
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> WebhookCreatedResponse:
    """
    Create a new webhook.

    Args:
        organization_id: Owning organization
        webhook: WebhookCreate schema with webhook data
        registry: WebhookRegistry instance (injected)

    Returns:
        Created webhook including its secret
    """
    try:
        created = registry.create(organization_id, webhook)
    except ConfigurationError as e:
        raise_for_configuration_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error creating webhook for organization {organization_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create webhook",
        ) from e
    return WebhookCreatedResponse.model_validate(created)


@router.get("/{webhook_id}", response_model=WebhookResponse, summary="Get webhook by ID")
async def get_webhook(
    organization_id: str,
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> WebhookResponse:
    webhook = registry.get_by_id(webhook_id, organization_id)
    if webhook is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Webhook with ID {webhook_id} not found",
        )
    return WebhookResponse.model_validate(webhook)


@router.patch(
    "/{webhook_id}",
    response_model=WebhookResponse,
    summary="Update a webhook",
    description="Update a webhook by ID. All fields in WebhookUpdate are optional.",
)
async def update_webhook(
    organization_id: str,
    webhook_id: str,
    webhook: WebhookUpdate,
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> WebhookResponse:
    try:
        updated = registry.update(webhook_id, webhook, organization_id)
    except ConfigurationError as e:
        raise_for_configuration_error(e)
    return WebhookResponse.model_validate(updated)


@router.delete(
    "/{webhook_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Archive a webhook",
    description="Soft delete: the webhook stops receiving events and its history is kept.",
)
async def archive_webhook(
    organization_id: str,
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> None:
    try:
        registry.archive(webhook_id, organization_id)
    except ConfigurationError as e:
        raise_for_configuration_error(e)


@router.post("/{webhook_id}/deactivate", response_model=WebhookResponse, summary="Deactivate a webhook")
async def deactivate_webhook(
    organization_id: str,
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> WebhookResponse:
    try:
        webhook = registry.deactivate(webhook_id, organization_id)
    except ConfigurationError as e:
        raise_for_configuration_error(e)
    return WebhookResponse.model_validate(webhook)


@router.post("/{webhook_id}/reactivate", response_model=WebhookResponse, summary="Reactivate a webhook")
async def reactivate_webhook(
    organization_id: str,
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> WebhookResponse:
    try:
        webhook = registry.reactivate(webhook_id, organization_id)
    except ConfigurationError as e:
        raise_for_configuration_error(e)
    return WebhookResponse.model_validate(webhook)


@router.post(
    "/{webhook_id}/rotate-secret",
    response_model=SecretRotationResponse,
    summary="Rotate the signing secret",
    description="Generates a new secret. The previous secret stops being valid immediately.",
)
async def rotate_secret(
    organization_id: str,
    webhook_id: str,
    registry: WebhookRegistry = Depends(get_webhook_registry),
) -> SecretRotationResponse:
    try:
        secret = registry.rotate_secret(webhook_id, organization_id)
    except ConfigurationError as e:
        raise_for_configuration_error(e)
    return SecretRotationResponse(webhook_id=webhook_id, secret=secret)


@router.post(
    "/{webhook_id}/test",
    response_model=WebhookTestResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Test a webhook",
    description="Queue a synthetic webhook.test event through the regular delivery pipeline.",
)
async def test_webhook(
    organization_id: str,
    webhook_id: str,
    dispatcher: DeliveryDispatcher = Depends(get_dispatcher),
) -> WebhookTestResponse:
    try:
        event_id = dispatcher.test_endpoint(webhook_id, organization_id)
    except ConfigurationError as e:
        raise_for_configuration_error(e)
    return WebhookTestResponse(webhook_id=webhook_id, delivery_event_id=event_id, status=DeliveryStatus.PENDING)


@router.get(
    "/{webhook_id}/deliveries",
    response_model=DeliveryPage,
    summary="Get webhook delivery history",
    description="Attempt history for a webhook, newest first, with filters and pagination.",
)
async def get_webhook_deliveries(
    organization_id: str,
    webhook_id: str,
    event_type: str | None = Query(default=None),
    delivery_status: DeliveryStatus | None = Query(default=None, alias="status"),
    is_success: bool | None = Query(default=None),
    http_status_min: int | None = Query(default=None, ge=100, le=599, description="Lowest response status"),
    http_status_max: int | None = Query(default=None, ge=100, le=599, description="Highest response status"),
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(default=50, ge=1, le=100, description="Items per page (max 100)"),
    session: Session = Depends(get_session),
) -> DeliveryPage:
    """
    Get delivery history for a webhook.

    Raises:
        HTTPException: 404 if webhook not found
    """
    webhook = WebhookRegistry(session).get_by_id(webhook_id, organization_id)
    if webhook is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Webhook with ID {webhook_id} not found",
        )

    filters = DeliveryFilters(
        event_type=event_type,
        status=delivery_status,
        is_success=is_success,
        http_status_min=http_status_min,
        http_status_max=http_status_max,
        limit=page_size,
        offset=(page - 1) * page_size,
    )
    attempts, total = DeliveryStore(session).list_deliveries(webhook_id, filters)
    return DeliveryPage(
        items=[DeliveryAttemptResponse.model_validate(a) for a in attempts],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/{webhook_id}/health", response_model=WebhookHealth, summary="Get webhook health")
async def get_webhook_health(
    organization_id: str,
    webhook_id: str,
    session: Session = Depends(get_session),
) -> WebhookHealth:
    webhook = WebhookRegistry(session).get_by_id(webhook_id, organization_id)
    if webhook is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Webhook with ID {webhook_id} not found",
        )
    return HealthTracker(session).snapshot(webhook)
