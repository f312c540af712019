"""Producer-facing event dispatch and delivery status endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from hookline.core.db import get_session
from hookline.core.errors import DeliveryEventNotFoundError, DeliveryEventTerminalError, InvalidPayloadError
from hookline.schemas.webhook import DeliveryEventResponse, DispatchRequest, DispatchResponse
from hookline.services.delivery_store import DeliveryStore
from hookline.services.dispatcher import DeliveryDispatcher
from hookline.services.retry_scheduler import RetryScheduler

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/organizations/{organization_id}", tags=["events"])


@router.post(
    "/events",
    response_model=DispatchResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Dispatch an event",
    description="Fan the event out to every subscribed webhook. Returns before delivery happens.",
)
async def dispatch_event(
    organization_id: str,
    event: DispatchRequest,
    session: Session = Depends(get_session),
) -> DispatchResponse:
    try:
        event_ids = DeliveryDispatcher(session).dispatch(organization_id, event.event_type, event.data)
    except InvalidPayloadError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return DispatchResponse(event_type=event.event_type, delivery_event_ids=event_ids)


@router.get(
    "/deliveries/{event_id}",
    response_model=DeliveryEventResponse,
    summary="Get delivery status",
    description="Status of one delivery event with all of its attempts.",
)
async def get_delivery(
    organization_id: str,
    event_id: str,
    session: Session = Depends(get_session),
) -> DeliveryEventResponse:
    event = DeliveryStore(session).get_event(event_id, organization_id)
    if event is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Delivery event {event_id} not found",
        )
    return DeliveryEventResponse.model_validate(event)


@router.post(
    "/deliveries/{event_id}/retry",
    response_model=DeliveryEventResponse,
    summary="Retry a delivery now",
    description="Move a scheduled retry forward to the next scheduler tick.",
)
async def retry_delivery(
    organization_id: str,
    event_id: str,
    session: Session = Depends(get_session),
) -> DeliveryEventResponse:
    try:
        event = RetryScheduler(session).retry_now(event_id, organization_id)
    except DeliveryEventNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except DeliveryEventTerminalError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e)) from e
    logger.info(f"Manual retry requested for delivery {event_id}")
    return DeliveryEventResponse.model_validate(event)
