"""Notification intake endpoint."""

import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import get_engine
from src.api.models import DeliveryResponse, NotificationRequest
from src.notification_routing.engine import NotificationRoutingEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.post("", response_model=list[DeliveryResponse], status_code=202)
def process_notification(
    body: NotificationRequest,
    engine: NotificationRoutingEngine = Depends(get_engine),
):
    """Route a notification and return the deliveries made immediately.

    Delayed actions and escalation deliveries appear later under
    ``GET /deliveries``.
    """
    deliveries = engine.process_notification(body.to_domain())
    return [d.to_dict() for d in deliveries]
