"""Delivery history endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends

from src.api.dependencies import get_engine
from src.api.models import DeliveryResponse
from src.notification_routing.config import DeliveryStatus
from src.notification_routing.engine import NotificationRoutingEngine

router = APIRouter(prefix="/deliveries", tags=["Deliveries"])


@router.get("", response_model=list[DeliveryResponse])
def list_deliveries(
    notification_id: Optional[str] = None,
    recipient_ref: Optional[str] = None,
    route_id: Optional[str] = None,
    status: Optional[DeliveryStatus] = None,
    engine: NotificationRoutingEngine = Depends(get_engine),
):
    deliveries = engine.ledger.query(
        notification_id=notification_id,
        recipient_ref=recipient_ref,
        route_id=route_id,
        status=status,
    )
    return [d.to_dict() for d in deliveries]
