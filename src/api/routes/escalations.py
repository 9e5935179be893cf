"""Escalation listing and resolution endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends

from src.api.dependencies import get_engine
from src.api.models import EscalationResponse, ResolveRequest
from src.notification_routing.engine import NotificationRoutingEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/escalations", tags=["Escalations"])


@router.get("", response_model=list[EscalationResponse])
def list_escalations(
    active: Optional[bool] = None,
    engine: NotificationRoutingEngine = Depends(get_engine),
):
    """List escalation instances; ``active=true`` keeps only unresolved ones."""
    instances = engine.get_escalations()
    if active is not None:
        instances = [i for i in instances if i.is_active == active]
    return [i.to_dict() for i in instances]


@router.post("/{instance_id}/resolve", response_model=EscalationResponse)
def resolve_escalation(
    instance_id: str,
    body: ResolveRequest,
    engine: NotificationRoutingEngine = Depends(get_engine),
):
    """Acknowledge an escalation and stop further levels.

    Resolving an already resolved instance returns it unchanged.
    """
    return engine.resolve_escalation(instance_id, body.resolved_by).to_dict()
