"""Route management endpoints."""

import logging

from fastapi import APIRouter, Depends, Response

from src.api.dependencies import get_engine
from src.api.models import RouteModel, RouteUpdateRequest
from src.notification_routing.engine import NotificationRoutingEngine
from src.notification_routing.exceptions import RouteNotFoundError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/routes", tags=["Routes"])


@router.get("", response_model=list[RouteModel])
def list_routes(engine: NotificationRoutingEngine = Depends(get_engine)):
    return [r.to_dict() for r in engine.get_routes()]


@router.post("", response_model=RouteModel, status_code=201)
def create_route(body: RouteModel, engine: NotificationRoutingEngine = Depends(get_engine)):
    """Add a route. 409 if the ID is taken."""
    route = body.to_domain()
    engine.add_route(route)
    return route.to_dict()


@router.get("/{route_id}", response_model=RouteModel)
def get_route(route_id: str, engine: NotificationRoutingEngine = Depends(get_engine)):
    route = engine.get_route(route_id)
    if route is None:
        raise RouteNotFoundError(route_id)
    return route.to_dict()


@router.patch("/{route_id}", response_model=RouteModel)
def update_route(
    route_id: str,
    body: RouteUpdateRequest,
    engine: NotificationRoutingEngine = Depends(get_engine),
):
    """Apply a partial update; in-flight matching keeps the old definition."""
    return engine.update_route(route_id, **body.to_changes()).to_dict()


@router.delete("/{route_id}", status_code=204)
def delete_route(route_id: str, engine: NotificationRoutingEngine = Depends(get_engine)):
    engine.delete_route(route_id)
    return Response(status_code=204)


@router.post("/{route_id}/toggle", response_model=RouteModel)
def toggle_route(route_id: str, engine: NotificationRoutingEngine = Depends(get_engine)):
    return engine.toggle_route(route_id).to_dict()
