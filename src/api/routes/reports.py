"""Routing statistics and performance reports."""

import logging

from fastapi import APIRouter, Depends

from src.api.dependencies import get_engine
from src.api.models import (
    PerformanceResponse,
    RoutePerformanceResponse,
    RoutingStatsResponse,
)
from src.notification_routing.engine import NotificationRoutingEngine

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/reports", tags=["Reports"])


@router.get("/stats", response_model=RoutingStatsResponse)
def routing_stats(engine: NotificationRoutingEngine = Depends(get_engine)):
    return engine.routing_stats()


@router.get("/performance", response_model=PerformanceResponse)
def performance_metrics(engine: NotificationRoutingEngine = Depends(get_engine)):
    """Delivery performance over the configured trailing window."""
    return engine.performance_metrics()


@router.get("/routes/{route_id}", response_model=RoutePerformanceResponse)
def route_performance(route_id: str, engine: NotificationRoutingEngine = Depends(get_engine)):
    return engine.route_performance(route_id)


@router.get("/export")
def export_routing_data(engine: NotificationRoutingEngine = Depends(get_engine)):
    """Full dump of routes, deliveries, escalations, recipients and metrics."""
    return engine.export_routing_data()
