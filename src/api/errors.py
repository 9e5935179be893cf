"""Exception Handlers & Error Response Builder.

Maps routing engine exceptions to HTTP status codes and a standardized
JSON error envelope:

    {"error": {"code": ..., "message": ..., "details": [...],
               "request_id": ..., "timestamp": ...}}
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.logging_config.context import get_request_id
from src.notification_routing.exceptions import (
    DuplicateRouteError,
    EscalationNotFoundError,
    RouteNotFoundError,
    RoutingError,
)

logger = logging.getLogger(__name__)


class ErrorCode(Enum):
    """Error codes returned in the envelope."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    ROUTE_NOT_FOUND = "ROUTE_NOT_FOUND"
    ESCALATION_NOT_FOUND = "ESCALATION_NOT_FOUND"
    DUPLICATE_ROUTE = "DUPLICATE_ROUTE"
    ROUTING_ERROR = "ROUTING_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


ERROR_STATUS_MAP: Dict[ErrorCode, int] = {
    ErrorCode.VALIDATION_ERROR: 422,
    ErrorCode.ROUTE_NOT_FOUND: 404,
    ErrorCode.ESCALATION_NOT_FOUND: 404,
    ErrorCode.DUPLICATE_ROUTE: 409,
    ErrorCode.ROUTING_ERROR: 400,
    ErrorCode.INTERNAL_ERROR: 500,
}

# Most specific class first
_EXCEPTION_CODES = [
    (RouteNotFoundError, ErrorCode.ROUTE_NOT_FOUND),
    (EscalationNotFoundError, ErrorCode.ESCALATION_NOT_FOUND),
    (DuplicateRouteError, ErrorCode.DUPLICATE_ROUTE),
    (RoutingError, ErrorCode.ROUTING_ERROR),
]


@dataclass
class ErrorResponse:
    """Structured error response envelope."""

    code: str
    message: str
    status_code: int = 500
    details: List[Dict[str, Any]] = field(default_factory=list)
    request_id: Optional[str] = None
    timestamp: str = ""

    def __post_init__(self):
        if not self.timestamp:
            self.timestamp = datetime.now(timezone.utc).isoformat()

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {
            "error": {
                "code": self.code,
                "message": self.message,
                "details": self.details,
                "timestamp": self.timestamp,
            }
        }
        if self.request_id:
            body["error"]["request_id"] = self.request_id
        return body

    def to_response(self) -> JSONResponse:
        return JSONResponse(status_code=self.status_code, content=self.to_dict())


def create_error_response(
    error_code: ErrorCode,
    message: str,
    details: Optional[List[Dict[str, Any]]] = None,
) -> ErrorResponse:
    """Build a standardized ErrorResponse from components."""
    return ErrorResponse(
        code=error_code.value,
        message=message,
        status_code=ERROR_STATUS_MAP.get(error_code, 500),
        details=details or [],
        request_id=get_request_id() or None,
    )


def error_code_for(exc: RoutingError) -> ErrorCode:
    for exc_type, code in _EXCEPTION_CODES:
        if isinstance(exc, exc_type):
            return code
    return ErrorCode.ROUTING_ERROR


def _exception_details(exc: RoutingError) -> List[Dict[str, Any]]:
    details = []
    for attr in ("route_id", "instance_id"):
        value = getattr(exc, attr, None)
        if value is not None:
            details.append({"field": attr, "value": value})
    return details


def handle_routing_error(exc: RoutingError) -> ErrorResponse:
    """Map an engine exception to an ErrorResponse."""
    code = error_code_for(exc)
    response = create_error_response(code, str(exc), _exception_details(exc))
    logger.warning("API error [%s] (%d): %s", code.value, response.status_code, exc)
    return response


def handle_unhandled_error(exc: Exception, suppress_details: bool = True) -> ErrorResponse:
    """Handle any unhandled exception with a safe 500 response."""
    logger.exception("Unhandled exception: %s", type(exc).__name__)
    message = "An internal error occurred"
    if not suppress_details:
        message = f"{type(exc).__name__}: {exc}"
    return create_error_response(ErrorCode.INTERNAL_ERROR, message)


def register_exception_handlers(app: FastAPI, suppress_details: bool = True) -> None:
    """Register the routing exception handlers on a FastAPI application."""

    @app.exception_handler(RoutingError)
    async def _routing_error(request: Request, exc: RoutingError) -> JSONResponse:
        return handle_routing_error(exc).to_response()

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        details = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "issue": err.get("msg")}
            for err in exc.errors()
        ]
        return create_error_response(
            ErrorCode.VALIDATION_ERROR, "Request validation failed", details
        ).to_response()

    @app.exception_handler(Exception)
    async def _unhandled_error(request: Request, exc: Exception) -> JSONResponse:
        return handle_unhandled_error(exc, suppress_details).to_response()

    logger.debug("Registered routing API exception handlers")
