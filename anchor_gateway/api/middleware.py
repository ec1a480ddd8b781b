"""FastAPI middleware for request tracing and metrics"""

import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from anchor_gateway.infrastructure.observability.metrics import request_duration_histogram

UNMATCHED_ROUTE = "unmatched"


def route_label(request: Request) -> str:
    """Route template for metric labels, so path parameters do not create new series"""
    route = request.scope.get("route")
    return getattr(route, "path", None) or UNMATCHED_ROUTE


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Tag each request with an ID, reusing a caller-supplied X-Request-ID"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request duration per method, route template and status"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        request_duration_histogram.labels(
            method=request.method,
            endpoint=route_label(request),
            status=response.status_code,
        ).observe(time.perf_counter() - start_time)

        return response
