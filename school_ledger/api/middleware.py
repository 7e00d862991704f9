"""FastAPI middleware for request tracing, access logging and metrics"""

import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from school_ledger.infrastructure.observability.metrics import request_duration_histogram

logger = logging.getLogger("school_ledger.access")

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Reuse the caller's request ID when it sends one, otherwise mint a new one"""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _endpoint_label(request: Request) -> str:
    # Route template keeps entity ids out of the label set
    route = request.scope.get("route")
    return getattr(route, "path", None) or "unmatched"


class MetricsMiddleware(BaseHTTPMiddleware):
    """Record request latency and write one access log line per request"""

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        duration = time.perf_counter() - start_time
        endpoint = _endpoint_label(request)
        request_duration_histogram.labels(
            method=request.method,
            endpoint=endpoint,
            status=response.status_code,
        ).observe(duration)

        logger.info(
            "%s %s %s",
            request.method,
            endpoint,
            response.status_code,
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "organization_id": request.headers.get("X-Organization-Id"),
                "duration_ms": round(duration * 1000, 2),
            },
        )
        return response
