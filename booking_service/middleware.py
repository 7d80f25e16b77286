from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import time
import logging
import uuid

from .metrics import record_request_metrics

logger = logging.getLogger(__name__)

class LoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        # Generate request ID
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        logger.info(f"Request {request_id}: {request.method} {request.url.path}")

        response = await call_next(request)

        process_time = time.time() - start_time
        logger.info(f"Request {request_id}: {response.status_code} - {process_time:.3f}s")

        # Path template, e.g. /bookings/{booking_id}
        route = request.scope.get("route")
        endpoint = getattr(route, "path", request.url.path)
        record_request_metrics(
            method=request.method,
            endpoint=endpoint,
            status_code=response.status_code,
            duration=process_time
        )

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = str(process_time)

        return response
