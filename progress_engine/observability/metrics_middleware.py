"""
FastAPI middleware for automatic Prometheus metrics collection.

Tracks request counts and latency by method, route template and status.
"""

import logging
import time
from typing import Callable
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from progress_engine.observability.metrics import (
    http_requests_total,
    http_request_duration_seconds,
)

logger = logging.getLogger(__name__)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Collect Prometheus metrics for HTTP requests"""

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        method = request.method
        start_time = time.time()
        status_code = 500

        try:
            response = await call_next(request)
            status_code = response.status_code
            return response

        except Exception as e:
            logger.error(f"Request failed: {e}", exc_info=True)
            raise

        finally:
            path = self._route_template(request)
            duration = time.time() - start_time

            http_requests_total.labels(
                method=method, endpoint=path, status=status_code
            ).inc()

            http_request_duration_seconds.labels(
                method=method, endpoint=path
            ).observe(duration)

    def _route_template(self, request: Request) -> str:
        """
        Matched route template (/api/v1/users/{user_id}/streaks), so user
        ids never become label values.
        """
        route = request.scope.get("route")
        if route is not None and hasattr(route, "path"):
            return route.path
        return "unmatched"


def setup_metrics_middleware(app):
    """Add Prometheus metrics middleware to FastAPI application"""
    app.add_middleware(PrometheusMiddleware)
    logger.info("Prometheus metrics middleware added to FastAPI")
