"""API middleware for rate limiting and CORS"""
import logging
from fastapi import Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded

from progress_engine.config import CORS_ORIGINS
from progress_engine.observability.metrics import rate_limited_requests_total

logger = logging.getLogger(__name__)

RATE_LIMIT_RETRY_AFTER_SECONDS = "60"


def rate_limit_key(request: Request) -> str:
    """Bucket per user for /users/{user_id}/... routes, per client address otherwise"""
    user_id = request.path_params.get("user_id")
    if user_id:
        return f"user:{user_id}"
    return f"ip:{get_remote_address(request)}"


# Initialize rate limiter
limiter = Limiter(key_func=rate_limit_key)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 with the same error shape as engine errors"""
    key = rate_limit_key(request)
    route = request.scope.get("route")
    rate_limited_requests_total.labels(
        endpoint=route.path if route is not None else "unmatched"
    ).inc()
    logger.warning(f"Rate limit exceeded for {key} on {request.url.path}: {exc.detail}")
    return JSONResponse(
        status_code=429,
        content={
            "error": "RateLimitExceeded",
            "message": f"Rate limit exceeded: {exc.detail}",
            "user_message": "Too many requests. Please slow down and try again shortly.",
        },
        headers={"Retry-After": RATE_LIMIT_RETRY_AFTER_SECONDS}
    )


def setup_cors(app):
    """Configure CORS middleware"""
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type"],
    )

    logger.info(f"CORS configured for origins: {CORS_ORIGINS}")


def setup_rate_limiting(app):
    """Configure rate limiting"""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
    logger.info("Rate limiting configured per route, keyed by user or client address")
