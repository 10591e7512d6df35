"""
Prometheus metrics definitions for the progress engine.

Metrics by category:
- HTTP/API metrics: Request counts, latency
- Engine metrics: Actions processed, points credited, claims, achievements
- Storage metrics: Errors, retries
- Leaderboard metrics: Computation time

Metrics are exposed at the /metrics endpoint for Prometheus scraping.
"""

import logging
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, Info, generate_latest

logger = logging.getLogger(__name__)

# =============================================================================
# HTTP/API Metrics
# =============================================================================

http_requests_total = Counter(
    "progress_http_requests_total",
    "Total HTTP requests received",
    ["method", "endpoint", "status"],
)

http_request_duration_seconds = Histogram(
    "progress_http_request_duration_seconds",
    "HTTP request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
)

rate_limited_requests_total = Counter(
    "progress_rate_limited_requests_total",
    "Total requests rejected by the rate limiter",
    ["endpoint"],
)

# =============================================================================
# Engine Metrics
# =============================================================================

actions_processed_total = Counter(
    "progress_actions_processed_total",
    "Total actions processed",
    ["action_type", "status"],  # status: applied/duplicate/error
)

points_credited_total = Counter(
    "progress_points_credited_total",
    "Total points credited to the score ledger",
    ["source_type"],  # action type, achievement, streak_milestone
)

achievements_earned_total = Counter(
    "progress_achievements_earned_total",
    "Total achievements earned",
    ["achievement_id"],
)

claims_total = Counter(
    "progress_claims_total",
    "Total achievement reward claims",
    ["outcome"],  # awarded/already_claimed/not_eligible
)

stale_events_total = Counter(
    "progress_stale_events_total",
    "Total out-of-order activities dropped by the streak tracker",
    ["streak_type"],
)

actions_voided_total = Counter(
    "progress_actions_voided_total",
    "Total logged actions voided",
    ["action_type"],
)

# =============================================================================
# Storage Metrics
# =============================================================================

storage_errors_total = Counter(
    "progress_storage_errors_total",
    "Total storage errors",
    ["error_type"],  # StorageUnavailable/QueryError
)

storage_retries_total = Counter(
    "progress_storage_retries_total",
    "Total retry attempts after transient storage errors",
    ["operation"],
)

# =============================================================================
# Leaderboard Metrics
# =============================================================================

leaderboard_duration_seconds = Histogram(
    "progress_leaderboard_duration_seconds",
    "Leaderboard computation time in seconds",
    ["time_window"],
    buckets=[0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0],
)

# =============================================================================
# Application Info
# =============================================================================

app_info = Info(
    "progress_app",
    "Application information",
)


def init_metrics() -> None:
    """
    Initialize metrics with application information.

    Called once at application startup.
    """
    import sys
    from progress_engine import __version__
    from progress_engine.config import STORAGE_BACKEND

    app_info.info(
        {
            "version": __version__,
            "storage_backend": STORAGE_BACKEND,
            "python_version": f"{sys.version_info.major}.{sys.version_info.minor}",
        }
    )

    logger.info("Prometheus metrics initialized")


def render_metrics() -> tuple[bytes, str]:
    """Current metrics in the Prometheus text format, with its content type"""
    return generate_latest(), CONTENT_TYPE_LATEST
