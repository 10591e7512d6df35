"""API routes for the progress engine"""
import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import Response

from progress_engine.api.models import (
    AchievementCatalogResponse,
    AchievementResponse,
    AchievementView,
    ActionRequest,
    ChallengeResponse,
    ClaimResponse,
    HealthCheckResponse,
    LeaderboardResponse,
    PointHistoryResponse,
    ProgressResponse,
    StreakResponse,
    VoidResponse,
)
from progress_engine.api.auth import verify_api_key
from progress_engine.api.middleware import limiter
from progress_engine.exceptions import (
    NotEligible,
    ProgressEngineError,
    RecordNotFoundError,
    StorageUnavailable,
    ValidationError,
)
from progress_engine.models.progress import ActionOutcome, LeaderboardSnapshot
from progress_engine.observability.metrics import render_metrics
from progress_engine.services.container import get_container
from progress_engine.services.progress_service import ProgressService

logger = logging.getLogger(__name__)

router = APIRouter()

RETRY_AFTER_SECONDS = "1"
MAX_HISTORY_LIMIT = 500


def get_progress_service() -> ProgressService:
    return get_container().progress_service


def to_http_exception(error: ProgressEngineError) -> HTTPException:
    """Map engine errors to HTTP responses"""
    if isinstance(error, ValidationError):
        return HTTPException(
            status_code=422,
            detail=error.to_dict()
        )
    if isinstance(error, RecordNotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=error.to_dict()
        )
    if isinstance(error, StorageUnavailable):
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=error.to_dict(),
            headers={"Retry-After": RETRY_AFTER_SECONDS}
        )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=error.to_dict()
    )


@router.post("/api/v1/users/{user_id}/actions", response_model=ActionOutcome)
@limiter.limit("120/minute")
async def record_action(
    request: Request,
    user_id: str,
    body: ActionRequest,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Record a point-worthy action (Rate limit: 120/minute)"""
    try:
        return await service.action_occurred(
            user_id=user_id,
            action_type=body.action_type,
            timestamp=body.timestamp or datetime.now(timezone.utc),
            idempotency_key=body.idempotency_key,
            metadata=body.metadata,
        )
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.get("/api/v1/achievements", response_model=AchievementCatalogResponse)
@limiter.limit("60/minute")
async def get_achievement_catalog(
    request: Request,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Static achievement catalog (Rate limit: 60/minute)"""
    return AchievementCatalogResponse(achievements=service.get_achievement_definitions())


@router.get("/api/v1/users/{user_id}/progress", response_model=ProgressResponse)
@limiter.limit("60/minute")
async def get_progress_endpoint(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Get user points and level (Rate limit: 60/minute)"""
    try:
        entry = await service.get_user_progress(user_id)
        return ProgressResponse.from_ledger(entry)
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.get("/api/v1/users/{user_id}/streaks", response_model=StreakResponse)
@limiter.limit("60/minute")
async def get_streaks_endpoint(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Get user streaks (Rate limit: 60/minute)"""
    try:
        streaks = await service.get_streaks(user_id)
        return StreakResponse(user_id=user_id, streaks=streaks)
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.get("/api/v1/users/{user_id}/achievements", response_model=AchievementResponse)
@limiter.limit("60/minute")
async def get_achievements_endpoint(
    request: Request,
    user_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Get user achievements with progress (Rate limit: 60/minute)"""
    try:
        achievements = await service.get_achievements(user_id)
        recommendations = await service.get_recommendations(user_id)
        return AchievementResponse(
            user_id=user_id,
            achievements=[AchievementView.from_user_achievement(a) for a in achievements],
            recommendations=[AchievementView.from_user_achievement(a) for a in recommendations],
        )
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.post(
    "/api/v1/users/{user_id}/achievements/{achievement_id}/claim",
    response_model=ClaimResponse
)
@limiter.limit("30/minute")
async def claim_achievement_endpoint(
    request: Request,
    user_id: str,
    achievement_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """
    Claim an earned achievement's points (Rate limit: 30/minute)

    Safe to retry: a repeated claim reports already_claimed and credits nothing.
    Claiming before the achievement is earned is a no-op with status not_eligible.
    """
    try:
        result = await service.claim_achievement(user_id, achievement_id)
    except NotEligible:
        try:
            entry = await service.get_user_progress(user_id)
        except ProgressEngineError as e:
            raise to_http_exception(e)
        return ClaimResponse(
            status="not_eligible",
            user_id=user_id,
            achievement_id=achievement_id,
            total_points=entry.total_points,
            level=entry.level,
        )
    except ProgressEngineError as e:
        raise to_http_exception(e)

    return ClaimResponse(
        status="already_claimed" if result.already_claimed else "awarded",
        user_id=user_id,
        achievement_id=achievement_id,
        points_awarded=result.points_awarded,
        already_claimed=result.already_claimed,
        total_points=result.ledger.total_points,
        level=result.ledger.level,
    )


@router.post(
    "/api/v1/users/{user_id}/actions/{event_id}/void",
    response_model=VoidResponse
)
@limiter.limit("30/minute")
async def void_action_endpoint(
    request: Request,
    user_id: str,
    event_id: str,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """
    Void a logged action (Rate limit: 30/minute)

    The action stops counting toward impact scores; points already credited
    are kept. Voiding twice is harmless.
    """
    try:
        event = await service.void_action(user_id, event_id)
        return VoidResponse(user_id=user_id, event=event)
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.get("/api/v1/users/{user_id}/challenges", response_model=ChallengeResponse)
@limiter.limit("60/minute")
async def get_challenges_endpoint(
    request: Request,
    user_id: str,
    day: Optional[date] = None,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """
    Current period of every challenge with the user's progress (Rate limit: 60/minute)

    Completed challenges are claimed through the achievement claim route
    using their instance id.
    """
    day = day or datetime.now(timezone.utc).date()
    try:
        challenges = await service.get_challenges(user_id, day)
        return ChallengeResponse(user_id=user_id, day=day, challenges=challenges)
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.get("/api/v1/leaderboard", response_model=LeaderboardResponse)
@limiter.limit("30/minute")
async def get_leaderboard_endpoint(
    request: Request,
    time_window: str = "all_time",
    limit: int = 100,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Impact leaderboard for week, month or all_time (Rate limit: 30/minute)"""
    try:
        entries = await service.get_leaderboard(time_window, limit)
        return LeaderboardResponse(time_window=time_window, entries=entries)
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.get("/api/v1/users/{user_id}/leaderboard", response_model=LeaderboardSnapshot)
@limiter.limit("30/minute")
async def get_user_standing_endpoint(
    request: Request,
    user_id: str,
    time_window: str = "all_time",
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """One user's leaderboard standing (Rate limit: 30/minute)"""
    try:
        return await service.get_user_standing(user_id, time_window)
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.get("/api/v1/users/{user_id}/points/history", response_model=PointHistoryResponse)
@limiter.limit("60/minute")
async def get_point_history_endpoint(
    request: Request,
    user_id: str,
    limit: int = 50,
    api_key: str = Depends(verify_api_key),
    service: ProgressService = Depends(get_progress_service)
):
    """Recent point credits, newest first (Rate limit: 60/minute)"""
    try:
        if not 1 <= limit <= MAX_HISTORY_LIMIT:
            raise ValidationError(
                f"Limit must be between 1 and {MAX_HISTORY_LIMIT}",
                field="limit",
                value=limit,
                user_id=user_id
            )
        transactions = await service.get_point_history(user_id, limit)
        return PointHistoryResponse(user_id=user_id, transactions=transactions)
    except ProgressEngineError as e:
        raise to_http_exception(e)


@router.get("/api/health", response_model=HealthCheckResponse)
@limiter.limit("60/minute")
async def health_check(request: Request):
    """Health check endpoint (Rate limit: 60/minute for monitoring systems)"""
    try:
        reachable = await get_container().store.ping()
    except Exception as e:
        logger.error(f"Storage health check failed: {e}")
        reachable = False

    storage_status = "connected" if reachable else "disconnected"
    return HealthCheckResponse(
        status="healthy" if reachable else "degraded",
        storage=storage_status,
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/metrics")
async def metrics_endpoint():
    """Expose Prometheus metrics (unauthenticated, for the scraper)"""
    content, content_type = render_metrics()
    return Response(content=content, media_type=content_type)
