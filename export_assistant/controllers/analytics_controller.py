from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import PlainTextResponse
from pydantic import ValidationError
from export_assistant.core.dependencies import get_analytics_service
from export_assistant.schemas.analytics import TimeRange
from export_assistant.services.analytics_service import AnalyticsService
from export_assistant.utils.response import success_response

router = APIRouter(prefix="/analytics", tags=["analytics"])


def time_range(start: Optional[datetime] = None, end: Optional[datetime] = None) -> Optional[TimeRange]:
    if start is None and end is None:
        return None
    if start is None or end is None:
        raise HTTPException(status_code=400, detail="Both start and end are required for a time range")
    try:
        return TimeRange(start=start, end=end)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/accuracy")
async def response_accuracy(
    user_id: Optional[str] = None,
    period: Optional[TimeRange] = Depends(time_range),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
):
    metrics = analytics_service.response_accuracy(user_id, period)
    return success_response(data=metrics.model_dump(mode="json"))


@router.get("/tasks")
async def task_completion(
    user_id: Optional[str] = None,
    period: Optional[TimeRange] = Depends(time_range),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
):
    metrics = analytics_service.task_completion(user_id, period)
    return success_response(data=metrics.model_dump(mode="json"))


@router.get("/patterns")
async def interaction_patterns(
    user_id: Optional[str] = None,
    analytics_service: AnalyticsService = Depends(get_analytics_service),
):
    patterns = analytics_service.interaction_patterns(user_id)
    return success_response(data=[p.model_dump(mode="json") for p in patterns])


@router.get("/dashboard")
async def dashboard(
    period: Optional[TimeRange] = Depends(time_range),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
):
    return success_response(data=analytics_service.dashboard(period).model_dump(mode="json"))


@router.get("/export")
async def export_events(
    fmt: str = Query("json", pattern="^(json|csv)$"),
    user_id: Optional[str] = None,
    period: Optional[TimeRange] = Depends(time_range),
    analytics_service: AnalyticsService = Depends(get_analytics_service),
):
    body = analytics_service.export(fmt, user_id, period)
    media_type = "text/csv" if fmt == "csv" else "application/json"
    return PlainTextResponse(body, media_type=media_type)


@router.post("/cleanup")
async def cleanup(analytics_service: AnalyticsService = Depends(get_analytics_service)):
    removed = await analytics_service.cleanup_expired()
    return success_response(data={"removed": removed}, message="Expired events pruned")
