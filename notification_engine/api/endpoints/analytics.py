from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query

from notification_engine.api.deps import require_admin_token
from notification_engine.schemas.analytics import AnalyticsResponse, TrendsResponse
from notification_engine.services import analytics as analytics_service

router = APIRouter(prefix="/analytics", dependencies=[Depends(require_admin_token)])


@router.get("", response_model=AnalyticsResponse)
def delivery_analytics(start: datetime, end: datetime):
    try:
        return analytics_service.get_analytics(start, end)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


@router.get("/trends", response_model=TrendsResponse)
def delivery_trends(
    start: datetime,
    end: datetime,
    group_by: str = Query("day", pattern="^(hour|day|week)$"),
    top: int = Query(10, ge=1, le=100),
):
    try:
        return analytics_service.get_trends(start, end, group_by=group_by, top=top)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
