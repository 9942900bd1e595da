from datetime import datetime
from typing import Dict, List

from pydantic import BaseModel


class GroupStats(BaseModel):
    successful: int
    total: int
    delivery_rate: float


class DailyTrend(BaseModel):
    date: str
    total: int
    successful: int
    delivery_rate: float


class AnalyticsResponse(BaseModel):
    start: datetime
    end: datetime
    total: int
    overall_stats: Dict[str, int]
    overall_delivery_rate: float
    stats_by_channel: Dict[str, GroupStats]
    stats_by_type: Dict[str, GroupStats]
    average_delivery_time_seconds: float
    failure_reasons: Dict[str, int]
    daily_trends: List[DailyTrend]


class VolumePoint(BaseModel):
    period: str
    total: int
    successful: int
    failed: int


class RecipientStats(BaseModel):
    recipient_id: str
    total: int
    successful: int
    delivery_rate: float


class TrendsResponse(BaseModel):
    start: datetime
    end: datetime
    group_by: str
    volume: List[VolumePoint]
    top_recipients: List[RecipientStats]
    delivery_rates_by_type: Dict[str, float]
