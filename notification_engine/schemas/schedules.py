from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class TargetingIn(BaseModel):
    roles: List[str] = Field(default_factory=list)
    user_ids: List[str] = Field(default_factory=list)
    course_ids: List[str] = Field(default_factory=list)
    class_ids: List[str] = Field(default_factory=list)


class ScheduleCreate(BaseModel):
    name: str
    template_id: int
    targeting: TargetingIn = Field(default_factory=TargetingIn)
    include_teachers: Optional[bool] = None
    scheduled_at: Optional[datetime] = Field(None, description="first fire; null fires on the next tick")
    timezone: str = "UTC"
    is_recurring: bool = False
    recurring_pattern: Optional[str] = Field(None, description="DAILY|WEEKLY|MONTHLY")
    recurring_end_date: Optional[datetime] = None
    email_enabled: bool = True
    push_enabled: bool = False
    in_app_enabled: bool = False
    variables: Optional[Dict[str, str]] = None
    status: str = Field("DRAFT", description="DRAFT|SCHEDULED")


class ScheduleUpdate(BaseModel):
    name: Optional[str] = None
    template_id: Optional[int] = None
    targeting: Optional[TargetingIn] = None
    include_teachers: Optional[bool] = None
    scheduled_at: Optional[datetime] = None
    timezone: Optional[str] = None
    is_recurring: Optional[bool] = None
    recurring_pattern: Optional[str] = None
    recurring_end_date: Optional[datetime] = None
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None
    variables: Optional[Dict[str, str]] = None
    status: Optional[str] = None


class ScheduleResponse(BaseModel):
    id: int
    name: str
    template_id: int
    targeting: TargetingIn
    include_teachers: bool
    scheduled_at: Optional[str] = None
    timezone: str
    is_recurring: bool
    recurring_pattern: Optional[str] = None
    recurring_end_date: Optional[str] = None
    email_enabled: bool
    push_enabled: bool
    in_app_enabled: bool
    variables: Dict[str, str] = Field(default_factory=dict)
    status: str
    last_fired_at: Optional[str] = None
    created_at: str


class ScheduleListResponse(BaseModel):
    items: List[ScheduleResponse]


class OccurrenceResponse(BaseModel):
    id: int
    schedule_id: int
    fire_at: str
    status: str
    forced: bool
    recipient_count: int
    deliveries_created: int
    warnings: List[str] = Field(default_factory=list)
    error: Optional[str] = None
    started_at: Optional[str] = None
    finished_at: Optional[str] = None


class FireResultResponse(BaseModel):
    occurrence_id: int
    status: str
    fire_at: str
    recipient_count: int
    deliveries_created: int
    warnings: List[str]
    error: Optional[str] = None


class ScheduleProgressResponse(BaseModel):
    schedule_id: int
    status: str
    total: int
    by_status: Dict[str, int]
