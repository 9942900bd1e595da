from typing import List, Optional

from pydantic import BaseModel, Field


class PreferenceResponse(BaseModel):
    user_id: str
    email_enabled: bool = True
    push_enabled: bool = True
    in_app_enabled: bool = True
    disabled_categories: List[str] = Field(default_factory=list)
    frequency: str = "IMMEDIATE"
    quiet_hours_enabled: bool = False
    quiet_hours_start: Optional[str] = None
    quiet_hours_end: Optional[str] = None
    timezone: Optional[str] = None


class PreferenceUpdate(BaseModel):
    email_enabled: Optional[bool] = None
    push_enabled: Optional[bool] = None
    in_app_enabled: Optional[bool] = None
    disabled_categories: Optional[List[str]] = None
    frequency: Optional[str] = Field(None, description="IMMEDIATE|DAILY|WEEKLY")
    quiet_hours_enabled: Optional[bool] = None
    quiet_hours_start: Optional[str] = Field(None, description="HH:MM")
    quiet_hours_end: Optional[str] = Field(None, description="HH:MM")
    timezone: Optional[str] = None
