from typing import List, Optional

from pydantic import BaseModel, Field


class TemplateContentIn(BaseModel):
    channel: str = Field(..., description="EMAIL|PUSH|IN_APP")
    locale: Optional[str] = None
    subject: Optional[str] = Field(None, description="email subject or push/in-app title")
    body: str


class TemplateContentResponse(BaseModel):
    channel: str
    locale: str
    subject: Optional[str] = None
    body: str


class TemplateCreate(BaseModel):
    name: str
    type: str = Field(..., description="SCHEDULE_REMINDER|CONTENT_UPDATE|QUIZ_REMINDER|ASSIGNMENT_DUE|COURSE_ANNOUNCEMENT|SYSTEM_NOTIFICATION")
    locale: str = "en"
    description: Optional[str] = None
    is_active: bool = True
    contents: List[TemplateContentIn] = Field(default_factory=list)


class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = None
    contents: Optional[List[TemplateContentIn]] = None


class TemplateResponse(BaseModel):
    id: int
    name: str
    type: str
    locale: str
    description: Optional[str] = None
    is_active: bool
    contents: List[TemplateContentResponse]
    created_at: str
    updated_at: str
