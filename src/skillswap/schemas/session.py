"""Pydantic schemas for session booking endpoints."""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from ..models import SessionStatus
from ..utils.datetime import as_utc


class SessionCreate(BaseModel):
    """Request body for booking a session."""

    teacher_id: UUID
    learner_id: UUID
    skill_id: UUID
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = Field(None, max_length=2000)
    scheduled_at: datetime
    duration: int = Field(..., gt=0, le=480, description="Length of the session in minutes.")


class SessionAction(BaseModel):
    """Identifies the participant performing a transition."""

    actor_id: UUID


class SessionReschedule(SessionAction):
    scheduled_at: datetime


class SessionCancel(SessionAction):
    reason: Optional[str] = Field(None, max_length=500)


class SessionRead(BaseModel):
    """Session response payload."""

    model_config = ConfigDict(from_attributes=True)

    session_id: UUID
    teacher_id: UUID
    learner_id: UUID
    skill_id: UUID
    title: str
    description: Optional[str] = None
    scheduled_at: datetime
    ends_at: datetime
    duration: int
    status: SessionStatus
    credit_cost: int
    video_link: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_serializer("scheduled_at", "ends_at", "created_at", "updated_at")
    def serialize_utc(self, value: datetime) -> datetime:
        return as_utc(value)


class SessionDetailsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    session: SessionRead
    can_join: bool
    join_url: Optional[str] = None


class SessionCancellationReceipt(BaseModel):
    """Response returned after cancelling a session."""

    session: SessionRead
    refunded_credits: int = Field(..., ge=0)


class SessionList(BaseModel):
    items: List[SessionRead]
    total: int
