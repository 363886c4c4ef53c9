# app/schemas/live_session.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from app.schemas.device_session import AdmissionResponse


class LiveSessionSettings(BaseModel):
    audio_enabled: Optional[bool] = None
    video_enabled: Optional[bool] = None
    recording_enabled: Optional[bool] = None
    chat_enabled: Optional[bool] = None


class LiveSession(BaseModel):
    id: str
    credential_id: str
    presenter_id: str
    title: str
    status: str
    scheduled_start: datetime
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_seconds: Optional[int] = None
    max_participants: int
    participant_count: int
    audio_enabled: bool
    video_enabled: bool
    recording_enabled: bool
    chat_enabled: bool
    model_config = {"from_attributes": True}


class LiveSessionCreate(BaseModel):
    credential_id: str
    title: str = Field(..., min_length=1, json_schema_extra={"example": "Photosynthesis, part 2"})
    scheduled_start: Optional[datetime] = None
    settings: Optional[LiveSessionSettings] = None


class Participant(BaseModel):
    id: str
    live_session_id: str
    participant_id: str
    role: str
    display_name: Optional[str] = None
    device_session_id: Optional[str] = None
    joined_at: datetime
    left_at: Optional[datetime] = None
    is_muted: bool
    video_enabled: bool
    model_config = {"from_attributes": True}


class JoinRequest(BaseModel):
    display_name: Optional[str] = None
    session_token: Optional[str] = None


class JoinResponse(BaseModel):
    participant: Participant
    live_session: LiveSession
    already_joined: bool = False
    admission: Optional[AdmissionResponse] = None


class ControlRequest(BaseModel):
    target_participant_id: str
    action: str = Field(..., json_schema_extra={"example": "mute"})


class ControlAction(BaseModel):
    id: str
    live_session_id: str
    actor_id: str
    target_participant_id: str
    action: str
    created_at: datetime
    model_config = {"from_attributes": True}

