# app/schemas/device_session.py
from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime


class DeviceSession(BaseModel):
    id: str
    credential_id: str
    identity_source: str
    device_type: str
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime
    last_activity_at: datetime
    is_active: bool
    ended_at: Optional[datetime] = None
    termination_reason: str
    model_config = {"from_attributes": True}


class AdmissionRequest(BaseModel):
    # Token from a previous admission; kept only while it is still this device's live session token
    session_token: Optional[str] = None


class AdmissionResponse(BaseModel):
    outcome: str
    credential_id: str
    session_token: Optional[str] = None
    device_session_id: Optional[str] = None
    evicted_session_ids: List[str] = []
    reason: Optional[str] = None
    degraded: bool = False
    active_count: Optional[int] = None
    capacity: Optional[int] = None

    @classmethod
    def from_decision(cls, decision) -> "AdmissionResponse":
        return cls(
            outcome=decision.outcome.value,
            credential_id=decision.credential_id,
            session_token=decision.session_token,
            device_session_id=decision.device_session_id,
            evicted_session_ids=decision.evicted_session_ids,
            reason=decision.reason,
            degraded=decision.degraded,
            active_count=decision.active_count,
            capacity=decision.capacity,
        )


class SessionTokenRequest(BaseModel):
    session_token: str = Field(..., min_length=1)


class ActiveDeviceCount(BaseModel):
    credential_id: str
    active: int
    capacity: int
    available: int


class DeviceReset(BaseModel):
    credential_id: str
    expired: int
