# app/schemas/credential.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class Credential(BaseModel):
    id: str
    label: Optional[str] = None
    capacity: int
    is_active: bool
    expires_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    active_device_count: int
    created_by: Optional[str] = None
    created_at: datetime
    deactivated_at: Optional[datetime] = None
    model_config = {"from_attributes": True}


class CredentialCreate(BaseModel):
    label: Optional[str] = Field(None, json_schema_extra={"example": "Grade 7 Science"})
    capacity: int = Field(..., ge=1, le=50)
    expires_at: Optional[datetime] = None


class CapacityUpdate(BaseModel):
    capacity: int = Field(..., ge=1, le=50)
