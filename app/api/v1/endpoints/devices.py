# app/api/v1/endpoints/devices.py
from typing import Optional

from fastapi import APIRouter, Depends, Request

from app.api import deps
from app.core.config import settings
from app.core.limiter import limiter
from app.schemas.device_session import (
    ActiveDeviceCount,
    AdmissionRequest,
    AdmissionResponse,
    DeviceSession,
    SessionTokenRequest,
)
from app.schemas.token import TokenPayload
from app.services.admission_controller import AdmissionController
from app.services.device_identity import DeviceIdentity
from app.services.session_lifecycle import SessionLifecycleManager

router = APIRouter(tags=["Devices"])


@router.post("/credentials/{credentialId}/admissions", response_model=AdmissionResponse)
@limiter.limit(settings.ADMISSION_RATE_LIMIT)
def admit_device(
    credentialId: str,
    request: Request,
    admission_in: Optional[AdmissionRequest] = None,
    identity: DeviceIdentity = Depends(deps.get_device_identity),
    admission: AdmissionController = Depends(deps.get_admission_controller),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Admit the calling device under a class login.

    The outcome is one of `admit`, `reused` or `evicted` (the least recently
    active device was signed out to make room). A `degraded` admission means
    the session store was unavailable and the device was let in unrecorded.
    """
    deps.ensure_credential_scope(current_user, credentialId)
    session_token = admission_in.session_token if admission_in else None
    decision = admission.try_admit(credentialId, identity, session_token=session_token)
    decision.raise_for_rejection()
    return AdmissionResponse.from_decision(decision)


@router.get("/credentials/{credentialId}/active-devices", response_model=ActiveDeviceCount)
def active_devices(
    credentialId: str,
    lifecycle: SessionLifecycleManager = Depends(deps.get_lifecycle_manager),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    deps.ensure_credential_scope(current_user, credentialId)
    return lifecycle.active_device_count(credentialId)


@router.post("/device-sessions/heartbeat", response_model=DeviceSession)
def heartbeat(
    body: SessionTokenRequest,
    lifecycle: SessionLifecycleManager = Depends(deps.get_lifecycle_manager),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Keep a device session alive. 403 means the device must be admitted again."""
    return lifecycle.heartbeat(body.session_token)


@router.post("/device-sessions/end", response_model=DeviceSession)
def end_device_session(
    body: SessionTokenRequest,
    lifecycle: SessionLifecycleManager = Depends(deps.get_lifecycle_manager),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return lifecycle.end_session(body.session_token)
