# app/api/v1/endpoints/live_sessions.py
from typing import List

from fastapi import APIRouter, Depends, Request, status

from app.api import deps
from app.core.config import settings
from app.core.limiter import limiter
from app.core.roles import Capability, Role, parse_role
from app.schemas.device_session import AdmissionResponse
from app.schemas.live_session import (
    ControlAction,
    ControlRequest,
    JoinRequest,
    JoinResponse,
    LiveSession,
    LiveSessionCreate,
    Participant,
)
from app.schemas.token import TokenPayload
from app.services.device_identity import DeviceIdentity
from app.services.live_session_service import LiveSessionService

router = APIRouter(prefix="/live-sessions", tags=["Live Sessions"])


def _get_scoped(service: LiveSessionService, live_session_id: str, current_user: TokenPayload):
    live = service.get(live_session_id)
    deps.ensure_credential_scope(current_user, live.credential_id)
    return live


@router.post("", response_model=LiveSession, status_code=status.HTTP_201_CREATED)
def start_live_session(
    session_in: LiveSessionCreate,
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.require(Capability.START_SESSION)),
):
    """
    Schedule a live session on a class login.

    Returns 409 with the existing meeting id if the class login already has
    one in progress.
    """
    deps.ensure_credential_scope(current_user, session_in.credential_id)
    return service.start(
        credential_id=session_in.credential_id,
        presenter_id=current_user.sub,
        title=session_in.title,
        scheduled_start=session_in.scheduled_start,
        settings=session_in.settings.model_dump() if session_in.settings else None,
    )


@router.get("/{liveSessionId}", response_model=LiveSession)
def get_live_session(
    liveSessionId: str,
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    return _get_scoped(service, liveSessionId, current_user)


@router.post("/{liveSessionId}/go-live", response_model=LiveSession)
def go_live(
    liveSessionId: str,
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.require(Capability.START_SESSION)),
):
    return service.go_live(liveSessionId, current_user.sub)


@router.post("/{liveSessionId}/join", response_model=JoinResponse)
@limiter.limit(settings.ADMISSION_RATE_LIMIT)
def join_live_session(
    liveSessionId: str,
    request: Request,
    join_in: JoinRequest,
    identity: DeviceIdentity = Depends(deps.get_device_identity),
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Join as the presenter or as an attendee device.

    Attendee joins are admitted against the class login's device limit in
    the same step; a full session answers 403 capacity_exceeded.
    """
    role = parse_role(current_user.role)
    _get_scoped(service, liveSessionId, current_user)
    result = service.join(
        liveSessionId,
        role,
        user_id=current_user.sub,
        identity=identity,
        display_name=join_in.display_name,
        session_token=join_in.session_token,
    )
    return JoinResponse(
        participant=Participant.model_validate(result.participant),
        live_session=LiveSession.model_validate(result.live_session),
        already_joined=result.already_joined,
        admission=AdmissionResponse.from_decision(result.decision) if result.decision else None,
    )


@router.post("/{liveSessionId}/leave", response_model=LiveSession)
def leave_live_session(
    liveSessionId: str,
    identity: DeviceIdentity = Depends(deps.get_device_identity),
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    role = parse_role(current_user.role)
    participant_id = current_user.sub if role == Role.PRESENTER else identity.key
    return service.leave(liveSessionId, participant_id)


@router.post("/{liveSessionId}/end", response_model=LiveSession)
def end_live_session(
    liveSessionId: str,
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.require(Capability.END_SESSION)),
):
    return service.end(liveSessionId, current_user.sub)


@router.post("/{liveSessionId}/cancel", response_model=LiveSession)
def cancel_live_session(
    liveSessionId: str,
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.require(Capability.END_SESSION)),
):
    return service.cancel(liveSessionId, current_user.sub)


@router.post(
    "/{liveSessionId}/controls",
    response_model=ControlAction,
    status_code=status.HTTP_201_CREATED,
)
def control_participant(
    liveSessionId: str,
    control_in: ControlRequest,
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.require(Capability.CONTROL_PARTICIPANTS)),
):
    """Mute, unmute, toggle video for, or remove a participant."""
    return service.control(
        liveSessionId,
        current_user.sub,
        control_in.target_participant_id,
        control_in.action,
    )


@router.get("/{liveSessionId}/participants", response_model=List[Participant])
def list_participants(
    liveSessionId: str,
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    _get_scoped(service, liveSessionId, current_user)
    return service.roster(liveSessionId)


@router.get("/{liveSessionId}/controls", response_model=List[ControlAction])
def list_controls(
    liveSessionId: str,
    service: LiveSessionService = Depends(deps.get_live_session_service),
    current_user: TokenPayload = Depends(deps.require(Capability.CONTROL_PARTICIPANTS)),
):
    _get_scoped(service, liveSessionId, current_user)
    return service.control_log(liveSessionId)
