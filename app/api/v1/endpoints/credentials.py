# app/api/v1/endpoints/credentials.py
from typing import List

from fastapi import APIRouter, Depends, status

from app.api import deps
from app.core.roles import Capability
from app.schemas.credential import CapacityUpdate, Credential, CredentialCreate
from app.schemas.device_session import DeviceReset, DeviceSession
from app.schemas.token import TokenPayload
from app.services.credential_service import CredentialService
from app.services.session_lifecycle import SessionLifecycleManager

router = APIRouter(tags=["Credentials"])


@router.post(
    "/credentials",
    response_model=Credential,
    status_code=status.HTTP_201_CREATED,
)
def create_credential(
    credential_in: CredentialCreate,
    service: CredentialService = Depends(deps.get_credential_service),
    current_user: TokenPayload = Depends(deps.require(Capability.MANAGE_CREDENTIALS)),
):
    """Create a class login with a device limit."""
    return service.create(
        capacity=credential_in.capacity,
        label=credential_in.label,
        expires_at=credential_in.expires_at,
        created_by=current_user.sub,
    )


@router.get("/credentials/{credentialId}", response_model=Credential)
def get_credential(
    credentialId: str,
    service: CredentialService = Depends(deps.get_credential_service),
    current_user: TokenPayload = Depends(deps.require(Capability.MANAGE_CREDENTIALS)),
):
    return service.get(credentialId)


@router.patch("/credentials/{credentialId}/capacity", response_model=Credential)
def update_capacity(
    credentialId: str,
    capacity_in: CapacityUpdate,
    service: CredentialService = Depends(deps.get_credential_service),
    current_user: TokenPayload = Depends(deps.require(Capability.MANAGE_CREDENTIALS)),
):
    """
    Change the device limit. Refused with 409 if it would drop below the
    number of devices currently active.
    """
    return service.update_capacity(credentialId, capacity_in.capacity)


@router.delete("/credentials/{credentialId}", response_model=Credential)
def deactivate_credential(
    credentialId: str,
    service: CredentialService = Depends(deps.get_credential_service),
    current_user: TokenPayload = Depends(deps.require(Capability.MANAGE_CREDENTIALS)),
):
    """Soft-delete a class login and sign out every device under it."""
    return service.deactivate(credentialId)


@router.get("/credentials/{credentialId}/devices", response_model=List[DeviceSession])
def list_devices(
    credentialId: str,
    active_only: bool = True,
    lifecycle: SessionLifecycleManager = Depends(deps.get_lifecycle_manager),
    current_user: TokenPayload = Depends(deps.require(Capability.MANAGE_DEVICES)),
):
    return lifecycle.list_devices(credentialId, active_only=active_only)


@router.post("/credentials/{credentialId}/devices/reset", response_model=DeviceReset)
def reset_devices(
    credentialId: str,
    lifecycle: SessionLifecycleManager = Depends(deps.get_lifecycle_manager),
    current_user: TokenPayload = Depends(deps.require(Capability.MANAGE_DEVICES)),
):
    """Sign out every device on a class login."""
    expired = lifecycle.reset_devices(credentialId)
    return DeviceReset(credential_id=credentialId, expired=expired)


@router.delete(
    "/credentials/{credentialId}/devices/{deviceSessionId}",
    response_model=DeviceSession,
)
def revoke_device(
    credentialId: str,
    deviceSessionId: str,
    lifecycle: SessionLifecycleManager = Depends(deps.get_lifecycle_manager),
    current_user: TokenPayload = Depends(deps.require(Capability.MANAGE_DEVICES)),
):
    return lifecycle.revoke_device(credentialId, deviceSessionId)
