# app/api/deps.py
from typing import Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from app.core.config import Settings, get_settings
from app.core.errors import ForbiddenError
from app.core.roles import Capability, Role, parse_role, require_capability
from app.schemas.token import TokenPayload
from app.services.admission_controller import AdmissionController
from app.services.credential_service import CredentialService
from app.services.device_identity import DeviceIdentity, identity_from_request
from app.services.live_session_service import LiveSessionService
from app.services.session_lifecycle import SessionLifecycleManager


# This tells FastAPI where to look for the token.
# The `tokenUrl` doesn't have to be a real endpoint in this service,
# it's just for the OpenAPI documentation.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="token")


def get_current_user(
    token: str = Depends(oauth2_scheme),
    settings: Settings = Depends(get_settings),
) -> TokenPayload:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        # Decode the token using the secret key
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=["HS256"])
        # Validate the payload against our schema
        token_data = TokenPayload(**payload)
    except (JWTError, ValueError):
        # Catches any error from jose or Pydantic validation
        raise credentials_exception

    return token_data


def require(capability: Capability) -> Callable[..., TokenPayload]:
    """Dependency factory: the caller's role must grant `capability`."""

    def checker(current_user: TokenPayload = Depends(get_current_user)) -> TokenPayload:
        require_capability(parse_role(current_user.role), capability)
        return current_user

    return checker


def get_device_identity(
    request: Request,
    settings: Settings = Depends(get_settings),
) -> DeviceIdentity:
    return identity_from_request(request, settings.DEVICE_FINGERPRINT_SECRET)


# Services are built once in the app lifespan and live on app.state


def get_admission_controller(request: Request) -> AdmissionController:
    return request.app.state.admission


def get_lifecycle_manager(request: Request) -> SessionLifecycleManager:
    return request.app.state.lifecycle


def get_credential_service(request: Request) -> CredentialService:
    return request.app.state.credentials


def get_live_session_service(request: Request) -> LiveSessionService:
    return request.app.state.live_sessions


def ensure_credential_scope(current_user: TokenPayload, credential_id: str) -> None:
    """Presenter and attendee tokens only act on the class login they were issued for."""
    if parse_role(current_user.role) == Role.MANAGER:
        return
    if current_user.credential_id != credential_id:
        raise ForbiddenError(
            "Token is not valid for this class login",
            details={"credential_id": credential_id},
        )
