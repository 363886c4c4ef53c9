# app/services/credential_service.py
import logging
from datetime import datetime, timedelta
from typing import Optional

from app import crud
from app.constants.device_session import TerminationReason
from app.core.config import Settings
from app.core.errors import ConflictError, InvalidRequestError, NotFoundError
from app.db.registry import SessionRegistry
from app.models.credential import Credential
from app.services.session_lifecycle import SessionLifecycleManager
from app.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


class CredentialService:
    """Create, resize and deactivate class logins."""

    def __init__(
        self,
        registry: SessionRegistry,
        lifecycle: SessionLifecycleManager,
        settings: Settings,
    ):
        self.registry = registry
        self.lifecycle = lifecycle
        self.max_capacity = settings.MAX_CREDENTIAL_CAPACITY
        self.ttl = timedelta(hours=settings.DEVICE_SESSION_TTL_HOURS)

    def _validate_capacity(self, capacity: int) -> None:
        if capacity < 1 or capacity > self.max_capacity:
            raise InvalidRequestError(
                f"Capacity must be between 1 and {self.max_capacity}", field="capacity"
            )

    def create(
        self,
        *,
        capacity: int,
        label: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Credential:
        now = to_naive_utc(now) or utcnow()
        self._validate_capacity(capacity)
        expires_at = to_naive_utc(expires_at)
        if expires_at is not None and expires_at <= now:
            raise InvalidRequestError("Expiry must be in the future", field="expires_at")

        with self.registry.transaction() as db:
            credential = crud.credential.create(
                db, capacity=capacity, label=label, expires_at=expires_at, created_by=created_by
            )

        logger.info(f"Created credential {credential.id} with capacity {capacity}")
        return credential

    def get(self, credential_id: str) -> Credential:
        with self.registry.read() as db:
            credential = crud.credential.get(db, credential_id)
            if credential is None:
                raise NotFoundError("Credential", credential_id)
            return credential

    def update_capacity(
        self,
        credential_id: str,
        capacity: int,
        now: Optional[datetime] = None,
    ) -> Credential:
        """
        Change the device limit of a class login.

        Lowering the limit below the number of devices currently active is
        refused rather than evicting anyone.

        Raises:
            InvalidRequestError: Capacity outside the allowed range
            NotFoundError: Unknown class login
            ConflictError: Capacity below the current active device count
        """
        now = to_naive_utc(now) or utcnow()
        self._validate_capacity(capacity)

        with self.registry.transaction() as db:
            credential = self.registry.lock_credential(db, credential_id)
            if credential is None:
                raise NotFoundError("Credential", credential_id)

            stale_before = now - self.ttl
            active = crud.credential.count_active_devices(
                db, credential_id=credential_id, stale_before=stale_before
            )
            if capacity < active:
                raise ConflictError(
                    f"Cannot lower capacity to {capacity}: {active} devices are active",
                    details={
                        "credential_id": credential_id,
                        "active_count": active,
                        "requested_capacity": capacity,
                    },
                )

            previous = credential.capacity
            credential.capacity = capacity
            crud.credential.refresh_active_count(db, credential=credential, stale_before=stale_before)

        logger.info(f"Credential {credential_id} capacity changed {previous} -> {capacity}")
        return credential

    def deactivate(self, credential_id: str, now: Optional[datetime] = None) -> Credential:
        """Soft delete: the row stays, every device under it is signed out."""
        now = to_naive_utc(now) or utcnow()

        with self.registry.transaction() as db:
            credential = self.registry.lock_credential(db, credential_id)
            if credential is None:
                raise NotFoundError("Credential", credential_id)
            if not credential.is_active:
                return credential

            credential.is_active = False
            credential.deactivated_at = now
            self.lifecycle.expire_all_for_credential(
                db, credential, TerminationReason.CREDENTIAL_DEACTIVATED, now
            )

        logger.info(f"Credential {credential_id} deactivated")
        return credential
