# app/services/session_lifecycle.py
"""
Session Lifecycle Manager - everything that happens to a device session after
admission: heartbeats, explicit sign-out, staleness sweeps, manual revokes and
retention cleanup.

Changes that alter how many devices count against a class login run inside
that class login's critical section, so they serialize with admission.
"""

import logging
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.orm import Session

from app import crud
from app.constants.device_session import TerminationReason
from app.core.config import Settings
from app.core.errors import LockTimeoutError, NotFoundError, SessionInactiveError, StoreUnavailableError
from app.db.registry import SessionRegistry
from app.models.credential import Credential
from app.models.device_session import DeviceSession
from app.services.notifications import EvictionNotifier
from app.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


def _redact(session_token: str) -> str:
    return f"{session_token[:6]}..." if session_token else ""


class SessionLifecycleManager:
    def __init__(
        self,
        registry: SessionRegistry,
        settings: Settings,
        notifier: Optional[EvictionNotifier] = None,
    ):
        self.registry = registry
        self.notifier = notifier
        self.ttl = timedelta(hours=settings.DEVICE_SESSION_TTL_HOURS)
        self.retention = timedelta(days=settings.DEVICE_SESSION_RETENTION_DAYS)

    def heartbeat(self, session_token: str, now: Optional[datetime] = None) -> DeviceSession:
        """
        Refresh a device's last activity.

        Raises:
            NotFoundError: Unknown session token
            SessionInactiveError: Session was evicted, revoked or went stale;
                the device must be admitted again
        """
        now = to_naive_utc(now) or utcnow()
        stale_before = now - self.ttl

        with self.registry.transaction() as db:
            if crud.device_session.touch_if_live(
                db, session_token=session_token, stale_before=stale_before, now=now
            ):
                return crud.device_session.get_by_token(db, session_token)

            device = crud.device_session.get_by_token(db, session_token)
            if device is None:
                raise NotFoundError("Device session", _redact(session_token))

            if device.is_active:
                # Active but past the TTL: reclaim it now under the credential lock
                credential = self.registry.lock_credential(db, device.credential_id)
                crud.device_session.expire_stale(
                    db, credential_id=device.credential_id, stale_before=stale_before, now=now
                )
                if credential is not None:
                    crud.credential.refresh_active_count(db, credential=credential, stale_before=stale_before)
                db.refresh(device)
                logger.info(f"Heartbeat on stale device session {device.id}; marked {device.termination_reason}")

            error = SessionInactiveError(device.id, device.termination_reason)

        raise error

    def end_session(
        self,
        session_token: str,
        reason: str = TerminationReason.MANUAL,
        now: Optional[datetime] = None,
    ) -> DeviceSession:
        """Sign a device out. Ending an already-ended session is a no-op."""
        now = to_naive_utc(now) or utcnow()

        with self.registry.transaction() as db:
            device = crud.device_session.get_by_token(db, session_token)
            if device is None:
                raise NotFoundError("Device session", _redact(session_token))
            if not device.is_active:
                return device

            credential = self.registry.lock_credential(db, device.credential_id)
            db.refresh(device)
            if not device.is_active:
                return device

            device.terminate(reason, now)
            if credential is not None:
                crud.credential.refresh_active_count(db, credential=credential, stale_before=now - self.ttl)

        logger.info(f"Device session {device.id} ended ({reason})")
        self._announce(device)
        return device

    def sweep_stale(self, now: Optional[datetime] = None) -> int:
        """Expire active device sessions idle past the TTL. Returns sessions swept."""
        now = to_naive_utc(now) or utcnow()
        stale_before = now - self.ttl

        with self.registry.read() as db:
            credential_ids = crud.device_session.credential_ids_with_stale(db, stale_before=stale_before)

        total = 0
        for credential_id in credential_ids:
            try:
                with self.registry.transaction() as db:
                    credential = self.registry.lock_credential(db, credential_id)
                    swept = crud.device_session.expire_stale(
                        db, credential_id=credential_id, stale_before=stale_before, now=now
                    )
                    if credential is not None:
                        crud.credential.refresh_active_count(db, credential=credential, stale_before=stale_before)
                total += swept
            except StoreUnavailableError:
                logger.error(f"Stale sweep skipped credential {credential_id}: session store unavailable")
            except LockTimeoutError:
                logger.warning(f"Stale sweep skipped credential {credential_id}: critical section busy")

        if total:
            logger.info(f"Stale sweep expired {total} device session(s) across {len(credential_ids)} credential(s)")
        return total

    def expire_all_for_credential(
        self,
        db: Session,
        credential: Credential,
        reason: str,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Force-expire every active device under a class login. The caller must
        already hold the credential's critical section.
        """
        now = to_naive_utc(now) or utcnow()
        expired = crud.device_session.expire_all_active(
            db, credential_id=credential.id, reason=reason, now=now
        )
        crud.credential.refresh_active_count(db, credential=credential, stale_before=now - self.ttl)
        logger.info(f"Expired {expired} device session(s) on credential {credential.id} ({reason})")
        return expired

    def reset_devices(self, credential_id: str, now: Optional[datetime] = None) -> int:
        """Manager action: sign every device out of a class login."""
        with self.registry.transaction() as db:
            credential = self.registry.lock_credential(db, credential_id)
            if credential is None:
                raise NotFoundError("Credential", credential_id)
            return self.expire_all_for_credential(db, credential, TerminationReason.MANUAL, now)

    def revoke_device(
        self,
        credential_id: str,
        device_session_id: str,
        now: Optional[datetime] = None,
    ) -> DeviceSession:
        now = to_naive_utc(now) or utcnow()

        with self.registry.transaction() as db:
            credential = self.registry.lock_credential(db, credential_id)
            if credential is None:
                raise NotFoundError("Credential", credential_id)
            device = crud.device_session.get(db, device_session_id)
            if device is None or device.credential_id != credential_id:
                raise NotFoundError("Device session", device_session_id)
            if not device.is_active:
                return device

            device.terminate(TerminationReason.MANUAL, now)
            crud.credential.refresh_active_count(db, credential=credential, stale_before=now - self.ttl)

        logger.info(f"Device session {device_session_id} revoked on credential {credential_id}")
        self._announce(device)
        return device

    def cleanup_retention(self, now: Optional[datetime] = None) -> int:
        """Physically delete ended device sessions older than the retention window."""
        now = to_naive_utc(now) or utcnow()
        cutoff = now - self.retention

        with self.registry.transaction() as db:
            deleted = crud.device_session.delete_ended_before(db, cutoff=cutoff)

        logger.info(f"Retention cleanup removed {deleted} device session(s) ended before {cutoff.isoformat()}")
        return deleted

    def active_device_count(self, credential_id: str, now: Optional[datetime] = None) -> dict:
        now = to_naive_utc(now) or utcnow()

        with self.registry.read() as db:
            credential = crud.credential.get(db, credential_id)
            if credential is None:
                raise NotFoundError("Credential", credential_id)
            active = crud.credential.count_active_devices(
                db, credential_id=credential_id, stale_before=now - self.ttl
            )
            return {
                "credential_id": credential_id,
                "active": active,
                "capacity": credential.capacity,
                "available": max(credential.capacity - active, 0),
            }

    def list_devices(
        self,
        credential_id: str,
        active_only: bool = True,
        now: Optional[datetime] = None,
    ) -> List[DeviceSession]:
        now = to_naive_utc(now) or utcnow()

        with self.registry.read() as db:
            if crud.credential.get(db, credential_id) is None:
                raise NotFoundError("Credential", credential_id)
            return crud.device_session.list_for_credential(
                db,
                credential_id=credential_id,
                active_only=active_only,
                stale_before=now - self.ttl if active_only else None,
            )

    def _announce(self, device: DeviceSession) -> None:
        if self.notifier is not None:
            self.notifier.session_terminated(
                credential_id=device.credential_id,
                device_session_id=device.id,
                reason=device.termination_reason,
            )
