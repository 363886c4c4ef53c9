# app/crud/crud_device_session.py
"""
CRUD operations for device sessions (the registry of admitted devices).

Only the admission controller and the lifecycle manager call the mutating
methods here. Methods flush but never commit.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, update
from sqlalchemy.orm import Session

from app.constants.device_session import TerminationReason
from app.models.device_session import DeviceSession


class CRUDDeviceSession:
    """CRUD operations for DeviceSession."""

    def get(self, db: Session, device_session_id: str) -> Optional[DeviceSession]:
        return db.query(DeviceSession).filter(DeviceSession.id == device_session_id).first()

    def get_by_token(self, db: Session, session_token: str) -> Optional[DeviceSession]:
        return db.query(DeviceSession).filter(DeviceSession.session_token == session_token).first()

    def get_active_set(
        self,
        db: Session,
        *,
        credential_id: str,
        stale_before: datetime,
    ) -> List[DeviceSession]:
        """Active, non-stale sessions for a credential, most recently active first."""
        return (
            db.query(DeviceSession)
            .filter(
                and_(
                    DeviceSession.credential_id == credential_id,
                    DeviceSession.is_active.is_(True),
                    DeviceSession.last_activity_at >= stale_before,
                )
            )
            .order_by(DeviceSession.last_activity_at.desc(), DeviceSession.created_at.desc())
            .all()
        )

    def list_for_credential(
        self,
        db: Session,
        *,
        credential_id: str,
        active_only: bool = True,
        stale_before: Optional[datetime] = None,
    ) -> List[DeviceSession]:
        query = db.query(DeviceSession).filter(DeviceSession.credential_id == credential_id)
        if active_only:
            query = query.filter(DeviceSession.is_active.is_(True))
            if stale_before is not None:
                query = query.filter(DeviceSession.last_activity_at >= stale_before)
        return query.order_by(DeviceSession.last_activity_at.desc()).all()

    def create(
        self,
        db: Session,
        *,
        credential_id: str,
        identity_key: str,
        identity_source: str,
        session_token: str,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        device_type: Optional[str] = None,
    ) -> DeviceSession:
        device_session = DeviceSession(
            credential_id=credential_id,
            identity_key=identity_key,
            identity_source=identity_source,
            session_token=session_token,
            ip_address=ip_address,
            user_agent=user_agent,
            device_type=device_type,
            created_at=now,
            last_activity_at=now,
            is_active=True,
            termination_reason=TerminationReason.NONE,
        )
        db.add(device_session)
        db.flush()
        return device_session

    def expire_stale(
        self,
        db: Session,
        *,
        credential_id: str,
        stale_before: datetime,
        now: datetime,
    ) -> int:
        """Flip active rows idle past the TTL to stale-expired. Returns rows changed."""
        result = db.execute(
            update(DeviceSession)
            .where(
                and_(
                    DeviceSession.credential_id == credential_id,
                    DeviceSession.is_active.is_(True),
                    DeviceSession.last_activity_at < stale_before,
                )
            )
            .values(
                is_active=False,
                ended_at=now,
                termination_reason=TerminationReason.STALE_EXPIRED,
            )
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def expire_all_active(
        self,
        db: Session,
        *,
        credential_id: str,
        reason: str,
        now: datetime,
    ) -> int:
        result = db.execute(
            update(DeviceSession)
            .where(
                and_(
                    DeviceSession.credential_id == credential_id,
                    DeviceSession.is_active.is_(True),
                )
            )
            .values(is_active=False, ended_at=now, termination_reason=reason)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    def touch_if_live(
        self,
        db: Session,
        *,
        session_token: str,
        stale_before: datetime,
        now: datetime,
    ) -> bool:
        """
        Conditionally refresh last activity. Only succeeds while the session is
        active and not stale, so a concurrent eviction can never be undone.
        """
        result = db.execute(
            update(DeviceSession)
            .where(
                and_(
                    DeviceSession.session_token == session_token,
                    DeviceSession.is_active.is_(True),
                    DeviceSession.last_activity_at >= stale_before,
                )
            )
            .values(last_activity_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return (result.rowcount or 0) == 1

    def credential_ids_with_stale(self, db: Session, *, stale_before: datetime) -> List[str]:
        rows = (
            db.query(DeviceSession.credential_id)
            .filter(
                and_(
                    DeviceSession.is_active.is_(True),
                    DeviceSession.last_activity_at < stale_before,
                )
            )
            .distinct()
            .all()
        )
        return [row[0] for row in rows]

    def delete_ended_before(self, db: Session, *, cutoff: datetime) -> int:
        """Physically delete inactive rows that ended before the cutoff."""
        return (
            db.query(DeviceSession)
            .filter(
                and_(
                    DeviceSession.is_active.is_(False),
                    DeviceSession.ended_at.isnot(None),
                    DeviceSession.ended_at < cutoff,
                )
            )
            .delete(synchronize_session=False)
        )


# Singleton instance
device_session = CRUDDeviceSession()
