# app/crud/crud_credential.py
"""
CRUD operations for class login credentials.

Methods flush but never commit; the session registry owns the commit point.
"""
from datetime import datetime
from typing import Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from app.models.credential import Credential
from app.models.device_session import DeviceSession


class CRUDCredential:
    """CRUD operations for Credential."""

    def get(self, db: Session, credential_id: str) -> Optional[Credential]:
        return db.query(Credential).filter(Credential.id == credential_id).first()

    def create(
        self,
        db: Session,
        *,
        capacity: int,
        label: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> Credential:
        credential = Credential(
            label=label,
            capacity=capacity,
            expires_at=expires_at,
            created_by=created_by,
            is_active=True,
            active_device_count=0,
        )
        db.add(credential)
        db.flush()
        return credential

    def count_active_devices(self, db: Session, *, credential_id: str, stale_before: datetime) -> int:
        """Count active device sessions whose last activity is within the TTL."""
        return db.query(func.count(DeviceSession.id)).filter(
            and_(
                DeviceSession.credential_id == credential_id,
                DeviceSession.is_active.is_(True),
                DeviceSession.last_activity_at >= stale_before,
            )
        ).scalar() or 0

    def refresh_active_count(self, db: Session, *, credential: Credential, stale_before: datetime) -> int:
        """Recompute the cached active device count from the device rows."""
        db.flush()
        count = self.count_active_devices(db, credential_id=credential.id, stale_before=stale_before)
        credential.active_device_count = count
        db.flush()
        return count


# Singleton instance
credential = CRUDCredential()
