# app/crud/crud_live_session.py
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from app.constants.live_session import LiveSessionStatus
from app.models.live_session import LiveSession


class CRUDLiveSession:
    """CRUD operations for LiveSession. Status changes live in the state machine service."""

    def get(self, db: Session, live_session_id: str) -> Optional[LiveSession]:
        return db.query(LiveSession).filter(LiveSession.id == live_session_id).first()

    def get_open_for_credential(self, db: Session, *, credential_id: str) -> Optional[LiveSession]:
        return (
            db.query(LiveSession)
            .filter(
                LiveSession.credential_id == credential_id,
                LiveSession.status.in_(LiveSessionStatus.open_values()),
            )
            .first()
        )

    def create(
        self,
        db: Session,
        *,
        credential_id: str,
        presenter_id: str,
        title: str,
        scheduled_start: datetime,
        max_participants: int,
        settings: Optional[dict] = None,
    ) -> LiveSession:
        settings = settings or {}
        live_session = LiveSession(
            credential_id=credential_id,
            presenter_id=presenter_id,
            title=title,
            status=LiveSessionStatus.SCHEDULED,
            scheduled_start=scheduled_start,
            max_participants=max_participants,
            participant_count=0,
            **{k: v for k, v in settings.items() if v is not None},
        )
        db.add(live_session)
        db.flush()
        return live_session


# Singleton instance
live_session = CRUDLiveSession()
