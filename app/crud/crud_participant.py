# app/crud/crud_participant.py
"""
CRUD operations for the live session roster and its control log.

Handles recording when participants join/leave live sessions and the
presenter control actions applied to them.
"""
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, func
from sqlalchemy.orm import Session

from app.models.control_action import ControlAction
from app.models.participant import Participant


class CRUDParticipant:
    """CRUD operations for Participant."""

    def get_open(
        self,
        db: Session,
        *,
        live_session_id: str,
        participant_id: str,
    ) -> Optional[Participant]:
        """Get the participant's currently open record (not yet left)."""
        return (
            db.query(Participant)
            .filter(
                and_(
                    Participant.live_session_id == live_session_id,
                    Participant.participant_id == participant_id,
                    Participant.left_at.is_(None),
                )
            )
            .first()
        )

    def list_open(self, db: Session, *, live_session_id: str) -> List[Participant]:
        return (
            db.query(Participant)
            .filter(
                and_(
                    Participant.live_session_id == live_session_id,
                    Participant.left_at.is_(None),
                )
            )
            .order_by(Participant.joined_at.asc())
            .all()
        )

    def count_open(self, db: Session, *, live_session_id: str) -> int:
        return (
            db.query(func.count(Participant.id))
            .filter(
                and_(
                    Participant.live_session_id == live_session_id,
                    Participant.left_at.is_(None),
                )
            )
            .scalar()
        ) or 0

    def create(
        self,
        db: Session,
        *,
        live_session_id: str,
        participant_id: str,
        role: str,
        now: datetime,
        display_name: Optional[str] = None,
        device_session_id: Optional[str] = None,
    ) -> Participant:
        participant = Participant(
            live_session_id=live_session_id,
            participant_id=participant_id,
            role=role,
            display_name=display_name,
            device_session_id=device_session_id,
            joined_at=now,
        )
        db.add(participant)
        db.flush()
        return participant

    def close_all_open(self, db: Session, *, live_session_id: str, when: datetime) -> int:
        """Stamp every open record with the same leave time. Returns records closed."""
        open_records = self.list_open(db, live_session_id=live_session_id)
        for record in open_records:
            record.left_at = when
        db.flush()
        return len(open_records)

    def add_control_action(
        self,
        db: Session,
        *,
        live_session_id: str,
        actor_id: str,
        target_participant_id: str,
        action: str,
        now: datetime,
    ) -> ControlAction:
        record = ControlAction(
            live_session_id=live_session_id,
            actor_id=actor_id,
            target_participant_id=target_participant_id,
            action=action,
            created_at=now,
        )
        db.add(record)
        db.flush()
        return record

    def list_control_actions(self, db: Session, *, live_session_id: str) -> List[ControlAction]:
        return (
            db.query(ControlAction)
            .filter(ControlAction.live_session_id == live_session_id)
            .order_by(ControlAction.created_at.asc(), ControlAction.id.asc())
            .all()
        )


# Singleton instance
participant = CRUDParticipant()
