# app/models/control_action.py
import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey, Index

from app.db.base_class import Base
from app.utils.clock import utcnow


class ControlAction(Base):
    """Immutable record of a presenter control (mute, remove, ...) on a participant."""

    __tablename__ = "live_session_control_actions"

    id = Column(
        String, primary_key=True, default=lambda: f"ctl_{uuid.uuid4().hex[:12]}"
    )
    live_session_id = Column(String, ForeignKey("live_sessions.id"), nullable=False)
    actor_id = Column(String, nullable=False)
    target_participant_id = Column(String, nullable=False)
    action = Column(String(20), nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_control_actions_session_created", "live_session_id", "created_at"),
    )
