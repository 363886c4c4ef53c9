# app/models/participant.py
"""
Participant Model - append-only roster log for live sessions.

A record is created on join and only mutated to stamp the leave time (and the
mute/video flags driven by presenter controls).
"""
import uuid

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Index, text

from app.db.base_class import Base
from app.utils.clock import utcnow


class Participant(Base):
    __tablename__ = "live_session_participants"

    id = Column(
        String, primary_key=True, default=lambda: f"par_{uuid.uuid4().hex[:12]}"
    )
    live_session_id = Column(String, ForeignKey("live_sessions.id"), nullable=False, index=True)
    participant_id = Column(String, nullable=False, comment="Presenter id or device identity key")
    role = Column(String(20), nullable=False)
    display_name = Column(String, nullable=True)
    device_session_id = Column(
        String, ForeignKey("device_sessions.id", ondelete="SET NULL"), nullable=True
    )

    joined_at = Column(DateTime, nullable=False, default=utcnow)
    left_at = Column(DateTime, nullable=True, comment="Null while still in the session")

    is_muted = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    video_enabled = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    __table_args__ = (
        Index("ix_participants_session_open", "live_session_id", "left_at"),
        # At most one open record per participant per live session
        Index(
            "uq_participants_open_per_session",
            "live_session_id",
            "participant_id",
            unique=True,
            postgresql_where=text("left_at IS NULL"),
            sqlite_where=text("left_at IS NULL"),
        ),
    )

    def __repr__(self):
        return f"<Participant(id={self.id}, session={self.live_session_id}, who={self.participant_id})>"
