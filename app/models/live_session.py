# app/models/live_session.py
"""
Live Session Model - one broadcast occasion on a class login, run by one presenter.
"""
import uuid

from sqlalchemy import Column, String, DateTime, Integer, Boolean, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from app.constants.live_session import LiveSessionStatus
from app.db.base_class import Base
from app.utils.clock import utcnow

_OPEN_STATUSES = "status IN ('scheduled', 'starting', 'live', 'full')"


class LiveSession(Base):
    __tablename__ = "live_sessions"

    id = Column(
        String, primary_key=True, default=lambda: f"mtg_{uuid.uuid4().hex[:12]}"
    )
    credential_id = Column(String, ForeignKey("credentials.id"), nullable=False, index=True)
    presenter_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    status = Column(String(20), nullable=False, default=LiveSessionStatus.SCHEDULED)

    scheduled_start = Column(DateTime, nullable=False)
    started_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)

    max_participants = Column(Integer, nullable=False)
    participant_count = Column(Integer, nullable=False, default=0, server_default="0")

    # Session settings
    audio_enabled = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    video_enabled = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    recording_enabled = Column(Boolean, nullable=False, default=False, server_default=text("false"))
    chat_enabled = Column(Boolean, nullable=False, default=True, server_default=text("true"))

    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    credential = relationship("Credential", backref="live_sessions")

    __table_args__ = (
        # At most one open live session per class login
        Index(
            "uq_live_sessions_open_per_credential",
            "credential_id",
            unique=True,
            postgresql_where=text(_OPEN_STATUSES),
            sqlite_where=text(_OPEN_STATUSES),
        ),
    )

    def __repr__(self):
        return f"<LiveSession(id={self.id}, status={self.status}, count={self.participant_count})>"
