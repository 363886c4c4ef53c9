# app/models/device_session.py
"""
Device Session Model - one admitted device's claim on a class login's capacity.

Rows flip to inactive on eviction, staleness, manual revoke or class login
deactivation, and are kept for audit until the retention cleanup job runs.
"""
import uuid

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from app.constants.device_session import TerminationReason, DeviceType
from app.db.base_class import Base
from app.utils.clock import utcnow


class DeviceSession(Base):
    __tablename__ = "device_sessions"

    id = Column(
        String, primary_key=True, default=lambda: f"dev_{uuid.uuid4().hex[:12]}"
    )
    credential_id = Column(
        String, ForeignKey("credentials.id"), nullable=False, index=True
    )

    identity_key = Column(String, nullable=False, comment="Derived device identity")
    identity_source = Column(String(20), nullable=False)
    session_token = Column(String, nullable=False, unique=True)

    # Device/context info
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    device_type = Column(String(20), nullable=False, default=DeviceType.UNKNOWN)

    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_activity_at = Column(DateTime, nullable=False, default=utcnow)

    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    ended_at = Column(DateTime, nullable=True)
    termination_reason = Column(
        String(32), nullable=False, default=TerminationReason.NONE, server_default=TerminationReason.NONE
    )

    credential = relationship("Credential", backref="device_sessions")

    __table_args__ = (
        # Active-set lookups during admission
        Index("ix_device_sessions_credential_active", "credential_id", "is_active", "last_activity_at"),
        Index("ix_device_sessions_credential_identity", "credential_id", "identity_key"),
        # Staleness sweep and retention cleanup
        Index("ix_device_sessions_active_last_activity", "is_active", "last_activity_at"),
    )

    def __repr__(self):
        return f"<DeviceSession(id={self.id}, credential={self.credential_id}, active={self.is_active})>"

    def terminate(self, reason: str, when) -> None:
        self.is_active = False
        self.ended_at = when
        self.termination_reason = reason
