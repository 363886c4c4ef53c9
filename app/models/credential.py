# app/models/credential.py
"""
Credential model - a shared class login whose capacity bounds how many
devices may be active under it at once.
"""
import uuid

from sqlalchemy import Column, String, DateTime, Integer, Boolean, CheckConstraint, text

from app.db.base_class import Base
from app.utils.clock import utcnow


class Credential(Base):
    __tablename__ = "credentials"

    id = Column(
        String, primary_key=True, default=lambda: f"cred_{uuid.uuid4().hex[:12]}"
    )
    label = Column(String, nullable=True, comment="Human-readable name, e.g. the class name")
    capacity = Column(Integer, nullable=False, server_default="1")
    is_active = Column(Boolean, nullable=False, default=True, server_default=text("true"))
    expires_at = Column(DateTime, nullable=True, comment="Null means the login never expires")
    last_used_at = Column(DateTime, nullable=True)

    # Cached count of active, non-stale device sessions. Recomputed by the
    # admission controller and lifecycle manager after every change.
    active_device_count = Column(Integer, nullable=False, default=0, server_default="0")

    created_by = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)
    deactivated_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("capacity >= 1 AND capacity <= 50", name="check_credential_capacity_range"),
        CheckConstraint("active_device_count >= 0", name="check_active_device_count_positive"),
    )

    def __repr__(self):
        return f"<Credential(id={self.id}, capacity={self.capacity}, active={self.is_active})>"

    def is_expired(self, now) -> bool:
        return self.expires_at is not None and now >= self.expires_at
