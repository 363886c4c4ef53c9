# app/services/admission_controller.py
"""
Admission Controller - decides whether a device may occupy a slot under a
class login.

All decisions for one class login are serialized through the registry's
per-credential critical section:

    1. Reclaim active rows that went stale (idle past the TTL)
    2. Load the active set, most recently active first
    3. Same identity already active -> refresh it (reused)
    4. Room left -> create a new device session (admit)
    5. Full -> sign out the least recently active device, then create (evicted)

Everything happens in one transaction. If the session store is briefly
unavailable the fail-open policy admits the device without bookkeeping.
"""

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from sqlalchemy.orm import Session

from app import crud
from app.constants.device_session import TerminationReason
from app.core.config import Settings
from app.core.errors import (
    AppError,
    CapacityExceededError,
    CredentialExpiredError,
    CredentialInactiveError,
    NotFoundError,
    StoreUnavailableError,
)
from app.db.registry import SessionRegistry
from app.models.credential import Credential
from app.models.device_session import DeviceSession
from app.services.device_identity import DeviceIdentity
from app.services.notifications import EvictionNotifier
from app.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)

FAIL_OPEN_EVENT = "admission.fail_open"


class AdmissionOutcome(str, Enum):
    ADMIT = "admit"
    REUSED = "reused"
    EVICTED = "evicted"
    REJECTED = "rejected"


class RejectionReason:
    CREDENTIAL_UNAVAILABLE = "credential-unavailable"
    CAPACITY_EXCEEDED = "capacity-exceeded"


@dataclass
class AdmissionDecision:
    outcome: AdmissionOutcome
    credential_id: str
    session_token: Optional[str] = None
    device_session_id: Optional[str] = None
    evicted_session_ids: List[str] = field(default_factory=list)
    reason: Optional[str] = None
    error: Optional[AppError] = field(default=None, repr=False)
    degraded: bool = False
    active_count: Optional[int] = None
    capacity: Optional[int] = None
    credential_label: Optional[str] = field(default=None, repr=False)

    @property
    def admitted(self) -> bool:
        return self.outcome != AdmissionOutcome.REJECTED

    @property
    def evicted_session_id(self) -> Optional[str]:
        return self.evicted_session_ids[0] if self.evicted_session_ids else None

    @property
    def error_category(self) -> Optional[str]:
        return self.error.category if self.error else None

    def raise_for_rejection(self) -> None:
        """Re-raise the precise error behind a rejected decision."""
        if self.admitted:
            return
        if self.error is not None:
            raise self.error
        raise CapacityExceededError(
            "Class login has no device capacity",
            details={"credential_id": self.credential_id, "reason": self.reason},
        )


class FailOpenPolicy:
    """
    What to do when the session store cannot be reached during admission.

    Enabled (the default): admit the device without recording it, flagged
    degraded, so a short database hiccup never locks a class out of a live
    lesson. Disabled: the StoreUnavailableError propagates to the caller.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled

    def apply(
        self,
        error: StoreUnavailableError,
        *,
        credential_id: str,
        identity: DeviceIdentity,
    ) -> AdmissionDecision:
        if not self.enabled:
            logger.error(
                f"Admission for credential {credential_id} failed: session store unavailable",
                extra={"credential_id": credential_id, "identity_source": identity.source},
            )
            raise error

        logger.error(
            f"{FAIL_OPEN_EVENT}: admitting device on credential {credential_id} without bookkeeping",
            exc_info=error,
            extra={
                "event": FAIL_OPEN_EVENT,
                "credential_id": credential_id,
                "identity_key": identity.key,
                "identity_source": identity.source,
                "ip_address": identity.ip_address,
                "error_details": error.details,
            },
        )
        return AdmissionDecision(
            outcome=AdmissionOutcome.ADMIT,
            credential_id=credential_id,
            session_token=new_session_token(),
            reason="store-unavailable",
            degraded=True,
        )


def new_session_token() -> str:
    return secrets.token_hex(32)


def credential_error(
    credential: Optional[Credential], credential_id: str, now: datetime
) -> Optional[AppError]:
    """The error that makes a class login unusable right now, or None."""
    if credential is None:
        return NotFoundError("Credential", credential_id)
    if not credential.is_active:
        return CredentialInactiveError(credential_id)
    if credential.is_expired(now):
        return CredentialExpiredError(credential_id)
    return None


class AdmissionController:
    def __init__(
        self,
        registry: SessionRegistry,
        notifier: Optional[EvictionNotifier],
        settings: Settings,
        fail_open: Optional[FailOpenPolicy] = None,
    ):
        self.registry = registry
        self.notifier = notifier
        self.ttl = timedelta(hours=settings.DEVICE_SESSION_TTL_HOURS)
        self.fail_open = fail_open or FailOpenPolicy(enabled=settings.ADMISSION_FAIL_OPEN)

    def try_admit(
        self,
        credential_id: str,
        identity: DeviceIdentity,
        session_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AdmissionDecision:
        """
        Admit, reuse, evict-and-admit, or reject one device for a class login.

        Rejections come back as decisions rather than exceptions; the error
        that caused them is attached for callers that need to surface it.
        """
        now = to_naive_utc(now) or utcnow()
        try:
            with self.registry.transaction() as db:
                decision = self._decide(db, credential_id, identity, session_token, now)
        except StoreUnavailableError as e:
            return self.fail_open.apply(
                e,
                credential_id=credential_id,
                identity=identity,
            )

        self.notify(decision)
        return decision

    def admit_within(
        self,
        db: Session,
        credential_id: str,
        identity: DeviceIdentity,
        session_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> AdmissionDecision:
        """
        Run admission inside the caller's registry transaction so the caller's
        own writes commit together with it. Never fails open; the caller calls
        notify() once its transaction has committed.
        """
        now = to_naive_utc(now) or utcnow()
        return self._decide(db, credential_id, identity, session_token, now)

    def notify(self, decision: AdmissionDecision) -> None:
        if decision.outcome != AdmissionOutcome.EVICTED or self.notifier is None:
            return
        for evicted_id in decision.evicted_session_ids:
            self.notifier.device_evicted(
                credential_id=decision.credential_id,
                credential_label=decision.credential_label,
                evicted_device_session_id=evicted_id,
                admitted_device_session_id=decision.device_session_id,
                capacity=decision.capacity,
            )

    def _decide(
        self,
        db: Session,
        credential_id: str,
        identity: DeviceIdentity,
        session_token: Optional[str],
        now: datetime,
    ) -> AdmissionDecision:
        credential = self.registry.lock_credential(db, credential_id)

        error = credential_error(credential, credential_id, now)
        if error is not None:
            logger.info(
                f"Admission rejected for credential {credential_id}: {error.category}",
                extra={"credential_id": credential_id, "reason": RejectionReason.CREDENTIAL_UNAVAILABLE},
            )
            return AdmissionDecision(
                outcome=AdmissionOutcome.REJECTED,
                credential_id=credential_id,
                reason=RejectionReason.CREDENTIAL_UNAVAILABLE,
                error=error,
            )

        stale_before = now - self.ttl
        reclaimed = crud.device_session.expire_stale(
            db, credential_id=credential_id, stale_before=stale_before, now=now
        )
        if reclaimed:
            logger.info(f"Reclaimed {reclaimed} stale device session(s) on credential {credential_id}")

        active = crud.device_session.get_active_set(
            db, credential_id=credential_id, stale_before=stale_before
        )
        existing = next((s for s in active if s.identity_key == identity.key), None)
        if existing is not None:
            # A supplied token is only honoured when it already belongs to this row
            if not session_token or session_token != existing.session_token:
                existing.session_token = new_session_token()
            existing.last_activity_at = now
            if identity.ip_address:
                existing.ip_address = identity.ip_address
            if identity.user_agent:
                existing.user_agent = identity.user_agent
            return self._finish(db, credential, AdmissionOutcome.REUSED, existing, [], stale_before, now)

        if credential.capacity < 1:
            return AdmissionDecision(
                outcome=AdmissionOutcome.REJECTED,
                credential_id=credential_id,
                reason=RejectionReason.CAPACITY_EXCEEDED,
                active_count=len(active),
                capacity=credential.capacity,
            )

        evicted = self._evict_to_fit(active, credential.capacity - 1, now)

        device = crud.device_session.create(
            db,
            credential_id=credential_id,
            identity_key=identity.key,
            identity_source=identity.source,
            session_token=new_session_token(),
            now=now,
            ip_address=identity.ip_address,
            user_agent=identity.user_agent,
            device_type=identity.device_type,
        )
        outcome = AdmissionOutcome.EVICTED if evicted else AdmissionOutcome.ADMIT
        return self._finish(db, credential, outcome, device, evicted, stale_before, now)

    @staticmethod
    def _evict_to_fit(active: List[DeviceSession], keep: int, now: datetime) -> List[str]:
        """Sign out least recently active devices (ties: oldest first) until `keep` remain."""
        if len(active) <= keep:
            return []
        victims = sorted(active, key=lambda s: (s.last_activity_at, s.created_at))[: len(active) - keep]
        for victim in victims:
            victim.terminate(TerminationReason.LIMIT_EXCEEDED_EVICTED, now)
        return [victim.id for victim in victims]

    def _finish(
        self,
        db: Session,
        credential: Credential,
        outcome: AdmissionOutcome,
        device: DeviceSession,
        evicted: List[str],
        stale_before: datetime,
        now: datetime,
    ) -> AdmissionDecision:
        count = crud.credential.refresh_active_count(db, credential=credential, stale_before=stale_before)
        credential.last_used_at = now

        log_extra = {
            "credential_id": credential.id,
            "device_session_id": device.id,
            "outcome": outcome.value,
            "active_count": count,
            "capacity": credential.capacity,
        }
        if evicted:
            logger.info(
                f"Device limit reached on credential {credential.id}; evicted {', '.join(evicted)}",
                extra=log_extra,
            )
        else:
            logger.info(f"Admission {outcome.value} on credential {credential.id}", extra=log_extra)

        return AdmissionDecision(
            outcome=outcome,
            credential_id=credential.id,
            session_token=device.session_token,
            device_session_id=device.id,
            evicted_session_ids=evicted,
            active_count=count,
            capacity=credential.capacity,
            credential_label=credential.label,
        )

