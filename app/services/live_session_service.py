# app/services/live_session_service.py
"""
Live Session state machine.

    scheduled -> starting -> live <-> full

Any open status may end. scheduled, starting and live may be cancelled.

Every mutation locks the live session row first. Attendee joins then enter
the class login's critical section through admission, in that order, so
the device registry and the roster commit together.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import crud
from app.constants.live_session import ControlActionType, LiveSessionStatus, ParticipantRole
from app.core.config import Settings
from app.core.errors import (
    CapacityExceededError,
    ConflictError,
    ForbiddenError,
    InvalidRequestError,
    NotFoundError,
)
from app.core.roles import Capability, Role, require_capability
from app.db.registry import SessionRegistry
from app.models.control_action import ControlAction
from app.models.live_session import LiveSession
from app.models.participant import Participant
from app.services.admission_controller import (
    AdmissionController,
    AdmissionDecision,
    credential_error,
)
from app.services.device_identity import DeviceIdentity
from app.utils.clock import to_naive_utc, utcnow

logger = logging.getLogger(__name__)


@dataclass
class JoinResult:
    participant: Participant
    live_session: LiveSession
    decision: Optional[AdmissionDecision] = None
    already_joined: bool = False


class LiveSessionService:
    def __init__(
        self,
        registry: SessionRegistry,
        admission: AdmissionController,
        settings: Settings,
    ):
        self.registry = registry
        self.admission = admission
        self.headroom = settings.LIVE_SESSION_HEADROOM_MULTIPLIER

    # --- helpers ---

    def _lock(self, db: Session, live_session_id: str) -> LiveSession:
        live = self.registry.lock_live_session(db, live_session_id)
        if live is None:
            raise NotFoundError("Live session", live_session_id)
        return live

    @staticmethod
    def _require_presenter(live: LiveSession, user_id: str) -> None:
        if user_id != live.presenter_id:
            raise ForbiddenError(
                "Only the presenter of this live session may do that",
                details={"live_session_id": live.id},
            )

    @staticmethod
    def _require_open(live: LiveSession) -> None:
        if LiveSessionStatus.is_terminal(live.status):
            raise ConflictError(
                f"Live session is {live.status}",
                details={"live_session_id": live.id, "status": live.status},
            )

    @staticmethod
    def _transition(live: LiveSession, target: str) -> None:
        if not LiveSessionStatus.can_transition(live.status, target):
            raise ConflictError(
                f"Cannot move live session from {live.status} to {target}",
                details={"live_session_id": live.id, "status": live.status},
            )
        logger.info(f"Live session {live.id}: {live.status} -> {target}")
        live.status = target

    def _release_slot(self, live: LiveSession) -> None:
        live.participant_count = max(live.participant_count - 1, 0)
        if live.status == LiveSessionStatus.FULL and live.participant_count < live.max_participants:
            self._transition(live, LiveSessionStatus.LIVE)

    def _close(self, db: Session, live: LiveSession, target: str, now: datetime) -> None:
        self._transition(live, target)
        live.ended_at = now
        reference = live.started_at or live.scheduled_start
        live.duration_seconds = max(int((now - reference).total_seconds()), 0)
        closed = crud.participant.close_all_open(db, live_session_id=live.id, when=now)
        live.participant_count = 0
        logger.info(f"Live session {live.id} {target}; closed {closed} open participant record(s)")

    # --- lifecycle ---

    def start(
        self,
        *,
        credential_id: str,
        presenter_id: str,
        title: str,
        scheduled_start: Optional[datetime] = None,
        settings: Optional[dict] = None,
        now: Optional[datetime] = None,
    ) -> LiveSession:
        """
        Create a scheduled live session on a class login.

        Raises:
            NotFoundError / CredentialInactiveError / CredentialExpiredError:
                class login unusable
            ConflictError: the class login already has an open live session
                (details carry its id)
        """
        now = to_naive_utc(now) or utcnow()
        scheduled_start = to_naive_utc(scheduled_start) or now

        try:
            with self.registry.transaction() as db:
                credential = self.registry.lock_credential(db, credential_id)
                error = credential_error(credential, credential_id, now)
                if error is not None:
                    raise error

                existing = crud.live_session.get_open_for_credential(db, credential_id=credential_id)
                if existing is not None:
                    raise ConflictError(
                        "This class login already has a live session in progress",
                        details={"live_session_id": existing.id, "status": existing.status},
                    )

                live = crud.live_session.create(
                    db,
                    credential_id=credential_id,
                    presenter_id=presenter_id,
                    title=title,
                    scheduled_start=scheduled_start,
                    max_participants=credential.capacity * self.headroom,
                    settings=settings,
                )
        except IntegrityError as e:
            raise ConflictError(
                "This class login already has a live session in progress",
                details={"credential_id": credential_id},
            ) from e

        logger.info(f"Live session {live.id} scheduled on credential {credential_id} by {presenter_id}")
        return live

    def go_live(self, live_session_id: str, presenter_id: str, now: Optional[datetime] = None) -> LiveSession:
        now = to_naive_utc(now) or utcnow()

        with self.registry.transaction() as db:
            live = self._lock(db, live_session_id)
            self._require_presenter(live, presenter_id)
            self._require_open(live)

            if live.status in (LiveSessionStatus.LIVE, LiveSessionStatus.FULL):
                return live
            if live.status == LiveSessionStatus.SCHEDULED:
                self._transition(live, LiveSessionStatus.STARTING)
            self._transition(live, LiveSessionStatus.LIVE)
            live.started_at = live.started_at or now
            if live.participant_count >= live.max_participants:
                self._transition(live, LiveSessionStatus.FULL)

        return live

    def join(
        self,
        live_session_id: str,
        role: Role,
        *,
        user_id: Optional[str] = None,
        identity: Optional[DeviceIdentity] = None,
        display_name: Optional[str] = None,
        session_token: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> JoinResult:
        """
        Add a presenter or attendee device to the roster.

        Attendees go through admission against the class login in the same
        transaction. Joining twice returns the open record unchanged.
        """
        now = to_naive_utc(now) or utcnow()
        if role == Role.PRESENTER:
            require_capability(role, Capability.JOIN_AS_PRESENTER)
        else:
            require_capability(role, Capability.JOIN_AS_ATTENDEE)
            if identity is None:
                raise InvalidRequestError("Attendee join requires a device identity", field="identity")

        decision = None
        with self.registry.transaction() as db:
            live = self._lock(db, live_session_id)
            self._require_open(live)

            if role == Role.PRESENTER:
                self._require_presenter(live, user_id)
                participant_id = user_id
            else:
                participant_id = identity.key

            existing = crud.participant.get_open(
                db, live_session_id=live.id, participant_id=participant_id
            )
            if existing is not None:
                return JoinResult(participant=existing, live_session=live, already_joined=True)

            device_session_id = None
            if role == Role.PRESENTER:
                if live.status == LiveSessionStatus.SCHEDULED:
                    self._transition(live, LiveSessionStatus.STARTING)
            else:
                if live.participant_count >= live.max_participants:
                    raise CapacityExceededError(
                        "Live session is full",
                        details={
                            "live_session_id": live.id,
                            "max_participants": live.max_participants,
                        },
                    )
                decision = self.admission.admit_within(
                    db, live.credential_id, identity, session_token=session_token, now=now
                )
                decision.raise_for_rejection()
                device_session_id = decision.device_session_id

            participant = crud.participant.create(
                db,
                live_session_id=live.id,
                participant_id=participant_id,
                role=ParticipantRole.PRESENTER if role == Role.PRESENTER else ParticipantRole.ATTENDEE,
                now=now,
                display_name=display_name,
                device_session_id=device_session_id,
            )
            live.participant_count += 1
            if live.status == LiveSessionStatus.LIVE and live.participant_count >= live.max_participants:
                self._transition(live, LiveSessionStatus.FULL)

        if decision is not None:
            self.admission.notify(decision)
        logger.info(
            f"{role.value} {participant_id} joined live session {live.id} "
            f"({live.participant_count}/{live.max_participants})"
        )
        return JoinResult(participant=participant, live_session=live, decision=decision)

    def leave(
        self,
        live_session_id: str,
        participant_id: str,
        now: Optional[datetime] = None,
    ) -> LiveSession:
        """Stamp the participant's leave time. Leaving twice is a no-op."""
        now = to_naive_utc(now) or utcnow()

        with self.registry.transaction() as db:
            live = self._lock(db, live_session_id)
            record = crud.participant.get_open(
                db, live_session_id=live.id, participant_id=participant_id
            )
            if record is None:
                return live
            record.left_at = now
            self._release_slot(live)

        return live

    def end(self, live_session_id: str, presenter_id: str, now: Optional[datetime] = None) -> LiveSession:
        now = to_naive_utc(now) or utcnow()

        with self.registry.transaction() as db:
            live = self._lock(db, live_session_id)
            self._require_presenter(live, presenter_id)
            self._require_open(live)
            self._close(db, live, LiveSessionStatus.ENDED, now)

        return live

    def cancel(self, live_session_id: str, presenter_id: str, now: Optional[datetime] = None) -> LiveSession:
        now = to_naive_utc(now) or utcnow()

        with self.registry.transaction() as db:
            live = self._lock(db, live_session_id)
            self._require_presenter(live, presenter_id)
            self._require_open(live)
            self._close(db, live, LiveSessionStatus.CANCELLED, now)

        return live

    def control(
        self,
        live_session_id: str,
        presenter_id: str,
        target_participant_id: str,
        action: str,
        now: Optional[datetime] = None,
    ) -> ControlAction:
        """
        Apply a presenter control to an attendee and record it.

        Raises:
            InvalidRequestError: Unknown action, or the presenter targeting themselves
            ForbiddenError: Caller is not the presenter
            ConflictError: Live session already ended or cancelled
            NotFoundError: Target is not currently in the session
        """
        now = to_naive_utc(now) or utcnow()
        if not ControlActionType.is_valid(action):
            raise InvalidRequestError(
                f"Unknown action '{action}'. Must be one of: {', '.join(ControlActionType.all_values())}",
                field="action",
            )

        with self.registry.transaction() as db:
            live = self._lock(db, live_session_id)
            self._require_presenter(live, presenter_id)
            self._require_open(live)
            if target_participant_id == live.presenter_id:
                raise InvalidRequestError("The presenter cannot target themselves", field="target")

            target = crud.participant.get_open(
                db, live_session_id=live.id, participant_id=target_participant_id
            )
            if target is None:
                raise NotFoundError("Participant", target_participant_id)

            if action == ControlActionType.MUTE:
                target.is_muted = True
            elif action == ControlActionType.UNMUTE:
                target.is_muted = False
            elif action == ControlActionType.VIDEO_ON:
                target.video_enabled = True
            elif action == ControlActionType.VIDEO_OFF:
                target.video_enabled = False
            elif action == ControlActionType.REMOVE:
                target.left_at = now
                self._release_slot(live)

            record = crud.participant.add_control_action(
                db,
                live_session_id=live.id,
                actor_id=presenter_id,
                target_participant_id=target_participant_id,
                action=action,
                now=now,
            )

        logger.info(f"Presenter {presenter_id} applied {action} to {target_participant_id} in {live_session_id}")
        return record

    # --- queries ---

    def get(self, live_session_id: str) -> LiveSession:
        with self.registry.read() as db:
            live = crud.live_session.get(db, live_session_id)
            if live is None:
                raise NotFoundError("Live session", live_session_id)
            return live

    def roster(self, live_session_id: str) -> List[Participant]:
        with self.registry.read() as db:
            if crud.live_session.get(db, live_session_id) is None:
                raise NotFoundError("Live session", live_session_id)
            return crud.participant.list_open(db, live_session_id=live_session_id)

    def control_log(self, live_session_id: str) -> List[ControlAction]:
        with self.registry.read() as db:
            if crud.live_session.get(db, live_session_id) is None:
                raise NotFoundError("Live session", live_session_id)
            return crud.participant.list_control_actions(db, live_session_id=live_session_id)
