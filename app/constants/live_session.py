# app/constants/live_session.py
"""
Constants for live session status values, participant roles and control actions.
"""


class LiveSessionStatus:
    """Live session status values and the transitions allowed between them."""
    SCHEDULED = "scheduled"
    STARTING = "starting"
    LIVE = "live"
    FULL = "full"
    ENDED = "ended"
    CANCELLED = "cancelled"

    TRANSITIONS = {
        SCHEDULED: {STARTING, CANCELLED, ENDED},
        STARTING: {LIVE, CANCELLED, ENDED},
        LIVE: {FULL, CANCELLED, ENDED},
        FULL: {LIVE, ENDED},
        ENDED: set(),
        CANCELLED: set(),
    }

    @classmethod
    def all_values(cls) -> list[str]:
        return [cls.SCHEDULED, cls.STARTING, cls.LIVE, cls.FULL, cls.ENDED, cls.CANCELLED]

    @classmethod
    def open_values(cls) -> list[str]:
        """Statuses that count toward the one-open-session-per-credential rule."""
        return [cls.SCHEDULED, cls.STARTING, cls.LIVE, cls.FULL]

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        return status in (cls.ENDED, cls.CANCELLED)

    @classmethod
    def can_transition(cls, current: str, target: str) -> bool:
        return target in cls.TRANSITIONS.get(current, set())


class ParticipantRole:
    PRESENTER = "presenter"
    ATTENDEE = "attendee"


class ControlActionType:
    MUTE = "mute"
    UNMUTE = "unmute"
    VIDEO_ON = "video_on"
    VIDEO_OFF = "video_off"
    REMOVE = "remove"

    @classmethod
    def all_values(cls) -> list[str]:
        return [cls.MUTE, cls.UNMUTE, cls.VIDEO_ON, cls.VIDEO_OFF, cls.REMOVE]

    @classmethod
    def is_valid(cls, action: str) -> bool:
        return action in cls.all_values()
