# app/constants/device_session.py
"""
Constants for device session bookkeeping.

Provides type-safe constants to replace hardcoded strings throughout the codebase.
"""


class TerminationReason:
    """Why a device session stopped occupying its class login's capacity."""
    NONE = "none"
    LIMIT_EXCEEDED_EVICTED = "limit-exceeded-evicted"
    STALE_EXPIRED = "stale-expired"
    MANUAL = "manual"
    CREDENTIAL_DEACTIVATED = "credential-deactivated"

    @classmethod
    def all_values(cls) -> list[str]:
        """Return all valid reason values."""
        return [
            cls.NONE,
            cls.LIMIT_EXCEEDED_EVICTED,
            cls.STALE_EXPIRED,
            cls.MANUAL,
            cls.CREDENTIAL_DEACTIVATED,
        ]

    @classmethod
    def is_valid(cls, reason: str) -> bool:
        """Check if a reason value is valid."""
        return reason in cls.all_values()


class IdentitySource:
    """Where a device identity key was derived from."""
    CLIENT = "client"
    FINGERPRINT = "fingerprint"
    EPHEMERAL = "ephemeral"


class DeviceType:
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    UNKNOWN = "unknown"
