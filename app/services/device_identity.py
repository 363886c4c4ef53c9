# app/services/device_identity.py
"""
Device identity resolution.

Turns raw connection metadata into a stable identity key for admission.
A client-supplied device id wins; otherwise the user agent and IP address are
fingerprinted with a keyed hash so the key cannot be rebuilt from public
information. When neither is usable the request gets a random, single-use key
and is treated as a brand new device.
"""

import hashlib
import hmac
import re
import secrets
from dataclasses import dataclass
from typing import Optional

from fastapi import Request

from app.constants.device_session import DeviceType, IdentitySource

_TABLET_PATTERN = re.compile(r"ipad|tablet|kindle|silk|playbook|(android(?!.*mobile))", re.IGNORECASE)
_MOBILE_PATTERN = re.compile(r"mobi|iphone|ipod|android|blackberry|opera mini|windows phone", re.IGNORECASE)
_DESKTOP_PATTERN = re.compile(r"windows nt|macintosh|x11|linux|cros", re.IGNORECASE)


@dataclass(frozen=True)
class DeviceIdentity:
    key: str
    source: str
    device_type: str = DeviceType.UNKNOWN
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @property
    def is_ephemeral(self) -> bool:
        return self.source == IdentitySource.EPHEMERAL


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _keyed_digest(secret: str, purpose: str, material: str) -> str:
    return hmac.new(
        secret.encode("utf-8"),
        f"{purpose}:{material}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def classify_device_type(user_agent: Optional[str]) -> str:
    """Rough device class from the user agent, for display in device lists."""
    if not user_agent:
        return DeviceType.UNKNOWN
    if _TABLET_PATTERN.search(user_agent):
        return DeviceType.TABLET
    if _MOBILE_PATTERN.search(user_agent):
        return DeviceType.MOBILE
    if _DESKTOP_PATTERN.search(user_agent):
        return DeviceType.DESKTOP
    return DeviceType.UNKNOWN


def resolve_identity(
    *,
    device_id: Optional[str],
    user_agent: Optional[str],
    ip_address: Optional[str],
    secret: str,
) -> DeviceIdentity:
    """
    Derive the identity key for a connecting device. Never raises.

    Args:
        device_id: Stable id the client stored (X-Device-Id header), if any
        user_agent: Browser/app user agent string
        ip_address: Source address of the request
        secret: Server-side key for the HMAC

    Returns:
        DeviceIdentity whose key is prefixed by its source:
        dev_ (client id), fp_ (fingerprint) or eph_ (random fallback)
    """
    device_id = _clean(device_id)
    user_agent = _clean(user_agent)
    ip_address = _clean(ip_address)
    device_type = classify_device_type(user_agent)

    if device_id:
        return DeviceIdentity(
            key=f"dev_{_keyed_digest(secret, 'device', device_id)}",
            source=IdentitySource.CLIENT,
            device_type=device_type,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    if user_agent and ip_address:
        return DeviceIdentity(
            key=f"fp_{_keyed_digest(secret, 'fingerprint', f'{user_agent}|{ip_address}')}",
            source=IdentitySource.FINGERPRINT,
            device_type=device_type,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    return DeviceIdentity(
        key=f"eph_{secrets.token_hex(16)}",
        source=IdentitySource.EPHEMERAL,
        device_type=device_type,
        ip_address=ip_address,
        user_agent=user_agent,
    )


def client_ip(request: Request) -> Optional[str]:
    """First hop of X-Forwarded-For when behind a proxy, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first
    return request.client.host if request.client else None


def identity_from_request(request: Request, secret: str) -> DeviceIdentity:
    return resolve_identity(
        device_id=request.headers.get("x-device-id"),
        user_agent=request.headers.get("user-agent"),
        ip_address=client_ip(request),
        secret=secret,
    )
