# app/services/notifications.py
"""
Eviction notifier.

Publishes device events to Redis for the real-time service (which pushes a
"signed out" message to the evicted device) and optionally emails the
supervisor. Delivery is best-effort: failures are logged and never surface to
the admission caller.
"""

import json
import logging
from typing import Optional

from redis import Redis
from redis.exceptions import RedisError

from app.core.config import Settings
from app.core.email import send_device_eviction_alert
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


class EvictionNotifier:
    def __init__(self, redis_client: Optional[Redis], settings: Settings):
        self.redis = redis_client
        self.settings = settings

    def device_evicted(
        self,
        *,
        credential_id: str,
        credential_label: Optional[str],
        evicted_device_session_id: str,
        admitted_device_session_id: str,
        capacity: int,
    ) -> None:
        payload = {
            "type": "DEVICE_EVICTED",
            "credentialId": credential_id,
            "evictedDeviceSessionId": evicted_device_session_id,
            "admittedDeviceSessionId": admitted_device_session_id,
            "capacity": capacity,
            "occurredAt": utcnow().isoformat(),
        }
        self._publish(payload)

        if self.settings.RESEND_API_KEY and self.settings.SUPERVISOR_EMAIL:
            try:
                send_device_eviction_alert(
                    self.settings,
                    credential_id=credential_id,
                    credential_label=credential_label,
                    evicted_device_session_id=evicted_device_session_id,
                    admitted_device_session_id=admitted_device_session_id,
                    capacity=capacity,
                )
            except Exception as e:
                logger.warning(
                    f"Failed to send eviction alert for credential {credential_id}: {e}",
                    exc_info=True,
                )

    def session_terminated(self, *, credential_id: str, device_session_id: str, reason: str) -> None:
        self._publish({
            "type": "DEVICE_SESSION_ENDED",
            "credentialId": credential_id,
            "deviceSessionId": device_session_id,
            "reason": reason,
            "occurredAt": utcnow().isoformat(),
        })

    def _publish(self, payload: dict) -> None:
        if self.redis is None:
            return
        try:
            self.redis.publish(self.settings.DEVICE_EVENTS_CHANNEL, json.dumps(payload))
            logger.info(
                f"Published {payload['type']} for credential {payload['credentialId']}"
            )
        except RedisError as e:
            logger.warning(
                f"Failed to publish {payload['type']} to {self.settings.DEVICE_EVENTS_CHANNEL}: {e}",
                extra={"credential_id": payload["credentialId"]},
            )
