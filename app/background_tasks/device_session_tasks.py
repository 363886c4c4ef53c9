# app/background_tasks/device_session_tasks.py
"""
Background tasks for device session housekeeping.
"""
import logging

from app.core.errors import StoreUnavailableError
from app.services.session_lifecycle import SessionLifecycleManager

logger = logging.getLogger(__name__)


def sweep_stale_device_sessions(lifecycle: SessionLifecycleManager) -> int:
    """
    Background task: expire device sessions idle longer than the TTL so their
    slots free up even if nobody tries to join the class login.

    Returns: Number of device sessions expired
    """
    try:
        count = lifecycle.sweep_stale()

        if count > 0:
            logger.info(f"Stale sweep expired {count} device sessions")

        return count

    except StoreUnavailableError as e:
        logger.error(f"Error in sweep_stale_device_sessions task: {str(e)}")
        return 0


def cleanup_old_device_sessions(lifecycle: SessionLifecycleManager) -> int:
    """
    Background task: delete ended device sessions past the retention window.

    Returns: Number of device sessions deleted
    """
    try:
        return lifecycle.cleanup_retention()

    except StoreUnavailableError as e:
        logger.error(f"Error in cleanup_old_device_sessions task: {str(e)}")
        return 0
