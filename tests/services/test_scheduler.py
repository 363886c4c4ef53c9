from unittest.mock import MagicMock

from app.background_tasks.device_session_tasks import (
    cleanup_old_device_sessions,
    sweep_stale_device_sessions,
)
from app.core.errors import StoreUnavailableError
from app.scheduler import create_scheduler, shutdown_scheduler


def test_scheduler_registers_housekeeping_jobs(test_settings):
    lifecycle = MagicMock()

    scheduler = create_scheduler(lifecycle, test_settings)

    job_ids = {job.id for job in scheduler.get_jobs()}
    assert job_ids == {"sweep_stale_device_sessions", "cleanup_old_device_sessions"}
    assert scheduler.running is False
    shutdown_scheduler(scheduler)


def test_sweep_task_returns_count():
    lifecycle = MagicMock()
    lifecycle.sweep_stale.return_value = 4

    assert sweep_stale_device_sessions(lifecycle) == 4


def test_tasks_survive_store_outage():
    lifecycle = MagicMock()
    lifecycle.sweep_stale.side_effect = StoreUnavailableError()
    lifecycle.cleanup_retention.side_effect = StoreUnavailableError()

    assert sweep_stale_device_sessions(lifecycle) == 0
    assert cleanup_old_device_sessions(lifecycle) == 0
