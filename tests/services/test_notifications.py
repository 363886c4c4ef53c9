import json
from unittest.mock import MagicMock, patch

from redis.exceptions import ConnectionError as RedisConnectionError

from app.services.notifications import EvictionNotifier


def _evict(notifier):
    notifier.device_evicted(
        credential_id="cred_1",
        credential_label="Grade 7",
        evicted_device_session_id="dev_old",
        admitted_device_session_id="dev_new",
        capacity=2,
    )


def test_eviction_is_published_on_the_device_channel(test_settings):
    redis_client = MagicMock()
    notifier = EvictionNotifier(redis_client, test_settings)

    _evict(notifier)

    channel, raw = redis_client.publish.call_args[0]
    payload = json.loads(raw)
    assert channel == test_settings.DEVICE_EVENTS_CHANNEL
    assert payload["type"] == "DEVICE_EVICTED"
    assert payload["evictedDeviceSessionId"] == "dev_old"
    assert payload["admittedDeviceSessionId"] == "dev_new"


def test_publish_failure_is_swallowed(test_settings):
    redis_client = MagicMock()
    redis_client.publish.side_effect = RedisConnectionError("down")
    notifier = EvictionNotifier(redis_client, test_settings)

    _evict(notifier)


def test_no_redis_client_is_a_no_op(test_settings):
    _evict(EvictionNotifier(None, test_settings))


@patch("app.services.notifications.send_device_eviction_alert")
def test_supervisor_email_only_when_configured(mock_send, test_settings):
    _evict(EvictionNotifier(MagicMock(), test_settings))
    mock_send.assert_not_called()

    configured = test_settings.model_copy(
        update={"RESEND_API_KEY": "re_test", "SUPERVISOR_EMAIL": "office@school.test"}
    )
    _evict(EvictionNotifier(MagicMock(), configured))
    mock_send.assert_called_once()
    assert mock_send.call_args.kwargs["evicted_device_session_id"] == "dev_old"


@patch("app.services.notifications.send_device_eviction_alert")
def test_email_failure_is_swallowed(mock_send, test_settings):
    mock_send.side_effect = Exception("Resend down")
    configured = test_settings.model_copy(
        update={"RESEND_API_KEY": "re_test", "SUPERVISOR_EMAIL": "office@school.test"}
    )

    _evict(EvictionNotifier(MagicMock(), configured))


@patch("app.core.email.resend")
def test_eviction_alert_email(mock_resend, test_settings):
    from app.core.email import send_device_eviction_alert

    configured = test_settings.model_copy(
        update={"RESEND_API_KEY": "re_test", "SUPERVISOR_EMAIL": "office@school.test"}
    )
    send_device_eviction_alert(
        configured,
        credential_id="cred_1",
        credential_label=None,
        evicted_device_session_id="dev_old",
        admitted_device_session_id="dev_new",
        capacity=2,
    )

    params = mock_resend.Emails.send.call_args[0][0]
    assert params["to"] == ["office@school.test"]
    assert "cred_1" in params["subject"]
    assert mock_resend.api_key == "re_test"
