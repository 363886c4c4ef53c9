import pytest
from fastapi.testclient import TestClient

from app.api import deps
from app.core.config import get_settings
from app.core.limiter import limiter
from app.main import app, build_services
from tests.utils.auth import attendee, manager, presenter

DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64)"


@pytest.fixture
def client(registry, mock_redis, test_settings):
    """
    TestClient wired to a SQLite-backed registry with a mocked Redis. The
    lifespan is not run, so nothing touches the configured database.
    """
    build_services(app, test_settings, registry, mock_redis)
    limiter.enabled = False
    app.dependency_overrides[get_settings] = lambda: test_settings

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def login_as():
    def _login(token):
        app.dependency_overrides[deps.get_current_user] = lambda: token

    return _login


@pytest.fixture
def credential_id(client, login_as):
    login_as(manager())
    response = client.post("/api/v1/credentials", json={"label": "Grade 7", "capacity": 2})
    assert response.status_code == 201
    return response.json()["id"]


def _admit(client, credential_id, device_id):
    return client.post(
        f"/api/v1/credentials/{credential_id}/admissions",
        headers={"X-Device-Id": device_id, "User-Agent": DESKTOP_UA},
    )


def test_root(client):
    response = client.get("/")
    assert response.status_code == 200


def test_manager_creates_credential(client, login_as):
    login_as(manager())

    response = client.post("/api/v1/credentials", json={"label": "Grade 8", "capacity": 4})

    assert response.status_code == 201
    data = response.json()
    assert data["capacity"] == 4
    assert data["created_by"] == "manager_1"
    assert data["active_device_count"] == 0


def test_attendee_cannot_create_credential(client, login_as):
    login_as(attendee("cred_any"))

    response = client.post("/api/v1/credentials", json={"capacity": 4})

    assert response.status_code == 403
    assert response.json()["error"]["category"] == "forbidden"


def test_invalid_capacity_is_a_validation_error(client, login_as):
    login_as(manager())

    response = client.post("/api/v1/credentials", json={"capacity": 0})

    assert response.status_code == 400
    assert response.json()["error"]["category"] == "validation_error"


def test_admission_flow_with_eviction(client, login_as, credential_id, mock_redis):
    login_as(attendee(credential_id))

    first = _admit(client, credential_id, "tablet-1")
    second = _admit(client, credential_id, "tablet-2")
    third = _admit(client, credential_id, "tablet-3")

    assert first.status_code == 200
    assert first.json()["outcome"] == "admit"
    assert second.json()["outcome"] == "admit"
    assert third.json()["outcome"] == "evicted"
    assert third.json()["evicted_session_ids"] == [first.json()["device_session_id"]]
    mock_redis.publish.assert_called_once()

    heartbeat = client.post(
        "/api/v1/device-sessions/heartbeat",
        json={"session_token": first.json()["session_token"]},
    )
    assert heartbeat.status_code == 403
    assert heartbeat.json()["error"]["termination_reason"] == "limit-exceeded-evicted"

    count = client.get(f"/api/v1/credentials/{credential_id}/active-devices")
    assert count.json() == {"credential_id": credential_id, "active": 2, "capacity": 2, "available": 0}


def test_same_device_is_reused(client, login_as, credential_id):
    login_as(attendee(credential_id))

    first = _admit(client, credential_id, "tablet-1")
    second = _admit(client, credential_id, "tablet-1")

    assert second.json()["outcome"] == "reused"
    assert second.json()["device_session_id"] == first.json()["device_session_id"]


def test_admission_outside_token_scope_is_forbidden(client, login_as, credential_id):
    login_as(attendee("cred_other"))

    response = _admit(client, credential_id, "tablet-1")

    assert response.status_code == 403


def test_admission_on_unknown_credential(client, login_as):
    login_as(manager())

    response = _admit(client, "cred_missing", "tablet-1")

    assert response.status_code == 404
    assert response.json()["error"]["resource_id"] == "cred_missing"


def test_heartbeat_unknown_token(client, login_as):
    login_as(manager())

    response = client.post("/api/v1/device-sessions/heartbeat", json={"session_token": "nope"})

    assert response.status_code == 404
    assert response.json()["error"]["category"] == "not_found"


def test_end_device_session(client, login_as, credential_id):
    login_as(attendee(credential_id))
    token = _admit(client, credential_id, "tablet-1").json()["session_token"]

    response = client.post("/api/v1/device-sessions/end", json={"session_token": token})

    assert response.status_code == 200
    assert response.json()["termination_reason"] == "manual"


def test_capacity_update_conflict(client, login_as, credential_id):
    login_as(attendee(credential_id))
    _admit(client, credential_id, "tablet-1")
    _admit(client, credential_id, "tablet-2")
    login_as(manager())

    response = client.patch(f"/api/v1/credentials/{credential_id}/capacity", json={"capacity": 1})

    assert response.status_code == 409
    assert response.json()["error"]["active_count"] == 2


def test_manager_device_management(client, login_as, credential_id):
    login_as(attendee(credential_id))
    first = _admit(client, credential_id, "tablet-1").json()
    _admit(client, credential_id, "tablet-2")
    login_as(manager())

    listed = client.get(f"/api/v1/credentials/{credential_id}/devices")
    assert len(listed.json()) == 2

    revoked = client.delete(
        f"/api/v1/credentials/{credential_id}/devices/{first['device_session_id']}"
    )
    assert revoked.json()["is_active"] is False

    reset = client.post(f"/api/v1/credentials/{credential_id}/devices/reset")
    assert reset.json() == {"credential_id": credential_id, "expired": 1}

    deactivated = client.delete(f"/api/v1/credentials/{credential_id}")
    assert deactivated.json()["is_active"] is False


def test_live_session_flow(client, login_as, credential_id):
    login_as(presenter(credential_id))
    created = client.post(
        "/api/v1/live-sessions",
        json={"credential_id": credential_id, "title": "Fractions", "settings": {"chat_enabled": False}},
    )
    assert created.status_code == 201
    live_id = created.json()["id"]
    assert created.json()["max_participants"] == 4
    assert created.json()["chat_enabled"] is False

    conflict = client.post(
        "/api/v1/live-sessions", json={"credential_id": credential_id, "title": "Again"}
    )
    assert conflict.status_code == 409
    assert conflict.json()["error"]["live_session_id"] == live_id

    assert client.post(f"/api/v1/live-sessions/{live_id}/go-live").json()["status"] == "live"

    login_as(attendee(credential_id))
    joined = client.post(
        f"/api/v1/live-sessions/{live_id}/join",
        json={"display_name": "Table 3"},
        headers={"X-Device-Id": "tablet-1", "User-Agent": DESKTOP_UA},
    )
    assert joined.status_code == 200
    assert joined.json()["admission"]["outcome"] == "admit"
    target = joined.json()["participant"]["participant_id"]

    roster = client.get(f"/api/v1/live-sessions/{live_id}/participants")
    assert [p["display_name"] for p in roster.json()] == ["Table 3"]

    login_as(presenter(credential_id))
    control = client.post(
        f"/api/v1/live-sessions/{live_id}/controls",
        json={"target_participant_id": target, "action": "mute"},
    )
    assert control.status_code == 201
    assert [c["action"] for c in client.get(f"/api/v1/live-sessions/{live_id}/controls").json()] == ["mute"]

    ended = client.post(f"/api/v1/live-sessions/{live_id}/end")
    assert ended.json()["status"] == "ended"
    assert ended.json()["participant_count"] == 0


def test_attendee_cannot_end_session(client, login_as, credential_id):
    login_as(presenter(credential_id))
    live_id = client.post(
        "/api/v1/live-sessions", json={"credential_id": credential_id, "title": "Fractions"}
    ).json()["id"]

    login_as(attendee(credential_id))
    response = client.post(f"/api/v1/live-sessions/{live_id}/end")

    assert response.status_code == 403


def test_attendee_leaves_as_their_device(client, login_as, credential_id):
    login_as(presenter(credential_id))
    live_id = client.post(
        "/api/v1/live-sessions", json={"credential_id": credential_id, "title": "Fractions"}
    ).json()["id"]
    login_as(attendee(credential_id))
    headers = {"X-Device-Id": "tablet-1", "User-Agent": DESKTOP_UA}
    client.post(f"/api/v1/live-sessions/{live_id}/join", json={}, headers=headers)

    left = client.post(f"/api/v1/live-sessions/{live_id}/leave", headers=headers)

    assert left.status_code == 200
    assert left.json()["participant_count"] == 0


def test_control_log_is_scoped_to_the_class_login(client, login_as, credential_id):
    login_as(presenter(credential_id))
    live_id = client.post(
        "/api/v1/live-sessions", json={"credential_id": credential_id, "title": "Fractions"}
    ).json()["id"]

    login_as(presenter("cred_other", sub="teacher_2"))
    response = client.get(f"/api/v1/live-sessions/{live_id}/controls")

    assert response.status_code == 403
    assert response.json()["error"]["category"] == "forbidden"

    login_as(presenter(credential_id))
    assert client.get(f"/api/v1/live-sessions/{live_id}/controls").json() == []
