# tests/conftest.py

import pytest
from unittest.mock import MagicMock

from app.core.config import Settings
from app.db.base_class import Base
from app.db.registry import SessionRegistry
from app.db.session import create_db_engine, create_session_factory
from app.services.admission_controller import AdmissionController
from app.services.credential_service import CredentialService
from app.services.live_session_service import LiveSessionService
from app.services.notifications import EvictionNotifier
from app.services.session_lifecycle import SessionLifecycleManager
from app import models  # noqa: F401

TEST_FINGERPRINT_SECRET = "test-fingerprint-secret"


@pytest.fixture
def test_settings():
    return Settings(
        ENV="local",
        JWT_SECRET="test-jwt-secret",
        DEVICE_FINGERPRINT_SECRET=TEST_FINGERPRINT_SECRET,
        SCHEDULER_ENABLED=False,
        RATE_LIMIT_ENABLED=False,
        RESEND_API_KEY=None,
        SUPERVISOR_EMAIL=None,
    )


# --- Registry backed by a throwaway SQLite file ---
@pytest.fixture
def engine(tmp_path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'class_access_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def registry(engine):
    return SessionRegistry(create_session_factory(engine))


# --- Collaborators ---
@pytest.fixture
def mock_redis():
    return MagicMock()


@pytest.fixture
def notifier(mock_redis, test_settings):
    return EvictionNotifier(mock_redis, test_settings)


# --- Services ---
@pytest.fixture
def lifecycle(registry, test_settings, notifier):
    return SessionLifecycleManager(registry, test_settings, notifier)


@pytest.fixture
def admission(registry, notifier, test_settings):
    return AdmissionController(registry, notifier, test_settings)


@pytest.fixture
def credential_service(registry, lifecycle, test_settings):
    return CredentialService(registry, lifecycle, test_settings)


@pytest.fixture
def live_session_service(registry, admission, test_settings):
    return LiveSessionService(registry, admission, test_settings)


@pytest.fixture
def make_credential(credential_service):
    def _make(capacity=2, **kwargs):
        return credential_service.create(capacity=capacity, **kwargs)

    return _make
