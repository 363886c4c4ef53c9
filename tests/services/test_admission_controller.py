import logging
import threading
from unittest.mock import MagicMock

import pytest

from app import crud
from app.constants.device_session import TerminationReason
from app.core.errors import (
    CredentialExpiredError,
    CredentialInactiveError,
    ErrorCategory,
    LockTimeoutError,
    NotFoundError,
    SessionInactiveError,
    StoreUnavailableError,
)
from app.db.registry import SessionRegistry
from app.db.session import create_session_factory
from app.services.admission_controller import (
    FAIL_OPEN_EVENT,
    AdmissionController,
    AdmissionOutcome,
    FailOpenPolicy,
    RejectionReason,
)
from app.utils.locks import KeyedLock
from tests.utils.device import at, device


def _active_rows(registry, credential_id, now):
    with registry.read() as db:
        return crud.device_session.get_active_set(
            db, credential_id=credential_id, stale_before=now.replace(year=now.year - 1)
        )


def test_first_device_is_admitted(admission, make_credential):
    credential = make_credential(capacity=2)

    decision = admission.try_admit(credential.id, device("laptop-1"), now=at(0))

    assert decision.outcome == AdmissionOutcome.ADMIT
    assert decision.admitted
    assert decision.session_token
    assert decision.device_session_id.startswith("dev_")
    assert decision.active_count == 1
    assert decision.capacity == 2
    assert not decision.degraded


def test_same_device_is_reused_not_duplicated(admission, registry, make_credential):
    credential = make_credential(capacity=2)
    first = admission.try_admit(credential.id, device("laptop-1"), now=at(0))

    second = admission.try_admit(credential.id, device("laptop-1"), now=at(5))

    assert second.outcome == AdmissionOutcome.REUSED
    assert second.device_session_id == first.device_session_id
    assert second.session_token != first.session_token
    assert second.active_count == 1

    rows = _active_rows(registry, credential.id, at(5))
    assert len(rows) == 1
    assert rows[0].last_activity_at == at(5)


def test_reuse_keeps_a_caller_supplied_token(admission, make_credential):
    credential = make_credential(capacity=1)
    first = admission.try_admit(credential.id, device("laptop-1"), now=at(0))

    again = admission.try_admit(
        credential.id, device("laptop-1"), session_token=first.session_token, now=at(1)
    )

    assert again.outcome == AdmissionOutcome.REUSED
    assert again.session_token == first.session_token


def test_evicted_device_readmits_with_its_old_token(admission, lifecycle, make_credential):
    credential = make_credential(capacity=1)
    a = admission.try_admit(credential.id, device("A"), now=at(0))
    admission.try_admit(credential.id, device("B"), now=at(1))
    with pytest.raises(SessionInactiveError):
        lifecycle.heartbeat(a.session_token, now=at(2))

    again = admission.try_admit(credential.id, device("A"), session_token=a.session_token, now=at(3))

    assert again.outcome == AdmissionOutcome.EVICTED
    assert again.session_token != a.session_token
    assert again.device_session_id != a.device_session_id
    assert lifecycle.heartbeat(again.session_token, now=at(4)).id == again.device_session_id


def test_stale_device_readmits_with_its_old_token(admission, make_credential):
    credential = make_credential(capacity=2)
    a = admission.try_admit(credential.id, device("A"), now=at(0))

    again = admission.try_admit(
        credential.id, device("A"), session_token=a.session_token, now=at(hours=25)
    )

    assert again.outcome == AdmissionOutcome.ADMIT
    assert again.session_token != a.session_token


def test_another_devices_token_is_not_taken_over(admission, lifecycle, make_credential):
    credential = make_credential(capacity=3)
    a = admission.try_admit(credential.id, device("A"), now=at(0))

    b = admission.try_admit(credential.id, device("B"), session_token=a.session_token, now=at(1))

    assert b.outcome == AdmissionOutcome.ADMIT
    assert b.session_token != a.session_token
    assert lifecycle.heartbeat(a.session_token, now=at(2)).id == a.device_session_id
    assert lifecycle.heartbeat(b.session_token, now=at(2)).id == b.device_session_id


def test_reuse_ignores_a_token_from_another_row(admission, make_credential):
    credential = make_credential(capacity=3)
    a = admission.try_admit(credential.id, device("A"), now=at(0))
    b = admission.try_admit(credential.id, device("B"), now=at(1))

    again = admission.try_admit(credential.id, device("B"), session_token=a.session_token, now=at(2))

    assert again.outcome == AdmissionOutcome.REUSED
    assert again.device_session_id == b.device_session_id
    assert again.session_token not in (a.session_token, b.session_token)


def test_capacity_two_evicts_least_recently_active(admission, lifecycle, make_credential, mock_redis):
    credential = make_credential(capacity=2)
    a = admission.try_admit(credential.id, device("A"), now=at(0))
    b = admission.try_admit(credential.id, device("B"), now=at(1))

    c = admission.try_admit(credential.id, device("C"), now=at(2))

    assert a.outcome == AdmissionOutcome.ADMIT
    assert b.outcome == AdmissionOutcome.ADMIT
    assert c.outcome == AdmissionOutcome.EVICTED
    assert c.evicted_session_id == a.device_session_id
    assert c.active_count == 2

    with pytest.raises(SessionInactiveError) as exc_info:
        lifecycle.heartbeat(a.session_token, now=at(3))
    assert exc_info.value.details["termination_reason"] == TerminationReason.LIMIT_EXCEEDED_EVICTED

    # B and C are still fine
    lifecycle.heartbeat(b.session_token, now=at(3))
    lifecycle.heartbeat(c.session_token, now=at(3))

    mock_redis.publish.assert_called_once()


def test_heartbeat_changes_who_gets_evicted(admission, lifecycle, make_credential):
    credential = make_credential(capacity=2)
    a = admission.try_admit(credential.id, device("A"), now=at(0))
    b = admission.try_admit(credential.id, device("B"), now=at(1))
    lifecycle.heartbeat(a.session_token, now=at(2))

    c = admission.try_admit(credential.id, device("C"), now=at(3))

    assert c.evicted_session_id == b.device_session_id


def test_eviction_tie_goes_to_earliest_created(admission, registry, make_credential):
    credential = make_credential(capacity=2)
    a = admission.try_admit(credential.id, device("A"), now=at(0))
    b = admission.try_admit(credential.id, device("B"), now=at(1))

    # Give both the same last activity; A was still created first
    with registry.transaction() as db:
        for row in crud.device_session.list_for_credential(db, credential_id=credential.id):
            row.last_activity_at = at(5)

    c = admission.try_admit(credential.id, device("C"), now=at(6))

    assert c.evicted_session_id == a.device_session_id
    assert c.evicted_session_id != b.device_session_id


def test_stale_sessions_are_reclaimed_before_counting(admission, registry, make_credential):
    credential = make_credential(capacity=1)
    old = admission.try_admit(credential.id, device("A"), now=at(0))

    fresh = admission.try_admit(credential.id, device("B"), now=at(hours=25))

    assert fresh.outcome == AdmissionOutcome.ADMIT
    assert fresh.evicted_session_ids == []
    with registry.read() as db:
        row = crud.device_session.get(db, old.device_session_id)
        assert row.is_active is False
        assert row.termination_reason == TerminationReason.STALE_EXPIRED


def test_unknown_credential_is_rejected(admission):
    decision = admission.try_admit("cred_missing", device("A"), now=at(0))

    assert decision.outcome == AdmissionOutcome.REJECTED
    assert decision.reason == RejectionReason.CREDENTIAL_UNAVAILABLE
    assert decision.error_category == ErrorCategory.NOT_FOUND
    with pytest.raises(NotFoundError):
        decision.raise_for_rejection()


def test_deactivated_credential_is_rejected(admission, credential_service, make_credential):
    credential = make_credential(capacity=2)
    credential_service.deactivate(credential.id)

    decision = admission.try_admit(credential.id, device("A"), now=at(0))

    assert decision.outcome == AdmissionOutcome.REJECTED
    assert isinstance(decision.error, CredentialInactiveError)


def test_expired_credential_is_rejected(admission, make_credential):
    credential = make_credential(capacity=2, expires_at=at(hours=1), now=at(0))

    decision = admission.try_admit(credential.id, device("A"), now=at(hours=2))

    assert decision.outcome == AdmissionOutcome.REJECTED
    assert isinstance(decision.error, CredentialExpiredError)


def test_active_count_is_cached_on_the_credential(admission, credential_service, make_credential):
    credential = make_credential(capacity=3)
    admission.try_admit(credential.id, device("A"), now=at(0))
    admission.try_admit(credential.id, device("B"), now=at(1))

    refreshed = credential_service.get(credential.id)

    assert refreshed.active_device_count == 2
    assert refreshed.last_used_at == at(1)


def test_concurrent_admissions_never_exceed_capacity(admission, registry, make_credential):
    credential = make_credential(capacity=3)
    decisions = []
    errors = []
    barrier = threading.Barrier(10)

    def join(i):
        try:
            barrier.wait()
            decisions.append(admission.try_admit(credential.id, device(f"device-{i}"), now=at(0)))
        except Exception as e:
            errors.append(e)

    threads = [threading.Thread(target=join, args=(i,)) for i in range(10)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert errors == []
    assert len(decisions) == 10
    assert not any(d.degraded for d in decisions)
    assert [d.outcome for d in decisions].count(AdmissionOutcome.ADMIT) == 3
    assert [d.outcome for d in decisions].count(AdmissionOutcome.EVICTED) == 7
    assert len(_active_rows(registry, credential.id, at(0))) == 3


def test_store_failure_fails_open_with_degraded_flag(notifier, test_settings, caplog):
    registry = MagicMock()
    registry.transaction.side_effect = StoreUnavailableError()
    controller = AdmissionController(registry, notifier, test_settings)

    with caplog.at_level(logging.ERROR):
        decision = controller.try_admit("cred_1", device("A"), now=at(0))

    assert decision.outcome == AdmissionOutcome.ADMIT
    assert decision.degraded is True
    assert decision.session_token
    assert decision.device_session_id is None
    assert any(getattr(record, "event", None) == FAIL_OPEN_EVENT for record in caplog.records)


def test_fail_open_can_be_disabled(notifier, test_settings):
    registry = MagicMock()
    registry.transaction.side_effect = StoreUnavailableError()
    controller = AdmissionController(
        registry, notifier, test_settings, fail_open=FailOpenPolicy(enabled=False)
    )

    with pytest.raises(StoreUnavailableError):
        controller.try_admit("cred_1", device("A"), now=at(0))


def test_fail_open_follows_configuration(registry, notifier, test_settings):
    strict = test_settings.model_copy(update={"ADMISSION_FAIL_OPEN": False})

    assert AdmissionController(registry, notifier, test_settings).fail_open.enabled is True
    assert AdmissionController(registry, notifier, strict).fail_open.enabled is False


def test_notifier_failure_does_not_fail_admission(admission, make_credential, mock_redis):
    from redis.exceptions import ConnectionError as RedisConnectionError

    mock_redis.publish.side_effect = RedisConnectionError("down")
    credential = make_credential(capacity=1)
    admission.try_admit(credential.id, device("A"), now=at(0))

    decision = admission.try_admit(credential.id, device("B"), now=at(1))

    assert decision.outcome == AdmissionOutcome.EVICTED


def test_lock_contention_does_not_fail_open(engine, notifier, test_settings, make_credential):
    credential = make_credential(capacity=1)
    locks = KeyedLock(timeout_seconds=0.05)
    controller = AdmissionController(
        SessionRegistry(create_session_factory(engine), locks=locks), notifier, test_settings
    )
    locks.acquire(f"credential:{credential.id}")

    try:
        with pytest.raises(LockTimeoutError):
            controller.try_admit(credential.id, device("A"), now=at(0))
    finally:
        locks.release(f"credential:{credential.id}")

    assert controller.try_admit(credential.id, device("A"), now=at(1)).outcome == AdmissionOutcome.ADMIT
