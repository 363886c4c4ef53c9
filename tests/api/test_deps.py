import pytest
from fastapi import HTTPException
from jose import jwt

from app.api import deps
from app.core.errors import ForbiddenError
from app.core.roles import Capability
from tests.utils.auth import attendee, manager, presenter


def test_get_current_user_decodes_token(test_settings):
    token = jwt.encode(
        {"sub": "teacher_1", "role": "presenter", "credentialId": "cred_1", "exp": 4102444800},
        test_settings.JWT_SECRET,
        algorithm="HS256",
    )

    user = deps.get_current_user(token=token, settings=test_settings)

    assert user.sub == "teacher_1"
    assert user.role == "presenter"
    assert user.credential_id == "cred_1"


def test_get_current_user_rejects_bad_signature(test_settings):
    token = jwt.encode({"sub": "x", "role": "manager"}, "wrong-secret", algorithm="HS256")

    with pytest.raises(HTTPException) as exc_info:
        deps.get_current_user(token=token, settings=test_settings)

    assert exc_info.value.status_code == 401


def test_get_current_user_requires_role_claim(test_settings):
    token = jwt.encode({"sub": "x"}, test_settings.JWT_SECRET, algorithm="HS256")

    with pytest.raises(HTTPException):
        deps.get_current_user(token=token, settings=test_settings)


def test_require_checks_capability():
    checker = deps.require(Capability.MANAGE_CREDENTIALS)

    assert checker(current_user=manager()).sub == "manager_1"
    with pytest.raises(ForbiddenError):
        checker(current_user=presenter("cred_1"))


def test_credential_scope():
    deps.ensure_credential_scope(manager(), "cred_anything")
    deps.ensure_credential_scope(attendee("cred_1"), "cred_1")

    with pytest.raises(ForbiddenError):
        deps.ensure_credential_scope(attendee("cred_1"), "cred_2")
    with pytest.raises(ForbiddenError):
        deps.ensure_credential_scope(presenter(None), "cred_1")
