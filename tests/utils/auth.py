# tests/utils/auth.py
from app.schemas.token import TokenPayload


def manager(sub="manager_1"):
    return TokenPayload(sub=sub, role="manager")


def presenter(credential_id, sub="teacher_1"):
    return TokenPayload(sub=sub, role="presenter", credentialId=credential_id)


def attendee(credential_id, sub="class_device"):
    return TokenPayload(sub=sub, role="attendee", credentialId=credential_id)
