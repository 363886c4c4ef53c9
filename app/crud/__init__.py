# app/crud/__init__.py

from .crud_credential import credential
from .crud_device_session import device_session
from .crud_live_session import live_session
from .crud_participant import participant
