# app/models/__init__.py
# Import all models to ensure SQLAlchemy can resolve relationships
# Order matters for dependencies - import base models first

from app.db.base_class import Base
from app.models.credential import Credential
from app.models.device_session import DeviceSession
from app.models.live_session import LiveSession
from app.models.participant import Participant
from app.models.control_action import ControlAction
