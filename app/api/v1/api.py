# app/api/v1/api.py

from fastapi import APIRouter
from app.api.v1.endpoints import (
    credentials,
    devices,
    live_sessions,
)

# This is the main router for the v1 API.
# It will include all the specific endpoint routers.
api_router = APIRouter()

api_router.include_router(credentials.router)
api_router.include_router(devices.router)
api_router.include_router(live_sessions.router)
