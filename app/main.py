# app/main.py
import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from app.api.v1.api import api_router
from app.core.config import Settings, get_settings
from app.core.errors import AppError
from app.core.limiter import limiter
from app.db.base_class import Base
from app.db.redis import get_redis_client
from app.db.registry import SessionRegistry
from app.db.session import create_db_engine, create_session_factory
from app.middleware import app_error_handler, unexpected_error_handler, validation_error_handler
from app.scheduler import create_scheduler, shutdown_scheduler
from app.services.admission_controller import AdmissionController
from app.services.credential_service import CredentialService
from app.services.live_session_service import LiveSessionService
from app.services.notifications import EvictionNotifier
from app.services.session_lifecycle import SessionLifecycleManager
from app import models  # noqa: F401  registers every table on Base.metadata

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.LOG_LEVEL,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_services(app: FastAPI, settings: Settings, registry: SessionRegistry, redis_client=None) -> None:
    """Wire the service graph onto app.state. Nothing here is a module-level singleton."""
    notifier = EvictionNotifier(redis_client, settings)
    lifecycle = SessionLifecycleManager(registry, settings, notifier)
    admission = AdmissionController(registry, notifier, settings)

    app.state.registry = registry
    app.state.notifier = notifier
    app.state.lifecycle = lifecycle
    app.state.admission = admission
    app.state.credentials = CredentialService(registry, lifecycle, settings)
    app.state.live_sessions = LiveSessionService(registry, admission, settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Class access service starting up...")

    engine = create_db_engine(settings.DATABASE_URL)
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables checked and created if necessary.")

    registry = SessionRegistry(create_session_factory(engine))
    build_services(app, settings, registry, get_redis_client(settings.REDIS_URL))

    scheduler = None
    if settings.SCHEDULER_ENABLED:
        scheduler = create_scheduler(app.state.lifecycle, settings)
        scheduler.start()
        logger.info("Background scheduler started")
    app.state.scheduler = scheduler

    yield

    logger.info("Class access service shutting down...")
    shutdown_scheduler(scheduler)
    engine.dispose()


app = FastAPI(
    title="Class Access Service",
    version="1.0.0",
    description="""
        Device admission and live class sessions for shared class logins.

        ## Features

        * **Device admission**: Per-class-login device limits with least-recently-active eviction
        * **Device sessions**: Heartbeats, sign-out, staleness sweeps and manual revokes
        * **Live sessions**: Scheduled -> live -> full -> ended lifecycle with a participant roster
        * **Presenter controls**: Mute, video and removal, with an immutable control log

        ## Authentication

        Every endpoint requires a JWT via the `Authorization: Bearer <token>` header.
        """,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, validation_error_handler)
app.add_exception_handler(Exception, unexpected_error_handler)

cors_origins = settings.get_cors_origins() or [
    "http://localhost:3000",  # Development only
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api/v1")


@app.get("/")
def read_root():
    return {"status": "Class Access Service is running"}
