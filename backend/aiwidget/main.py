from fastapi import FastAPI, Depends, HTTPException
from starlette.exceptions import HTTPException as StarletteHTTPException
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from sqlalchemy.orm import Session
import asyncio
import os
import logging

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

from aiwidget.config import settings
from aiwidget.db import SessionLocal, get_db
from aiwidget.models import User, Role
from aiwidget.auth import get_password_hash
from aiwidget.routers import auth, widget, admin_projects, admin_chats, users, stats, telegram
from aiwidget.exceptions import (
    AppException,
    app_exception_handler,
    http_exception_handler,
    general_exception_handler
)
from aiwidget.rate_limit import limiter, rate_limit_exceeded_handler
from aiwidget.middleware.request_id import RequestIDMiddleware
from aiwidget.middleware.security_headers import SecurityHeadersMiddleware
from aiwidget.middleware.widget_cors import WidgetOriginMiddleware
from aiwidget.jobs.inactivity import run_inactivity_sweeper
from aiwidget.services.assistant import AssistantBridge
from aiwidget.services.notifications import TelegramNotifier
from aiwidget.services.relay import ChatRunGuard, NotificationTasks
from aiwidget.utils.logging import configure_logging

# Error tracking is enabled only when a DSN is configured
if settings.SENTRY_DSN:
    sentry_sdk.init(
        dsn=settings.SENTRY_DSN,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
        ],
        traces_sample_rate=0.1,
        environment=settings.ENVIRONMENT,
    )
    logging.info("Sentry error tracking initialized")

configure_logging(logging.INFO)
logger = logging.getLogger(__name__)

ALEMBIC_INI = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "alembic.ini")


def _alembic_config() -> Config:
    alembic_cfg = Config(ALEMBIC_INI)
    alembic_cfg.set_main_option("sqlalchemy.url", settings.database_url_fixed)
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def run_migrations():
    """Run Alembic migrations on startup"""
    try:
        logger.info("Running DB migrations...")
        command.upgrade(_alembic_config(), "head")
        logger.info("DB migrations completed successfully")
    except Exception as e:
        logger.error(f"Failed to run DB migrations: {e}")


def seed_admin_user(db: Session) -> None:
    """Create the configured admin account if it does not exist yet."""
    admin_email = settings.ADMIN_EMAIL.strip().lower()
    if db.query(User).filter(User.email == admin_email).first():
        return
    db.add(User(
        email=admin_email,
        password_hash=get_password_hash(settings.ADMIN_PASSWORD),
        role=Role.ADMIN,
    ))
    db.commit()
    logger.info(f"Admin user created: {admin_email}")


# Create FastAPI app
app = FastAPI(
    title="AI Widget Backend",
    description="Multi-tenant chat widget backend with assistant streaming and operator takeover",
    version="1.0.0"
)

# Shared resources; tests replace these on app.state
app.state.limiter = limiter
app.state.session_factory = SessionLocal
app.state.assistant_bridge = AssistantBridge.from_settings(settings)
app.state.notifier = TelegramNotifier.from_settings(settings)
app.state.run_guard = ChatRunGuard()
app.state.notification_tasks = NotificationTasks()

# Register exception handlers
app.add_exception_handler(AppException, app_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(Exception, general_exception_handler)
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Admin UI is same-origin; widget CORS is decided per project
app.add_middleware(WidgetOriginMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestIDMiddleware)


@app.on_event("startup")
async def startup_event():
    """Initialize application on startup"""
    logger.info("Starting AI Widget Backend...")

    if settings.RUN_MIGRATIONS:
        run_migrations()

    try:
        db = app.state.session_factory()
        try:
            seed_admin_user(db)
        finally:
            db.close()
    except Exception as e:
        logger.error(f"Failed to seed admin user: {e}")

    if settings.CHAT_SWEEP_ENABLED:
        app.state.sweeper_task = asyncio.create_task(
            run_inactivity_sweeper(
                app.state.session_factory,
                settings.CHAT_INACTIVITY_MINUTES,
                settings.CHAT_SWEEP_INTERVAL_SECONDS,
            )
        )


@app.on_event("shutdown")
async def shutdown_event():
    task = getattr(app.state, "sweeper_task", None)
    if task is not None:
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    await app.state.notification_tasks.close()
    logger.info("AI Widget Backend stopped")


# Register routers
app.include_router(auth.router, prefix="/api")
app.include_router(widget.router, prefix="/api")
app.include_router(admin_projects.router, prefix="/api")
app.include_router(admin_chats.router, prefix="/api")
app.include_router(users.router, prefix="/api")
app.include_router(stats.router, prefix="/api")
app.include_router(telegram.router, prefix="/api")


def _check_migrations(db: Session) -> bool:
    try:
        heads = set(ScriptDirectory.from_config(_alembic_config()).get_heads())
        current = db.execute(text("SELECT version_num FROM alembic_version")).fetchone()
        if not current:
            return False
        return current[0] in heads
    except Exception:
        return False


@app.get("/healthz")
def healthz():
    return {"status": "ok"}


@app.get("/readyz")
def readyz(db: Session = Depends(get_db)):
    checks = {"database": False, "migrations": False}
    try:
        db.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception:
        checks["database"] = False
    checks["migrations"] = _check_migrations(db)
    if all(checks.values()):
        return {"status": "ok", "checks": checks}
    raise HTTPException(status_code=503, detail={"status": "not_ready", "checks": checks})
