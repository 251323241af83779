"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

import grantwatch.models.grant  # noqa: F401
import grantwatch.models.scrape_job  # noqa: F401
import grantwatch.models.scraped_source  # noqa: F401
from grantwatch import __version__
from grantwatch.api.v1 import router as api_v1_router
from grantwatch.config import get_settings
from grantwatch.models.base import Base, SessionLocal, get_engine

logger = logging.getLogger(__name__)
settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application startup and shutdown."""
    logger.info("Starting %s...", settings.app_name)
    Base.metadata.create_all(bind=get_engine())
    logger.info("Database tables verified")
    yield
    logger.info("Shutting down...")
    get_engine().dispose()


app = FastAPI(
    title=settings.app_name,
    description="Scheduled discovery of grant opportunities from external sources",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.get("/health")
def health_check():
    return {"status": "healthy", "app": settings.app_name}


@app.get("/health/detailed")
def detailed_health_check():
    checks = {}

    # Database
    try:
        with SessionLocal() as session:
            session.execute(text("SELECT 1")).scalar()
            checks["database"] = {"ok": True}
    except Exception as e:
        checks["database"] = {"ok": False, "message": str(e)}

    # Redis
    try:
        r = redis.from_url(settings.redis_url, socket_timeout=5)
        r.ping()
        checks["redis"] = {"ok": True}
    except Exception as e:
        checks["redis"] = {"ok": False, "message": str(e)}

    # Celery workers
    try:
        from grantwatch.tasks.celery_app import celery_app
        inspect = celery_app.control.inspect(timeout=5)
        active_workers = inspect.active()
        checks["celery_workers"] = {
            "ok": bool(active_workers),
            "workers": list(active_workers.keys()) if active_workers else [],
        }
    except Exception as e:
        checks["celery_workers"] = {"ok": False, "message": str(e)}

    all_ok = all(check.get("ok", False) for check in checks.values())
    status = "healthy" if all_ok else "degraded"

    return {
        "status": status,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
