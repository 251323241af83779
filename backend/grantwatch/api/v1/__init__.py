"""API v1 router aggregation."""

from fastapi import APIRouter

from grantwatch.api.v1.jobs import router as jobs_router
from grantwatch.api.v1.sources import router as sources_router
from grantwatch.api.v1.trigger import router as trigger_router

router = APIRouter(prefix="/api/v1")

router.include_router(sources_router)
router.include_router(jobs_router)
router.include_router(trigger_router)
