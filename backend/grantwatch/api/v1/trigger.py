"""Manual trigger endpoint addressed by source id in the body."""

from fastapi import APIRouter, Depends

from grantwatch.api.deps import get_scheduler
from grantwatch.api.v1.sources import trigger_source_job
from grantwatch.core.scheduler import Scheduler
from grantwatch.schemas.scraped_source import SourceTriggerRequest, TriggerResponse

router = APIRouter(prefix="/trigger", tags=["trigger"])


@router.post("", response_model=TriggerResponse, status_code=202)
def trigger(
    request: SourceTriggerRequest,
    scheduler: Scheduler = Depends(get_scheduler),
):
    """Queue a scrape job for ``sourceId`` now, bypassing its schedule."""
    return trigger_source_job(scheduler, request.source_id, request)
