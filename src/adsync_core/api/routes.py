"""FastAPI routes for metrics backfill job submission."""
import logging
import uuid
from datetime import date
from typing import Annotated, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..config import PipelineConfig
from ..runner import run_backfill
from ..schemas.metrics import Source
from .auth import require_api_key


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["jobs"])


class MetricsBackfillJobRequest(BaseModel):
    """Request payload for a metrics backfill job."""

    brand_id: str = Field(..., description="Brand whose daily metrics are rebuilt")
    start_date: date = Field(..., description="First date to backfill (inclusive)")
    end_date: date = Field(..., description="Last date to backfill (inclusive)")
    user_id: Optional[str] = Field(
        None, description="User notified on completion"
    )
    new_source: Optional[Source] = Field(
        None,
        description="Newly connected source; merged incrementally into stored records",
    )


class MetricsBackfillJobResponse(BaseModel):
    """Immediate response for a queued job."""

    job_id: str = Field(..., description="Server-generated job ID")
    status: str = Field(..., description="Job status (always 'queued' on acceptance)")
    brand_id: str = Field(..., description="Echo of the requested brand")
    start_date: date
    end_date: date


async def _run_metrics_backfill_job(
    job_id: str, payload: MetricsBackfillJobRequest, config: PipelineConfig
) -> None:
    """Background task: run one backfill.

    This function MUST be exception-safe; all errors are caught and logged.
    """
    try:
        logger.info(
            "Starting metrics backfill job: job_id=%s, brand=%s, range=%s..%s, new_source=%s",
            job_id,
            payload.brand_id,
            payload.start_date,
            payload.end_date,
            payload.new_source.value if payload.new_source else None,
        )

        result = await run_backfill(
            config,
            payload.brand_id,
            payload.start_date,
            payload.end_date,
            user_id=payload.user_id,
            new_source=payload.new_source.value if payload.new_source else None,
        )

        if result.success:
            logger.info("Job %s completed: %s", job_id, result.message)
        else:
            logger.error("Job %s failed: %s", job_id, result.message)

    except Exception as exc:
        logger.error(
            "Job %s (brand=%s) failed with exception: %s",
            job_id,
            payload.brand_id,
            exc,
            exc_info=True,
        )


@router.post(
    "/jobs/metrics-backfill",
    response_model=MetricsBackfillJobResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Submit metrics backfill job",
    description=(
        "Enqueue a daily metrics backfill for one brand. "
        "Returns immediately (202 Accepted) with job_id. "
        "Completion is published on the notification channel."
    ),
)
async def create_metrics_backfill_job(
    payload: MetricsBackfillJobRequest,
    background_tasks: BackgroundTasks,
    config: Annotated[PipelineConfig, Depends(require_api_key)],
) -> MetricsBackfillJobResponse:
    """Submit a backfill job for background processing.

    Validates:
    - API key (X-ADSYNC-API-KEY header) - returns 401 if missing/invalid
    - brand_id is non-empty
    - start_date is not after end_date
    """
    if not payload.brand_id.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="brand_id must be non-empty",
        )

    if payload.start_date > payload.end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=(
                f"start_date {payload.start_date} is after end_date {payload.end_date}"
            ),
        )

    job_id = str(uuid.uuid4())

    background_tasks.add_task(_run_metrics_backfill_job, job_id, payload, config)

    logger.info(
        "Queued metrics backfill job: job_id=%s, brand=%s", job_id, payload.brand_id
    )

    return MetricsBackfillJobResponse(
        job_id=job_id,
        status="queued",
        brand_id=payload.brand_id,
        start_date=payload.start_date,
        end_date=payload.end_date,
    )
