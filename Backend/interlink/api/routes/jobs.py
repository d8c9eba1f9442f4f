"""
Job Routes: polling surface for a single job and the administrative edit path.
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from interlink.api.deps import get_session_context
from interlink.api.schemas import JobEdit, JobResponse, UsageResponse
from interlink.core.errors import NotFoundError
from interlink.core.limiter import CREATE_LIMIT, STATUS_LIMIT, limiter
from interlink.db.base import get_db
from interlink.services import projects
from interlink.services.auth import SessionContext
from interlink.services.job_manager import serialize_job
from interlink.services.metering import current_usage

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/jobs/{job_id}", response_model=JobResponse)
@limiter.limit(STATUS_LIMIT)
def get_job(
    request: Request,
    job_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    return serialize_job(projects.get_job(db, ctx, job_id))


@router.patch("/jobs/{job_id}", response_model=JobResponse)
@limiter.limit(CREATE_LIMIT)
def edit_job(
    request: Request,
    job_id: str,
    body: JobEdit,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    job = projects.edit_job(
        db, ctx, job_id, title=body.title, article_url=body.article_url, status=body.status
    )
    return serialize_job(job)


@router.get("/usage/current", response_model=UsageResponse)
@limiter.limit(STATUS_LIMIT)
def get_current_usage(
    request: Request,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    usage = current_usage(db, ctx.user_id)
    if usage is None:
        raise NotFoundError("No usage record for the current billing period")
    return usage
