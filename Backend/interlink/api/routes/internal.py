"""
Internal Routes: called by the workflow engine and by operators, not by browsers.

    POST /internal/jobs/dispatch   {job_id}        queued -> processing + webhook
    POST /internal/jobs/complete   CompletionPayload
    POST /internal/scheduler/run                   one scheduler tick
"""
import logging
from typing import Any, Dict

from fastapi import APIRouter, Body, Depends, Request
from sqlalchemy.orm import Session

from interlink.api.deps import require_internal_secret
from interlink.core.errors import ValidationError
from interlink.core.limiter import INTERNAL_LIMIT, limiter
from interlink.db.base import get_db
from interlink.services.dispatcher import dispatch_job
from interlink.services.ingestor import ingest_result
from interlink.services.scheduler import run_tick

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/internal", dependencies=[Depends(require_internal_secret)])


@router.post("/jobs/dispatch")
@limiter.limit(INTERNAL_LIMIT)
def trigger_dispatch(request: Request, payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    job_id = payload.get("job_id")
    if not job_id or not isinstance(job_id, str):
        raise ValidationError("job_id is required")
    return dispatch_job(db, job_id).to_dict()


@router.post("/jobs/complete")
@limiter.limit(INTERNAL_LIMIT)
def complete_job(request: Request, payload: Dict[str, Any] = Body(...), db: Session = Depends(get_db)):
    return ingest_result(db, payload).to_dict()


@router.post("/scheduler/run")
@limiter.limit(INTERNAL_LIMIT)
def run_scheduler(request: Request, db: Session = Depends(get_db)):
    report = run_tick(db)
    return report.to_dict()
