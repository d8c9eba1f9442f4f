"""
Dispatcher: hands one queued job to the external workflow engine.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from sqlalchemy.orm import Session

from interlink.core.config import settings
from interlink.core.errors import UpstreamFailureError
from interlink.db.models import Job, JobStatus
from interlink.services.job_manager import job_manager

logger = logging.getLogger(__name__)

SECRET_HEADER = "x-edge-secret"


@dataclass
class DispatchResult:
    job_id: str
    status: str

    def to_dict(self) -> Dict[str, Any]:
        return {"success": True, "job_id": self.job_id, "status": self.status}


class WorkflowClient:
    """POSTs job payloads to the workflow engine webhook with the shared-secret header."""

    def __init__(
        self,
        url: Optional[str] = None,
        secret: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.url = settings.WORKFLOW_WEBHOOK_URL if url is None else url
        self.secret = settings.WORKFLOW_SHARED_SECRET if secret is None else secret
        self.timeout = settings.WORKFLOW_TIMEOUT_SECONDS if timeout is None else timeout
        self.transport = transport

    def trigger(self, payload: Dict[str, Any]) -> None:
        if not self.url:
            raise UpstreamFailureError("WORKFLOW_WEBHOOK_URL is not configured")
        headers = {"Content-Type": "application/json", SECRET_HEADER: self.secret}
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            raise UpstreamFailureError(f"Workflow engine unreachable: {e}")
        if not response.is_success:
            logger.error(f"Workflow webhook failed ({response.status_code}): {response.text[:500]}")
            raise UpstreamFailureError(f"Workflow engine returned HTTP {response.status_code}")


def build_payload(job: Job) -> Dict[str, Any]:
    return {
        "job_id": job.id,
        "project_id": job.project_id,
        "title": job.title,
        "article_doc": job.article_doc,
        "status": JobStatus.PROCESSING.value,
    }


def dispatch_job(db: Session, job_id: str, workflow: Optional[WorkflowClient] = None) -> DispatchResult:
    """
    Claim a queued job and forward it to the workflow engine.

    The processing flip commits before the outbound call. If the call fails
    the job ends in error and UpstreamFailureError propagates to the caller.
    A crash between the two steps is covered by the scheduler's stale reclaim.
    """
    job_manager.require_job(db, job_id)
    job = job_manager.claim_for_dispatch(db, job_id)
    payload = build_payload(job)

    try:
        (workflow or WorkflowClient()).trigger(payload)
    except UpstreamFailureError as e:
        job_manager.mark_dispatch_failed(db, job_id, f"Failed to trigger workflow: {e.message}")
        raise

    logger.info(f"Job {job_id} triggered successfully")
    return DispatchResult(job_id=job_id, status=JobStatus.PROCESSING.value)
