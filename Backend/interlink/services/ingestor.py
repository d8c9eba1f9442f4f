"""
Result Ingestor: applies the workflow engine's completion callback.

Flow:
    1. Validate the payload (CompletionPayload) and resolve the final status.
    2. Normalize the anchor log.
    3. Require the job to be in processing (duplicates are rejected, not re-applied).
    4. Write the original/updated HTML snapshots, both or neither.
    5. One conditional update + usage metering in the same transaction, then publish.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from interlink.core.errors import InvalidTransitionError, StorageWriteError, ValidationError
from interlink.db.base import utcnow
from interlink.db.models import Job, JobStatus
from interlink.services.anchors import normalize_anchor_log
from interlink.services.job_manager import job_manager
from interlink.services.metering import record_job_consumed
from interlink.services.storage import HTML_CONTENT_TYPE, StorageProvider, get_storage_provider

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("status", "anchors_added", "anchors_log", "error_message", "original_html", "updated_html")


class CompletionPayload(BaseModel):
    model_config = ConfigDict(extra="forbid")

    job_id: str = Field(min_length=1)
    status: Optional[Literal["done", "error"]] = None
    anchors_added: Optional[int] = None
    anchors_log: Optional[Any] = None
    error_message: Optional[str] = None
    original_html: Optional[str] = None
    updated_html: Optional[str] = None


@dataclass
class IngestResult:
    job: Job
    original_doc_url: Optional[str] = None
    updated_doc_url: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": True,
            "job_id": self.job.id,
            "status": self.job.status,
            "files": {
                "original": self.original_doc_url,
                "updated": self.updated_doc_url,
            },
        }


def parse_completion_payload(raw: Any) -> CompletionPayload:
    if not isinstance(raw, dict):
        raise ValidationError("Completion payload must be a JSON object")
    if not raw.get("job_id"):
        raise ValidationError("job_id is required")
    try:
        return CompletionPayload.model_validate(raw)
    except PydanticValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"])
        raise ValidationError(f"Invalid completion payload ({field}): {first['msg']}")


def resolve_status(payload: CompletionPayload) -> JobStatus:
    """Explicit status wins; otherwise an error message means error, anything else done."""
    if payload.status:
        return JobStatus(payload.status)
    if payload.error_message and payload.error_message.strip():
        return JobStatus.ERROR
    return JobStatus.DONE


def _check_consistency(payload: CompletionPayload, status: JobStatus) -> None:
    if not any(getattr(payload, name) is not None for name in UPDATABLE_FIELDS):
        raise ValidationError("No updatable fields supplied")
    message = (payload.error_message or "").strip()
    if status == JobStatus.ERROR and not message:
        raise ValidationError("error_message is required when status is error")
    if status == JobStatus.DONE and message:
        raise ValidationError("error_message is not allowed when status is done")
    if payload.anchors_added is not None:
        if payload.anchors_added < 0:
            raise ValidationError("anchors_added must be >= 0")
        if status == JobStatus.ERROR and payload.anchors_added > 0:
            raise ValidationError("anchors_added must be 0 when status is error")
    if (payload.original_html is None) != (payload.updated_html is None):
        raise ValidationError("original_html and updated_html must be supplied together")


def snapshot_timestamp(now: datetime) -> str:
    return now.isoformat().replace(":", "-").replace(".", "-")


def snapshot_key(user_id: str, job_id: str, kind: str, timestamp: str) -> str:
    return f"{user_id}/{job_id}/{kind}-{timestamp}.html"


def _store_snapshots(
    storage: StorageProvider, user_id: str, job_id: str, original_html: str, updated_html: str
) -> tuple[Optional[str], Optional[str]]:
    timestamp = snapshot_timestamp(utcnow())
    try:
        original_key = storage.put_immutable(
            snapshot_key(user_id, job_id, "original", timestamp),
            original_html.encode("utf-8"),
            HTML_CONTENT_TYPE,
        )
        updated_key = storage.put_immutable(
            snapshot_key(user_id, job_id, "updated", timestamp),
            updated_html.encode("utf-8"),
            HTML_CONTENT_TYPE,
        )
    except StorageWriteError as e:
        logger.warning(f"Snapshot storage failed for job {job_id}; continuing without snapshots: {e.message}")
        return None, None
    return storage.public_url(original_key), storage.public_url(updated_key)


def ingest_result(
    db: Session,
    raw_payload: Any,
    storage: Optional[StorageProvider] = None,
) -> IngestResult:
    payload = parse_completion_payload(raw_payload)
    status = resolve_status(payload)
    _check_consistency(payload, status)
    anchors = normalize_anchor_log(payload.anchors_log)

    job = job_manager.require_job(db, payload.job_id)
    if job.status != JobStatus.PROCESSING.value:
        logger.warning(f"Completion for job {job.id} rejected: status is {job.status}")
        raise InvalidTransitionError(f"Job {job.id} is {job.status}; expected processing")
    user_id = job.project.user_id

    original_url = updated_url = None
    if payload.original_html is not None and payload.updated_html is not None:
        original_url, updated_url = _store_snapshots(
            storage or get_storage_provider(), user_id, job.id, payload.original_html, payload.updated_html
        )

    if status == JobStatus.DONE:
        anchors_added = payload.anchors_added if payload.anchors_added is not None else len(anchors)
    else:
        anchors_added = 0

    job = job_manager.complete(
        db,
        payload.job_id,
        status=status,
        anchors_added=anchors_added,
        anchors_log=[anchor.to_dict() for anchor in anchors],
        original_doc_url=original_url,
        updated_doc_url=updated_url,
        error_message=(payload.error_message or "").strip() or None,
        commit=False,
    )
    if status == JobStatus.DONE:
        record_job_consumed(db, user_id)
    db.commit()
    db.refresh(job)

    logger.info(f"Job {job.id} updated successfully to status {job.status} ({anchors_added} anchors)")
    job_manager.publish(job)
    return IngestResult(job=job, original_doc_url=original_url, updated_doc_url=updated_url)
