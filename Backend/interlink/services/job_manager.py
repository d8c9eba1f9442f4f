import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from interlink.core.errors import InvalidTransitionError, NotFoundError
from interlink.db.base import utcnow
from interlink.db.models import Job, JobStatus, Project
from interlink.services.realtime import publish_job_change

logger = logging.getLogger(__name__)

# A job outside `done`/`error` carries no result
CLEARED_RESULT_FIELDS: Dict[str, Any] = {
    "anchors_added": 0,
    "anchors_log": [],
    "error_message": None,
    "original_doc_url": None,
    "updated_doc_url": None,
}


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() + "Z" if value else None


def serialize_job(job: Job) -> Dict[str, Any]:
    """Public representation: API responses and Pub/Sub messages share it."""
    return {
        "id": job.id,
        "project_id": job.project_id,
        "title": job.title,
        "article_doc": job.article_doc,
        "article_url": job.article_url,
        "status": job.status,
        "anchors_added": job.anchors_added,
        "anchors_log": job.anchors_log or [],
        "original_doc_url": job.original_doc_url,
        "updated_doc_url": job.updated_doc_url,
        "error_message": job.error_message,
        "dispatch_attempts": job.dispatch_attempts,
        "created_at": _iso(job.created_at),
        "updated_at": _iso(job.updated_at),
    }


@dataclass
class ReclaimReport:
    requeued: List[str] = field(default_factory=list)
    timed_out: List[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.requeued) + len(self.timed_out)


class JobManager:
    """
    Owns every job status transition.

    Automated transitions are single conditional UPDATEs
    (`... WHERE id = :id AND status = :expected`); a transition applies only
    if exactly one row matched, so two workers can never both claim or both
    finish the same job. Each applied change is published for the client
    sync layer.
    """

    # ─── Reads ───────────────────────────────────────────────────────────────

    def get_job(self, db: Session, job_id: str) -> Optional[Job]:
        return db.get(Job, job_id)

    def require_job(self, db: Session, job_id: str) -> Job:
        job = self.get_job(db, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        return job

    def queued_batch(self, db: Session, limit: int) -> List[str]:
        """Oldest-first ids of queued jobs, at most `limit`."""
        stmt = (
            select(Job.id)
            .where(Job.status == JobStatus.QUEUED.value)
            .order_by(Job.created_at.asc(), Job.id.asc())
            .limit(limit)
        )
        return list(db.execute(stmt).scalars())

    # ─── Creation ────────────────────────────────────────────────────────────

    def create_job(self, db: Session, project: Project, title: str, article_doc: str) -> Job:
        now = utcnow()
        job = Job(
            project_id=project.id,
            title=title,
            article_doc=article_doc,
            status=JobStatus.QUEUED.value,
            anchors_added=0,
            anchors_log=[],
            dispatch_attempts=0,
            created_at=now,
            updated_at=now,
        )
        db.add(job)
        db.commit()
        db.refresh(job)
        logger.info(f"Job {job.id} created in project {project.id} (queued).")
        self.publish(job)
        return job

    # ─── Automated transitions ───────────────────────────────────────────────

    def claim_for_dispatch(self, db: Session, job_id: str) -> Job:
        """
        queued -> processing. Raises InvalidTransitionError if another pass got there first.
        Result fields from an earlier run (a job re-queued by an edit) are cleared.
        """
        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.QUEUED.value)
            .values(
                status=JobStatus.PROCESSING.value,
                dispatch_attempts=Job.dispatch_attempts + 1,
                updated_at=utcnow(),
                **CLEARED_RESULT_FIELDS,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            self._raise_missed(db, job_id, JobStatus.QUEUED)
        db.commit()
        job = self.require_job(db, job_id)
        logger.info(f"Job {job_id} claimed for dispatch (attempt {job.dispatch_attempts}).")
        self.publish(job)
        return job

    def mark_dispatch_failed(self, db: Session, job_id: str, message: str) -> Job:
        """processing -> error after the workflow engine refused or was unreachable."""
        message = message.strip() or "Dispatch to workflow engine failed"
        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
            .values(
                status=JobStatus.ERROR.value,
                error_message=message,
                anchors_added=0,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            self._raise_missed(db, job_id, JobStatus.PROCESSING)
        db.commit()
        job = self.require_job(db, job_id)
        logger.error(f"Job {job_id} marked as ERROR after dispatch failure: {message}")
        self.publish(job)
        return job

    def complete(
        self,
        db: Session,
        job_id: str,
        *,
        status: JobStatus,
        anchors_added: int = 0,
        anchors_log: Optional[List[Dict[str, str]]] = None,
        original_doc_url: Optional[str] = None,
        updated_doc_url: Optional[str] = None,
        error_message: Optional[str] = None,
        commit: bool = True,
    ) -> Job:
        """
        processing -> done|error, all result fields in one statement.
        With commit=False the caller owns the transaction and must call
        publish() after committing.
        """
        if status not in (JobStatus.DONE, JobStatus.ERROR):
            raise InvalidTransitionError(f"{status.value} is not a terminal status")
        values: Dict[str, Any] = {
            "status": status.value,
            "anchors_added": anchors_added if status == JobStatus.DONE else 0,
            "anchors_log": anchors_log or [],
            "error_message": error_message if status == JobStatus.ERROR else None,
            "updated_at": utcnow(),
            "original_doc_url": None,
            "updated_doc_url": None,
        }
        if original_doc_url and updated_doc_url:
            values["original_doc_url"] = original_doc_url
            values["updated_doc_url"] = updated_doc_url

        result = db.execute(
            update(Job)
            .where(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            db.rollback()
            self._raise_missed(db, job_id, JobStatus.PROCESSING)
        if not commit:
            return db.get(Job, job_id, populate_existing=True)
        db.commit()
        job = self.require_job(db, job_id)
        logger.info(f"Job {job_id} finished with status {status.value}.")
        self.publish(job)
        return job

    def reclaim_stale(
        self,
        db: Session,
        *,
        older_than: timedelta,
        max_attempts: int,
        now: Optional[datetime] = None,
    ) -> ReclaimReport:
        """
        Jobs left in processing with no update for `older_than` go back to
        queued, or to error once they have used up `max_attempts` dispatches.
        """
        cutoff = (now or utcnow()) - older_than
        report = ReclaimReport()
        stale = db.execute(
            select(Job.id, Job.dispatch_attempts)
            .where(Job.status == JobStatus.PROCESSING.value, Job.updated_at < cutoff)
            .order_by(Job.updated_at.asc())
        ).all()

        for job_id, attempts in stale:
            if attempts < max_attempts:
                values = {"status": JobStatus.QUEUED.value, "updated_at": utcnow(), **CLEARED_RESULT_FIELDS}
            else:
                values = {
                    **CLEARED_RESULT_FIELDS,
                    "status": JobStatus.ERROR.value,
                    "error_message": f"Processing timed out after {attempts} dispatch attempts",
                    "updated_at": utcnow(),
                }
            # Re-check status and staleness so a completion that lands meanwhile wins
            result = db.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.status == JobStatus.PROCESSING.value,
                    Job.updated_at < cutoff,
                )
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                db.rollback()
                continue
            db.commit()
            if values["status"] == JobStatus.QUEUED.value:
                report.requeued.append(job_id)
                logger.warning(f"Job {job_id} stuck in processing; re-queued (attempts so far: {attempts}).")
            else:
                report.timed_out.append(job_id)
                logger.error(f"Job {job_id} stuck in processing after {attempts} attempts; marked as ERROR.")
            self.publish(self.require_job(db, job_id))
        return report

    # ─── Administrative override ─────────────────────────────────────────────

    def override(
        self,
        db: Session,
        job_id: str,
        *,
        title: Optional[str] = None,
        article_url: Optional[str] = None,
        status: Optional[JobStatus] = None,
    ) -> Job:
        """Trusted edit path. Skips transition rules; the status must still be a JobStatus."""
        job = self.require_job(db, job_id)
        if title is not None:
            job.title = title
        if article_url is not None:
            job.article_url = article_url or None
        if status is not None and status.value != job.status:
            logger.warning(f"Job {job_id} status overridden: {job.status} -> {status.value}")
            job.status = status.value
        job.updated_at = utcnow()
        db.commit()
        db.refresh(job)
        self.publish(job)
        return job

    # ─── Helpers ─────────────────────────────────────────────────────────────

    def publish(self, job: Job) -> None:
        publish_job_change(serialize_job(job))

    def _raise_missed(self, db: Session, job_id: str, expected: JobStatus) -> None:
        job = self.get_job(db, job_id)
        if job is None:
            raise NotFoundError(f"Job {job_id} not found")
        logger.warning(f"Rejected transition for job {job_id}: status is {job.status}, expected {expected.value}")
        raise InvalidTransitionError(
            f"Job {job_id} is {job.status}; expected {expected.value}"
        )


job_manager = JobManager()
