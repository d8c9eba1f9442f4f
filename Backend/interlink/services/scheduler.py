"""
Scheduler: one stateless tick of the dispatch loop.
Fired by Celery beat or the internal HTTP trigger.
"""
import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from interlink.core.config import settings
from interlink.core.errors import InterlinkError
from interlink.services.dispatcher import WorkflowClient, dispatch_job
from interlink.services.job_manager import job_manager

logger = logging.getLogger(__name__)


@dataclass
class JobDispatchOutcome:
    job_id: str
    success: bool
    status: Optional[str] = None
    error: Optional[str] = None


@dataclass
class TickReport:
    results: List[JobDispatchOutcome] = field(default_factory=list)
    reclaimed_count: int = 0

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed_count": len(self.results),
            "success_count": self.success_count,
            "error_count": self.error_count,
            "reclaimed_count": self.reclaimed_count,
            "results": [asdict(r) for r in self.results],
        }


def run_tick(
    db: Session,
    *,
    workflow: Optional[WorkflowClient] = None,
    batch_size: Optional[int] = None,
    pacing_seconds: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> TickReport:
    batch_size = settings.SCHEDULER_BATCH_SIZE if batch_size is None else batch_size
    pacing_seconds = settings.SCHEDULER_PACING_SECONDS if pacing_seconds is None else pacing_seconds
    workflow = workflow or WorkflowClient()
    report = TickReport()

    reclaimed = job_manager.reclaim_stale(
        db,
        older_than=timedelta(minutes=settings.STALE_PROCESSING_MINUTES),
        max_attempts=settings.MAX_DISPATCH_ATTEMPTS,
    )
    report.reclaimed_count = reclaimed.count

    job_ids = job_manager.queued_batch(db, batch_size)
    if not job_ids:
        logger.info("No queued jobs found")
        return report

    logger.info(f"Found {len(job_ids)} queued jobs to process")
    for index, job_id in enumerate(job_ids):
        if index > 0 and pacing_seconds > 0:
            sleep(pacing_seconds)
        try:
            result = dispatch_job(db, job_id, workflow=workflow)
            report.results.append(JobDispatchOutcome(job_id=job_id, success=True, status=result.status))
        except InterlinkError as e:
            logger.error(f"Failed to trigger job {job_id}: {e.message}")
            report.results.append(JobDispatchOutcome(job_id=job_id, success=False, error=e.message))
        except Exception as e:
            # One broken job must not stop the rest of the batch
            db.rollback()
            logger.exception(f"Error processing job {job_id}")
            report.results.append(JobDispatchOutcome(job_id=job_id, success=False, error=str(e)))

    logger.info(f"Scheduler tick completed: {report.success_count} successful, {report.error_count} failed")
    return report
