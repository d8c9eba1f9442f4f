import logging
from typing import Any, Dict

from interlink.core.celery_app import celery_app
from interlink.core.errors import InterlinkError
from interlink.db.base import session_scope
from interlink.services.dispatcher import dispatch_job
from interlink.services.scheduler import run_tick

logger = logging.getLogger(__name__)


@celery_app.task(name="interlink.tasks.run_scheduler_tick")
def run_scheduler_tick() -> Dict[str, Any]:
    """
    Periodic beat task: reclaim stale jobs, then dispatch the oldest queued batch.
    """
    with session_scope() as db:
        report = run_tick(db)
    logger.info(f"[Celery] Scheduler tick: {report.to_dict()['processed_count']} processed, {report.reclaimed_count} reclaimed")
    return report.to_dict()


@celery_app.task(name="interlink.tasks.dispatch_job")
def dispatch_job_task(job_id: str) -> Dict[str, Any]:
    """
    Dispatch one job right after creation. A job that is no longer queued is
    left alone; the error is reported in the task result, not retried.
    """
    with session_scope() as db:
        try:
            return dispatch_job(db, job_id).to_dict()
        except InterlinkError as e:
            logger.warning(f"[Celery] Dispatch of job {job_id} failed: {e.message}")
            return {"success": False, "job_id": job_id, "error": e.message}
