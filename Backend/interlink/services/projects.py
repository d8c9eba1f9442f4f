"""
Owner-scoped project and job operations behind the dashboard API.
Resources owned by someone else are reported as not found.
"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from interlink.core.config import settings
from interlink.core.errors import NotFoundError
from interlink.db.base import utcnow
from interlink.db.models import Job, JobStatus, Project
from interlink.services.auth import SessionContext
from interlink.services.job_manager import job_manager
from interlink.services.metering import ensure_quota

logger = logging.getLogger(__name__)


def serialize_project(project: Project, job_counts: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    data = {
        "id": project.id,
        "user_id": project.user_id,
        "title": project.title,
        "site_url": project.site_url,
        "cornerstone_sheet": project.cornerstone_sheet,
        "created_at": project.created_at.isoformat() + "Z",
        "updated_at": project.updated_at.isoformat() + "Z",
    }
    if job_counts is not None:
        data["job_counts"] = job_counts
    return data


# ─── Projects ────────────────────────────────────────────────────────────────

def create_project(
    db: Session, ctx: SessionContext, *, title: str, site_url: str, cornerstone_sheet: Optional[str] = None
) -> Project:
    now = utcnow()
    project = Project(
        user_id=ctx.user_id,
        title=title,
        site_url=site_url,
        cornerstone_sheet=cornerstone_sheet or None,
        created_at=now,
        updated_at=now,
    )
    db.add(project)
    db.commit()
    db.refresh(project)
    logger.info(f"Project {project.id} created by user {ctx.user_id}")
    return project


def get_project(db: Session, ctx: SessionContext, project_id: str) -> Project:
    project = db.get(Project, project_id)
    if project is None or project.user_id != ctx.user_id:
        raise NotFoundError(f"Project {project_id} not found")
    return project


def job_counts_by_project(db: Session, project_ids: List[str]) -> Dict[str, Dict[str, int]]:
    counts = {pid: {status.value: 0 for status in JobStatus} for pid in project_ids}
    if not project_ids:
        return counts
    rows = db.execute(
        select(Job.project_id, Job.status, func.count(Job.id))
        .where(Job.project_id.in_(project_ids))
        .group_by(Job.project_id, Job.status)
    ).all()
    for project_id, status, count in rows:
        counts[project_id][status] = count
    return counts


def list_projects(db: Session, ctx: SessionContext) -> List[Dict[str, Any]]:
    projects = list(
        db.execute(
            select(Project)
            .where(Project.user_id == ctx.user_id)
            .order_by(Project.created_at.desc(), Project.id.desc())
        ).scalars()
    )
    counts = job_counts_by_project(db, [p.id for p in projects])
    return [serialize_project(p, counts[p.id]) for p in projects]


def update_project(
    db: Session,
    ctx: SessionContext,
    project_id: str,
    *,
    title: Optional[str] = None,
    site_url: Optional[str] = None,
    cornerstone_sheet: Optional[str] = None,
    clear_cornerstone_sheet: bool = False,
) -> Project:
    project = get_project(db, ctx, project_id)
    if title is not None:
        project.title = title
    if site_url is not None:
        project.site_url = site_url
    if cornerstone_sheet is not None:
        project.cornerstone_sheet = cornerstone_sheet
    elif clear_cornerstone_sheet:
        project.cornerstone_sheet = None
    project.updated_at = utcnow()
    db.commit()
    db.refresh(project)
    return project


# ─── Jobs ────────────────────────────────────────────────────────────────────

def create_job(db: Session, ctx: SessionContext, project_id: str, *, title: str, article_doc: str) -> Job:
    project = get_project(db, ctx, project_id)
    ensure_quota(db, ctx.user_id)
    job = job_manager.create_job(db, project, title, article_doc)
    if settings.DISPATCH_ON_CREATE:
        from interlink.tasks import dispatch_job_task

        dispatch_job_task.delay(job.id)
    return job


def list_jobs(db: Session, ctx: SessionContext, project_id: str) -> List[Job]:
    get_project(db, ctx, project_id)
    return list(
        db.execute(
            select(Job)
            .where(Job.project_id == project_id)
            .order_by(Job.created_at.desc(), Job.id.desc())
        ).scalars()
    )


def get_job(db: Session, ctx: SessionContext, job_id: str) -> Job:
    job = job_manager.get_job(db, job_id)
    if job is None or job.project.user_id != ctx.user_id:
        raise NotFoundError(f"Job {job_id} not found")
    return job


def edit_job(
    db: Session,
    ctx: SessionContext,
    job_id: str,
    *,
    title: Optional[str] = None,
    article_url: Optional[str] = None,
    status: Optional[JobStatus] = None,
) -> Job:
    """Administrative override from the dashboard edit form."""
    get_job(db, ctx, job_id)
    return job_manager.override(db, job_id, title=title, article_url=article_url, status=status)
