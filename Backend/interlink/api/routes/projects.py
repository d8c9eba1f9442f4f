"""
Project Routes: dashboard CRUD for projects and the jobs inside them.
"""
import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from interlink.api.deps import get_session_context
from interlink.api.schemas import JobCreate, JobResponse, ProjectCreate, ProjectUpdate
from interlink.core.limiter import CREATE_LIMIT, STATUS_LIMIT, limiter
from interlink.db.base import get_db
from interlink.services import projects
from interlink.services.auth import SessionContext
from interlink.services.job_manager import serialize_job

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/projects", status_code=201)
@limiter.limit(CREATE_LIMIT)
def create_project(
    request: Request,
    body: ProjectCreate,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    project = projects.create_project(
        db, ctx, title=body.title, site_url=body.site_url, cornerstone_sheet=body.cornerstone_sheet
    )
    return projects.serialize_project(project)


@router.get("/projects")
@limiter.limit(STATUS_LIMIT)
def list_projects(
    request: Request,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    return {"projects": projects.list_projects(db, ctx)}


@router.get("/projects/{project_id}")
@limiter.limit(STATUS_LIMIT)
def get_project(
    request: Request,
    project_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    project = projects.get_project(db, ctx, project_id)
    counts = projects.job_counts_by_project(db, [project.id])
    return projects.serialize_project(project, counts[project.id])


@router.patch("/projects/{project_id}")
@limiter.limit(CREATE_LIMIT)
def update_project(
    request: Request,
    project_id: str,
    body: ProjectUpdate,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    project = projects.update_project(
        db,
        ctx,
        project_id,
        title=body.title,
        site_url=body.site_url,
        cornerstone_sheet=body.cornerstone_sheet or None,
        clear_cornerstone_sheet=body.cornerstone_sheet == "",
    )
    return projects.serialize_project(project)


@router.post("/projects/{project_id}/jobs", status_code=201, response_model=JobResponse)
@limiter.limit(CREATE_LIMIT)
def create_job(
    request: Request,
    project_id: str,
    body: JobCreate,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    job = projects.create_job(db, ctx, project_id, title=body.title, article_doc=body.article_doc)
    return serialize_job(job)


@router.get("/projects/{project_id}/jobs")
@limiter.limit(STATUS_LIMIT)
def list_jobs(
    request: Request,
    project_id: str,
    ctx: SessionContext = Depends(get_session_context),
    db: Session = Depends(get_db),
):
    return {"jobs": [serialize_job(job) for job in projects.list_jobs(db, ctx, project_id)]}
