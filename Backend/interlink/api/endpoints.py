from fastapi import APIRouter

from interlink.api.routes import auth, internal, jobs, organizations, projects, snapshots, status, webhooks

router = APIRouter()

router.include_router(auth.router, tags=["auth"])
router.include_router(projects.router, tags=["projects"])
router.include_router(jobs.router, tags=["jobs"])
router.include_router(organizations.router, tags=["organizations"])
router.include_router(status.router, tags=["realtime"])
router.include_router(snapshots.router, tags=["snapshots"])
router.include_router(internal.router, tags=["internal"])
router.include_router(webhooks.router, tags=["webhooks"])
