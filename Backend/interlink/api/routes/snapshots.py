"""
Snapshot Routes: serves stored before/after documents by reference URL.
"""
import logging

from fastapi import APIRouter, Request
from fastapi.responses import Response

from interlink.core.limiter import STATUS_LIMIT, limiter
from interlink.services.storage import HTML_CONTENT_TYPE, get_storage_provider

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/snapshots/{key:path}")
@limiter.limit(STATUS_LIMIT)
def download_snapshot(request: Request, key: str, download: bool = False):
    content = get_storage_provider().read(key)
    headers = {
        # Rendered with scripts disabled and an opaque origin
        "Content-Security-Policy": "sandbox",
        "X-Content-Type-Options": "nosniff",
    }
    if download:
        headers["Content-Disposition"] = f"attachment; filename={key.rsplit('/', 1)[-1]}"
    return Response(content=content, media_type=HTML_CONTENT_TYPE, headers=headers)
