"""
Webhook Routes: billing provider events.
The raw body is verified before anything is parsed or written.
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from interlink.core.limiter import WEBHOOK_LIMIT, limiter
from interlink.db.base import get_db
from interlink.services.billing import SIGNATURE_HEADER, parse_event, verify_signature
from interlink.services.metering import handle_event

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/webhooks/billing")
@limiter.limit(WEBHOOK_LIMIT)
async def billing_webhook(request: Request, db: Session = Depends(get_db)):
    payload = await request.body()
    verify_signature(payload, request.headers.get(SIGNATURE_HEADER))
    event = parse_event(payload)
    # Provider lookups are blocking HTTP calls
    outcome = await run_in_threadpool(handle_event, db, event)
    return outcome.to_dict()
