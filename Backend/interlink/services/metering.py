"""
Usage Metering: keeps one usage record per (user, billing period) in step
with billing-provider events, and meters job consumption against it.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from interlink.core.config import settings
from interlink.core.errors import QuotaExceededError
from interlink.db.base import utcnow
from interlink.db.models import Plan, Usage, User
from interlink.services.billing import (
    PAYMENT_SUCCEEDED,
    SUBSCRIPTION_DELETED,
    BillingClient,
    BillingEvent,
    InvoiceObject,
    SubscriptionObject,
    parse_object,
)

logger = logging.getLogger(__name__)


@dataclass
class EventOutcome:
    event_type: str
    applied: bool
    detail: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"received": True, "type": self.event_type, "applied": self.applied, "detail": self.detail}


def calendar_month_bounds(now: datetime) -> Tuple[datetime, datetime]:
    """[first instant of this month, first instant of next month)"""
    start = datetime(now.year, now.month, 1)
    if now.month == 12:
        end = datetime(now.year + 1, 1, 1)
    else:
        end = datetime(now.year, now.month + 1, 1)
    return start, end

# ─── Usage records ───────────────────────────────────────────────────────────

def upsert_usage(
    db: Session,
    *,
    user_id: str,
    plan: Plan,
    period_start: datetime,
    period_end: datetime,
    subscription_id: Optional[str],
) -> Usage:
    """
    Create or replace the usage record keyed by (user_id, period_start).
    jobs_used resets to 0 and jobs_limit comes from the plan, so replaying
    the same event leaves the record unchanged.
    """
    values = {
        "plan_id": plan.id,
        "jobs_used": 0,
        "jobs_limit": plan.monthly_jobs_limit,
        "billing_period_end": period_end,
        "stripe_subscription_id": subscription_id,
        "updated_at": utcnow(),
    }
    key = (Usage.user_id == user_id, Usage.billing_period_start == period_start)

    usage = db.execute(select(Usage).where(*key)).scalar_one_or_none()
    if usage is None:
        usage = Usage(user_id=user_id, billing_period_start=period_start, **values)
        db.add(usage)
        try:
            db.commit()
        except IntegrityError:
            # A concurrent delivery inserted the same key first; fall through to update it
            db.rollback()
            db.execute(update(Usage).where(*key).values(**values))
            db.commit()
            usage = db.execute(select(Usage).where(*key)).scalar_one()
    else:
        for name, value in values.items():
            setattr(usage, name, value)
        db.commit()
    db.refresh(usage)
    logger.info(
        f"Usage upserted for user {user_id}: plan={plan.name} limit={usage.jobs_limit} "
        f"period={period_start.isoformat()}..{period_end.isoformat()}"
    )
    return usage


def current_usage_record(db: Session, user_id: str, now: Optional[datetime] = None) -> Optional[Usage]:
    now = now or utcnow()
    return db.execute(
        select(Usage)
        .where(
            Usage.user_id == user_id,
            Usage.billing_period_start <= now,
            Usage.billing_period_end > now,
        )
        .order_by(Usage.billing_period_start.desc())
        .limit(1)
    ).scalar_one_or_none()


def current_usage(db: Session, user_id: str, now: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
    """Quota-bar summary for the period containing `now`."""
    usage = current_usage_record(db, user_id, now)
    if usage is None:
        return None
    if usage.jobs_limit > 0:
        percentage = min(100, round(usage.jobs_used * 100 / usage.jobs_limit))
    else:
        percentage = 100
    return {
        "jobs_used": usage.jobs_used,
        "jobs_limit": usage.jobs_limit,
        "percentage": percentage,
        "plan_name": usage.plan.name if usage.plan else None,
        "billing_period_start": usage.billing_period_start.isoformat() + "Z",
        "billing_period_end": usage.billing_period_end.isoformat() + "Z",
    }


def ensure_quota(db: Session, user_id: str) -> None:
    """Refuse new jobs once the current period's quota is used up. No record = not metered."""
    if not settings.ENFORCE_QUOTA:
        return
    usage = current_usage_record(db, user_id)
    if usage is not None and usage.jobs_used >= usage.jobs_limit:
        raise QuotaExceededError(
            f"Monthly job quota reached ({usage.jobs_used}/{usage.jobs_limit})"
        )


def record_job_consumed(db: Session, user_id: str, now: Optional[datetime] = None) -> bool:
    """
    Count one processed job against the current period. Runs inside the
    caller's transaction (no commit).
    """
    usage = current_usage_record(db, user_id, now)
    if usage is None:
        logger.info(f"No usage record for user {user_id}; job not metered.")
        return False
    db.execute(
        update(Usage)
        .where(Usage.id == usage.id)
        .values(jobs_used=Usage.jobs_used + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return True

# ─── Billing events ──────────────────────────────────────────────────────────

def resolve_user(db: Session, customer_id: str, client: BillingClient) -> Optional[User]:
    """Provider customer -> internal user, by stored customer id first, then by email."""
    user = db.execute(select(User).where(User.stripe_customer_id == customer_id)).scalar_one_or_none()
    if user is not None:
        return user

    customer = client.retrieve_customer(customer_id)
    if customer is None or customer.deleted:
        logger.error(f"Customer {customer_id} not found or deleted")
        return None
    if not customer.email:
        logger.error(f"No email found for customer {customer_id}")
        return None

    user = db.execute(select(User).where(User.email == customer.email.lower())).scalar_one_or_none()
    if user is None:
        logger.error(f"User not found for customer {customer_id} ({customer.email})")
        return None
    if user.stripe_customer_id is None:
        user.stripe_customer_id = customer_id
        db.commit()
    return user


def _plan_by_price(db: Session, price_id: str) -> Optional[Plan]:
    return db.execute(select(Plan).where(Plan.stripe_price_id == price_id)).scalar_one_or_none()


def _handle_payment_succeeded(db: Session, event: BillingEvent, client: BillingClient) -> EventOutcome:
    invoice = parse_object(event, InvoiceObject)
    if not invoice.subscription:
        logger.info(f"Event {event.id}: no subscription ID found in invoice")
        return EventOutcome(event.type, False, "invoice has no subscription")

    subscription = client.retrieve_subscription(invoice.subscription)
    if subscription is None:
        logger.error(f"Event {event.id}: subscription {invoice.subscription} not found")
        return EventOutcome(event.type, False, "subscription not found")

    user = resolve_user(db, subscription.customer_id, client)
    if user is None:
        return EventOutcome(event.type, False, "user not found")

    if not subscription.price_id:
        logger.error(f"Event {event.id}: no price ID found in subscription {subscription.id}")
        return EventOutcome(event.type, False, "subscription has no price")
    plan = _plan_by_price(db, subscription.price_id)
    if plan is None:
        logger.error(f"Event {event.id}: plan not found for price ID {subscription.price_id}")
        return EventOutcome(event.type, False, "plan not found")

    upsert_usage(
        db,
        user_id=user.id,
        plan=plan,
        period_start=subscription.period_start,
        period_end=subscription.period_end,
        subscription_id=subscription.id,
    )
    return EventOutcome(event.type, True, f"usage updated for user {user.id}")


def _handle_subscription_deleted(
    db: Session, event: BillingEvent, client: BillingClient, now: Optional[datetime]
) -> EventOutcome:
    subscription = parse_object(event, SubscriptionObject)
    user = resolve_user(db, subscription.customer, client)
    if user is None:
        return EventOutcome(event.type, False, "user not found")

    free_plan = _plan_by_price(db, settings.FREE_PLAN_PRICE_ID)
    if free_plan is None:
        logger.error(f"Free plan ({settings.FREE_PLAN_PRICE_ID}) is not configured")
        return EventOutcome(event.type, False, "free plan not configured")

    period_start, period_end = calendar_month_bounds(now or utcnow())
    upsert_usage(
        db,
        user_id=user.id,
        plan=free_plan,
        period_start=period_start,
        period_end=period_end,
        subscription_id=None,
    )
    logger.info(f"Reset user {user.id} to free plan")
    return EventOutcome(event.type, True, f"user {user.id} reset to free plan")


def handle_event(
    db: Session,
    event: BillingEvent,
    client: Optional[BillingClient] = None,
    now: Optional[datetime] = None,
) -> EventOutcome:
    """Apply a verified billing event. Unhandled types are acknowledged and ignored."""
    client = client or BillingClient()
    logger.info(f"Processing billing event {event.id}: {event.type}")
    if event.type == PAYMENT_SUCCEEDED:
        return _handle_payment_succeeded(db, event, client)
    if event.type == SUBSCRIPTION_DELETED:
        return _handle_subscription_deleted(db, event, client, now)
    logger.info(f"Unhandled event type: {event.type}")
    return EventOutcome(event.type, False, "unhandled event type")
