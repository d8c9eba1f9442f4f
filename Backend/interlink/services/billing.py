"""
billing.py
~~~~~~~~~~
Billing-provider boundary: webhook signature verification, validated event
payloads, and a thin REST client for the lookups usage metering needs.

Signatures follow the Stripe scheme: header `t=<unix>,v1=<hex>` where
v1 = HMAC-SHA256(secret, "<t>.<raw body>").
"""
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from interlink.core.config import settings
from interlink.core.errors import SignatureInvalidError, UpstreamFailureError, ValidationError

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "stripe-signature"
PAYMENT_SUCCEEDED = "invoice.payment_succeeded"
SUBSCRIPTION_DELETED = "customer.subscription.deleted"

# ─── Signature ───────────────────────────────────────────────────────────────

def _sign(payload: bytes, secret: str, timestamp: int) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def build_signature_header(payload: bytes, secret: str, timestamp: Optional[int] = None) -> str:
    timestamp = int(time.time()) if timestamp is None else timestamp
    return f"t={timestamp},v1={_sign(payload, secret, timestamp)}"


def verify_signature(
    payload: bytes,
    header: Optional[str],
    secret: Optional[str] = None,
    tolerance: Optional[int] = None,
    now: Optional[float] = None,
) -> None:
    """Raise SignatureInvalidError unless header is a fresh, valid signature of payload."""
    secret = settings.STRIPE_WEBHOOK_SECRET if secret is None else secret
    tolerance = settings.STRIPE_SIGNATURE_TOLERANCE_SECONDS if tolerance is None else tolerance
    if not secret:
        raise SignatureInvalidError("Webhook secret is not configured")
    if not header:
        raise SignatureInvalidError(f"Missing {SIGNATURE_HEADER} header")

    timestamp: Optional[int] = None
    candidates: List[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t" and value.isdigit():
            timestamp = int(value)
        elif key == "v1" and value:
            candidates.append(value)
    if timestamp is None or not candidates:
        raise SignatureInvalidError("Malformed signature header")

    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance:
        raise SignatureInvalidError("Signature timestamp outside tolerance")

    expected = _sign(payload, secret, timestamp)
    if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
        raise SignatureInvalidError("Webhook signature verification failed")

# ─── Event payloads ──────────────────────────────────────────────────────────

class EventData(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    object_: Dict[str, Any] = Field(alias="object")


class BillingEvent(BaseModel):
    id: str
    type: str
    data: EventData


def expanded_id(value: Any) -> Any:
    """Reference fields arrive as an id or, when expanded, as the object itself."""
    if isinstance(value, dict):
        return value.get("id")
    return value


class InvoiceObject(BaseModel):
    id: Optional[str] = None
    customer: Optional[str] = None
    subscription: Optional[str] = None

    @field_validator("customer", "subscription", mode="before")
    @classmethod
    def collapse_expanded(cls, value: Any) -> Any:
        return expanded_id(value)


class SubscriptionObject(BaseModel):
    id: str
    customer: str

    @field_validator("customer", mode="before")
    @classmethod
    def collapse_expanded(cls, value: Any) -> Any:
        return expanded_id(value)


def parse_event(payload: bytes) -> BillingEvent:
    try:
        return BillingEvent.model_validate(json.loads(payload))
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ValidationError(f"Webhook body is not valid JSON: {e}")
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed billing event: {e.errors()[0]['msg']}")


def parse_object(event: BillingEvent, model: type[BaseModel]) -> BaseModel:
    try:
        return model.model_validate(event.data.object_)
    except PydanticValidationError as e:
        raise ValidationError(f"Malformed {event.type} object: {e.errors()[0]['msg']}")

# ─── Provider lookups ────────────────────────────────────────────────────────

@dataclass
class SubscriptionInfo:
    id: str
    customer_id: str
    price_id: Optional[str]
    period_start: datetime
    period_end: datetime


def _from_unix(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=timezone.utc).replace(tzinfo=None)


def parse_subscription(data: Dict[str, Any]) -> SubscriptionInfo:
    """Subscription JSON -> SubscriptionInfo. Period bounds may live on the first item in newer API versions."""
    items = (data.get("items") or {}).get("data") or []
    first_item = items[0] if items else {}
    price_id = (first_item.get("price") or {}).get("id")
    start = data.get("current_period_start") or first_item.get("current_period_start")
    end = data.get("current_period_end") or first_item.get("current_period_end")
    if start is None or end is None:
        raise ValidationError(f"Subscription {data.get('id')} has no billing period")
    return SubscriptionInfo(
        id=data["id"],
        customer_id=expanded_id(data.get("customer")),
        price_id=price_id,
        period_start=_from_unix(start),
        period_end=_from_unix(end),
    )


@dataclass
class CustomerInfo:
    id: str
    email: Optional[str]
    deleted: bool = False


class BillingClient:
    """Minimal Stripe REST client (GET subscription / customer)."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.api_key = settings.STRIPE_API_KEY if api_key is None else api_key
        self.base_url = (base_url or settings.STRIPE_API_BASE).rstrip("/")
        self.transport = transport
        self.timeout = timeout

    def _get(self, path: str) -> Optional[Dict[str, Any]]:
        if not self.api_key:
            raise UpstreamFailureError("STRIPE_API_KEY is not configured")
        try:
            with httpx.Client(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
                headers={"Authorization": f"Bearer {self.api_key}"},
            ) as client:
                response = client.get(path)
        except httpx.HTTPError as e:
            raise UpstreamFailureError(f"Billing provider unreachable: {e}")
        if response.status_code == 404:
            return None
        if not response.is_success:
            raise UpstreamFailureError(f"Billing provider returned HTTP {response.status_code} for {path}")
        return response.json()

    def retrieve_subscription(self, subscription_id: str) -> Optional[SubscriptionInfo]:
        data = self._get(f"/v1/subscriptions/{subscription_id}")
        return parse_subscription(data) if data else None

    def retrieve_customer(self, customer_id: str) -> Optional[CustomerInfo]:
        data = self._get(f"/v1/customers/{customer_id}")
        if not data:
            return None
        return CustomerInfo(id=data["id"], email=data.get("email"), deleted=bool(data.get("deleted")))
