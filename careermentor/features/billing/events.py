"""
Stripe webhook events as a closed tagged union.

parse_event() maps the raw event dict onto one of:
- SubscriptionChanged  (customer.subscription.created / .updated)
- SubscriptionDeleted  (customer.subscription.deleted)
- InvoicePaymentFailed (invoice.payment_failed)
- IgnoredEvent         (anything else)

Parsing never raises for missing business fields (user id, price); the
handlers decide whether those are fatal.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from careermentor.core.errors import InvalidRequestError
from careermentor.features.billing.stripe_provider import USER_ID_METADATA_KEY

SUBSCRIPTION_CHANGED_TYPES = frozenset({
    "customer.subscription.created",
    "customer.subscription.updated",
})
SUBSCRIPTION_DELETED_TYPE = "customer.subscription.deleted"
INVOICE_PAYMENT_FAILED_TYPE = "invoice.payment_failed"


@dataclass(frozen=True)
class SubscriptionChanged:
    event_id: str
    event_type: str
    subscription_id: Optional[str]
    user_id: Optional[str]
    price_id: Optional[str]
    status: Optional[str]
    current_period_end: Optional[datetime]


@dataclass(frozen=True)
class SubscriptionDeleted:
    event_id: str
    event_type: str
    subscription_id: Optional[str]
    user_id: Optional[str]
    price_id: Optional[str]
    cancel_reason: Optional[str]


@dataclass(frozen=True)
class InvoicePaymentFailed:
    event_id: str
    event_type: str
    invoice_id: Optional[str]
    subscription_id: Optional[str]
    user_id: Optional[str]  # Only when the invoice embeds subscription metadata
    amount_due: Optional[int] = None
    currency: Optional[str] = None


@dataclass(frozen=True)
class IgnoredEvent:
    event_id: str
    event_type: str
    user_id: Optional[str] = field(default=None)


BillingEvent = Union[SubscriptionChanged, SubscriptionDeleted, InvoicePaymentFailed, IgnoredEvent]


def _as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _first_item(subscription: Dict[str, Any]) -> Dict[str, Any]:
    items = _as_dict(subscription.get("items")).get("data") or []
    return _as_dict(items[0]) if items else {}


def _timestamp(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    try:
        return datetime.fromtimestamp(int(value), tz=timezone.utc)
    except (TypeError, ValueError, OverflowError) as e:
        raise InvalidRequestError(f"Invalid timestamp: {value!r}") from e


def _user_id(metadata: Any) -> Optional[str]:
    user_id = _as_dict(metadata).get(USER_ID_METADATA_KEY)
    return user_id or None


def _price_id(subscription: Dict[str, Any]) -> Optional[str]:
    return _as_dict(_first_item(subscription).get("price")).get("id")


def _period_end(subscription: Dict[str, Any]) -> Optional[datetime]:
    # Newer API versions moved current_period_end onto subscription items
    value = subscription.get("current_period_end")
    if value is None:
        value = _first_item(subscription).get("current_period_end")
    return _timestamp(value)


def _invoice_subscription(invoice: Dict[str, Any]):
    """Return (subscription_id, embedded metadata) across invoice API shapes."""
    subscription = invoice.get("subscription")
    if isinstance(subscription, dict):
        return subscription.get("id"), subscription.get("metadata")
    details = _as_dict(invoice.get("subscription_details"))
    if subscription:
        return subscription, details.get("metadata")
    parent_details = _as_dict(_as_dict(invoice.get("parent")).get("subscription_details"))
    return parent_details.get("subscription"), parent_details.get("metadata")


def parse_event(event: Dict[str, Any]) -> BillingEvent:
    """
    Map a verified Stripe event dict onto the tagged union.

    Raises:
        InvalidRequestError: Event lacks id/type or data.object
    """
    event_id = event.get("id")
    event_type = event.get("type")
    if not event_id or not event_type:
        raise InvalidRequestError("Event is missing id or type")

    obj = _as_dict(event.get("data")).get("object")
    if not isinstance(obj, dict):
        raise InvalidRequestError("Event is missing data.object")

    if event_type in SUBSCRIPTION_CHANGED_TYPES:
        return SubscriptionChanged(
            event_id=event_id,
            event_type=event_type,
            subscription_id=obj.get("id"),
            user_id=_user_id(obj.get("metadata")),
            price_id=_price_id(obj),
            status=obj.get("status"),
            current_period_end=_period_end(obj),
        )

    if event_type == SUBSCRIPTION_DELETED_TYPE:
        return SubscriptionDeleted(
            event_id=event_id,
            event_type=event_type,
            subscription_id=obj.get("id"),
            user_id=_user_id(obj.get("metadata")),
            price_id=_price_id(obj),
            cancel_reason=_as_dict(obj.get("cancellation_details")).get("reason"),
        )

    if event_type == INVOICE_PAYMENT_FAILED_TYPE:
        subscription_id, metadata = _invoice_subscription(obj)
        return InvoicePaymentFailed(
            event_id=event_id,
            event_type=event_type,
            invoice_id=obj.get("id"),
            subscription_id=subscription_id,
            user_id=_user_id(metadata),
            amount_due=obj.get("amount_due"),
            currency=obj.get("currency"),
        )

    return IgnoredEvent(event_id=event_id, event_type=event_type)
