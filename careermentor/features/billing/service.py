"""
Billing service orchestrator.

Coordinates:
- Billing customer linkage (created lazily, once per user)
- Hosted checkout sessions
- Webhook verification, dispatch and entitlement writes
- The billing_events delivery log

All Stripe-specific code is in stripe_provider.py. The plan catalog is
passed in by the caller; nothing here reads it from global state.
"""
import os
import hashlib
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, Callable, Mapping
from datetime import datetime, timezone
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from careermentor.core.auth import AuthenticatedUser
from careermentor.core.config import settings
from careermentor.core.database import get_db_session, billing_events
from careermentor.core.errors import (
    AppError,
    InvalidRequestError,
    InvalidSignatureError,
    MissingLinkageError,
    StoreWriteError,
    UnknownPlanError,
)
from careermentor.core.logging import log_event
from careermentor.features.audit.service import record_audit_event
from careermentor.features.billing.events import (
    BillingEvent,
    IgnoredEvent,
    InvoicePaymentFailed,
    SubscriptionChanged,
    SubscriptionDeleted,
    parse_event,
)
from careermentor.features.billing.provider import BillingProvider, BillingProviderError
from careermentor.features.billing.stripe_provider import (
    StripeProvider,
    USER_ID_METADATA_KEY,
    verify_webhook_signature,
)
from careermentor.features.entitlements.service import (
    apply_plan,
    get_profile,
    reset_to_free,
    set_billing_customer_id,
    set_subscription_status,
)
from careermentor.features.plans.catalog import PlanCatalog
from careermentor.models.entitlement import EntitlementRecord

logger = logging.getLogger(__name__)

PAST_DUE_STATUS = "past_due"


@dataclass(frozen=True)
class WebhookOutcome:
    """What a webhook delivery did."""
    event_id: str
    event_type: str
    handled: bool
    user_id: Optional[str]
    record: Optional[EntitlementRecord]


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(os.getenv("STRIPE_SECRET_KEY") or settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    return StripeProvider()


# ---------------------------------------------------------------------------
# Checkout
# ---------------------------------------------------------------------------

def ensure_customer_for_user(
    user: AuthenticatedUser,
    *,
    provider: BillingProvider,
    free_credits: Optional[int] = None,
) -> str:
    """
    Return the user's billing customer id, creating it on first checkout.

    Check-then-create across two transactions: the read is committed before
    the processor call, and the new id is persisted afterwards. Two concurrent
    first checkouts may each create a customer; the last persisted id wins.

    Raises:
        BillingProviderError: If customer creation fails
        StoreWriteError: If the id cannot be persisted
    """
    record = get_profile(user.user_id)
    if record and record.billing_customer_id:
        return record.billing_customer_id

    customer_id = provider.create_customer(user.user_id, user.email)
    set_billing_customer_id(
        user.user_id,
        customer_id,
        free_credits=settings.FREE_ANALYSIS_CREDITS if free_credits is None else free_credits,
    )
    log_event("info", "billing.customer_created", user_id=user.user_id, extra={"customer_id": customer_id})
    return customer_id


def validate_checkout_request(
    price_id: Optional[str], success_url: Optional[str], cancel_url: Optional[str]
) -> None:
    """Reject a malformed checkout request; no side effects."""
    if not PlanCatalog.is_valid_price_id(price_id):
        raise InvalidRequestError("Invalid price ID")
    if not success_url or not cancel_url:
        raise InvalidRequestError("Missing redirect URLs")


def start_checkout(
    user: AuthenticatedUser,
    price_id: Optional[str],
    success_url: Optional[str],
    cancel_url: Optional[str],
    *,
    provider: Optional[BillingProvider],
    free_credits: Optional[int] = None,
) -> str:
    """
    Start a subscription checkout session.

    Only the price id format is checked here; which tier it grants is decided
    by the webhook when the subscription event arrives.

    Returns:
        Checkout session ID

    Raises:
        InvalidRequestError: Bad price id or redirect URLs (before any side effect)
        BillingProviderError: Billing not configured or processor failure
    """
    validate_checkout_request(price_id, success_url, cancel_url)
    if provider is None:
        raise BillingProviderError("Billing not configured")

    customer_id = ensure_customer_for_user(user, provider=provider, free_credits=free_credits)

    session_id = provider.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=success_url,
        cancel_url=cancel_url,
        user_id=user.user_id,
    )
    log_event(
        "info",
        "billing.checkout_started",
        user_id=user.user_id,
        extra={"price_id": price_id, "session_id": session_id},
    )
    return session_id


# ---------------------------------------------------------------------------
# Webhook handlers
# ---------------------------------------------------------------------------

def _handle_subscription_changed(
    event: SubscriptionChanged, *, catalog: PlanCatalog, provider: Optional[BillingProvider]
) -> Optional[EntitlementRecord]:
    if not event.user_id:
        raise MissingLinkageError(f"Subscription {event.subscription_id} has no {USER_ID_METADATA_KEY} metadata")

    plan = catalog.resolve_plan(event.price_id)
    record = apply_plan(
        event.user_id,
        role=plan.tier,
        analysis_credits=plan.credit_allotment,
        subscription_status=event.status,
        subscription_period_end=event.current_period_end,
    )
    record_audit_event(
        action_type="subscription_updated",
        resource_type="subscriptions",
        resource_id=event.subscription_id,
        details={
            "user_id": event.user_id,
            "plan": plan.tier.value,
            "status": event.status,
            "price_id": event.price_id,
        },
    )
    return record


def _handle_subscription_deleted(
    event: SubscriptionDeleted, *, catalog: PlanCatalog, provider: Optional[BillingProvider]
) -> Optional[EntitlementRecord]:
    if not event.user_id:
        raise MissingLinkageError(f"Subscription {event.subscription_id} has no {USER_ID_METADATA_KEY} metadata")

    record = reset_to_free(event.user_id, free_credits=catalog.free_credits)
    record_audit_event(
        action_type="subscription_canceled",
        resource_type="subscriptions",
        resource_id=event.subscription_id,
        details={
            "user_id": event.user_id,
            "previous_price_id": event.price_id,
            "cancel_reason": event.cancel_reason or "unknown",
        },
    )
    return record


def _handle_payment_failed(
    event: InvoicePaymentFailed, *, catalog: PlanCatalog, provider: Optional[BillingProvider]
) -> Optional[EntitlementRecord]:
    if not event.subscription_id:
        logger.info(f"[billing] invoice {event.invoice_id} has no subscription, ignoring")
        return None

    user_id = event.user_id
    if not user_id:
        provider = provider or get_provider()
        if provider is None:
            raise BillingProviderError("Billing not configured")
        subscription = provider.retrieve_subscription(event.subscription_id)
        user_id = (subscription.get("metadata") or {}).get(USER_ID_METADATA_KEY)
    if not user_id:
        raise MissingLinkageError(f"Subscription {event.subscription_id} has no {USER_ID_METADATA_KEY} metadata")

    record = set_subscription_status(user_id, PAST_DUE_STATUS, free_credits=catalog.free_credits)
    record_audit_event(
        action_type="payment_failed",
        resource_type="invoices",
        resource_id=event.invoice_id,
        details={
            "user_id": user_id,
            "subscription_id": event.subscription_id,
            "amount": event.amount_due,
            "currency": event.currency,
        },
    )
    return record


def _handle_ignored(
    event: IgnoredEvent, *, catalog: PlanCatalog, provider: Optional[BillingProvider]
) -> Optional[EntitlementRecord]:
    logger.info(f"[billing] ignoring unhandled event type: {event.event_type}")
    return None


_HANDLERS: Dict[type, Callable[..., Optional[EntitlementRecord]]] = {
    SubscriptionChanged: _handle_subscription_changed,
    SubscriptionDeleted: _handle_subscription_deleted,
    InvoicePaymentFailed: _handle_payment_failed,
    IgnoredEvent: _handle_ignored,
}


# ---------------------------------------------------------------------------
# Delivery log
# ---------------------------------------------------------------------------

def _record_delivery(event: BillingEvent, payload_hash: str) -> None:
    """Upsert the billing_events row; redeliveries bump attempts and reset status."""
    try:
        with get_db_session() as session:
            result = session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == event.event_id)
                .values(
                    attempts=billing_events.c.attempts + 1,
                    payload_hash=payload_hash,
                    processed=False,
                    error=None,
                )
            )
            exists = bool(result.rowcount)
        if not exists:
            try:
                with get_db_session() as session:
                    session.execute(
                        insert(billing_events).values(
                            stripe_event_id=event.event_id,
                            event_type=event.event_type,
                            user_id=getattr(event, "user_id", None),
                            payload_hash=payload_hash,
                            attempts=1,
                            processed=False,
                        )
                    )
            except IntegrityError:
                # Concurrent delivery of the same event inserted first
                logger.debug(f"[billing] event {event.event_id} logged concurrently")
    except SQLAlchemyError as e:
        raise StoreWriteError(f"Failed to record billing event {event.event_id}: {e}") from e


def _finish_delivery(event_id: str, *, user_id: Optional[str], error: Optional[str]) -> None:
    values: Dict[str, Any] = {"processed": error is None, "error": error}
    if error is None:
        values["processed_at"] = datetime.now(timezone.utc)
    if user_id:
        values["user_id"] = user_id
    try:
        with get_db_session() as session:
            session.execute(
                update(billing_events)
                .where(billing_events.c.stripe_event_id == event_id)
                .values(**values)
            )
    except SQLAlchemyError as e:
        raise StoreWriteError(f"Failed to update billing event {event_id}: {e}") from e


def get_billing_event(stripe_event_id: str) -> Optional[Dict[str, Any]]:
    with get_db_session() as session:
        row = session.execute(
            select(billing_events).where(billing_events.c.stripe_event_id == stripe_event_id)
        ).first()
        return dict(row._mapping) if row else None


# ---------------------------------------------------------------------------
# Webhook entrypoint
# ---------------------------------------------------------------------------

def process_webhook_event(
    headers: Mapping[str, str],
    body: bytes,
    *,
    catalog: PlanCatalog,
    webhook_secret: Optional[str],
    provider: Optional[BillingProvider] = None,
    tolerance: Optional[int] = None,
) -> WebhookOutcome:
    """
    Verify and apply one webhook delivery.

    1. Verify signature (nothing is read or written before this passes)
    2. Parse into the event union
    3. Log the delivery
    4. Dispatch to the handler for the event's arm
    5. Mark the delivery processed, or store the error and re-raise

    Redeliveries are applied again; every write is a pure overwrite, so
    re-applying the same event yields the same record.

    Raises:
        InvalidSignatureError, InvalidRequestError, MissingLinkageError,
        UnknownPlanError, StoreWriteError, BillingProviderError
    """
    try:
        payload = verify_webhook_signature(headers, body, webhook_secret, tolerance)
    except InvalidSignatureError as e:
        log_event("warning", "billing.webhook.invalid_signature", error_code=e.code, extra={"reason": e.message})
        raise

    event = parse_event(payload)
    _record_delivery(event, hashlib.sha256(body).hexdigest())

    handler = _HANDLERS[type(event)]
    try:
        record = handler(event, catalog=catalog, provider=provider)
    except AppError as e:
        level = "error" if isinstance(e, (MissingLinkageError, UnknownPlanError)) else "warning"
        log_event(
            level,
            "billing.webhook.failed",
            user_id=getattr(event, "user_id", None),
            event_id=event.event_id,
            event_type=event.event_type,
            error_code=e.code,
            extra={"reason": e.message},
        )
        _finish_delivery(event.event_id, user_id=getattr(event, "user_id", None), error=f"{e.code}: {e.message}")
        raise
    except Exception as e:
        logger.exception(f"[billing] webhook {event.event_id} failed")
        _finish_delivery(event.event_id, user_id=getattr(event, "user_id", None), error=str(e))
        raise

    user_id = record.user_id if record else None
    _finish_delivery(event.event_id, user_id=user_id, error=None)
    handled = not isinstance(event, IgnoredEvent) and record is not None
    log_event(
        "info",
        "billing.webhook.applied" if handled else "billing.webhook.skipped",
        user_id=user_id,
        event_id=event.event_id,
        event_type=event.event_type,
    )
    return WebhookOutcome(
        event_id=event.event_id,
        event_type=event.event_type,
        handled=handled,
        user_id=user_id,
        record=record,
    )
