"""Builders and fakes shared by the test suite."""
import hashlib
import hmac
import json
import time
from typing import Any, Callable, Dict, List, Optional

import jwt

from careermentor.core.config import settings

PRO_PRICE = "price_1QMzcALbngEU6IxBCH6dSTSk"
PREMIUM_PRICE = "price_1QMzXsLbngEU6IxBPIeuYKYP"
PERIOD_END = 1767225600  # 2026-01-01T00:00:00Z


class FakeProvider:
    """In-memory stand-in for StripeProvider."""

    def __init__(self):
        self.customers: List[Dict[str, Any]] = []
        self.sessions: List[Dict[str, Any]] = []
        self.subscriptions: Dict[str, Dict[str, Any]] = {}
        self.on_create_customer: Optional[Callable[[str], None]] = None

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        customer_id = f"cus_test_{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "user_id": user_id, "email": email})
        hook, self.on_create_customer = self.on_create_customer, None
        if hook:
            hook(customer_id)
        return customer_id

    def create_checkout_session(self, customer_id, price_id, success_url, cancel_url, user_id) -> str:
        session_id = f"cs_test_{len(self.sessions) + 1}"
        self.sessions.append({
            "id": session_id,
            "customer": customer_id,
            "price_id": price_id,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "subscription_data": {"metadata": {"supabase_user_id": user_id}},
        })
        return session_id

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self.subscriptions[subscription_id]


def make_token(
    user_id: str = "user_alice",
    email: Optional[str] = "alice@example.com",
    *,
    secret: Optional[str] = None,
    audience: str = "authenticated",
    expires_in: int = 3600,
) -> str:
    claims = {"sub": user_id, "aud": audience, "exp": int(time.time()) + expires_in, "role": "authenticated"}
    if email:
        claims["email"] = email
    return jwt.encode(claims, secret or settings.SUPABASE_JWT_SECRET, algorithm="HS256")


def auth_headers(user_id: str = "user_alice", **kwargs) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, **kwargs)}"}


def sign(payload: bytes, secret: Optional[str] = None, timestamp: Optional[int] = None) -> str:
    """Build a stripe-signature header value for payload."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new((secret or settings.STRIPE_WEBHOOK_SIGNING_SECRET).encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def subscription_event(
    event_type: str = "customer.subscription.updated",
    *,
    user_id: Optional[str] = "user_alice",
    price_id: str = PRO_PRICE,
    status: str = "active",
    period_end: Optional[int] = PERIOD_END,
    item_period_end: Optional[int] = None,
    event_id: str = "evt_test_1",
    subscription_id: str = "sub_test_1",
) -> Dict[str, Any]:
    item: Dict[str, Any] = {"id": "si_test_1", "price": {"id": price_id}}
    if item_period_end is not None:
        item["current_period_end"] = item_period_end
    subscription: Dict[str, Any] = {
        "id": subscription_id,
        "object": "subscription",
        "status": status,
        "metadata": {"supabase_user_id": user_id} if user_id else {},
        "items": {"object": "list", "data": [item]},
    }
    if period_end is not None:
        subscription["current_period_end"] = period_end
    return {"id": event_id, "object": "event", "type": event_type, "data": {"object": subscription}}


def invoice_failed_event(
    *,
    subscription_id: Optional[str] = "sub_test_1",
    user_id: Optional[str] = None,
    event_id: str = "evt_invoice_1",
) -> Dict[str, Any]:
    invoice: Dict[str, Any] = {
        "id": "in_test_1",
        "object": "invoice",
        "subscription": subscription_id,
        "amount_due": 1999,
        "currency": "usd",
    }
    if user_id:
        invoice["subscription_details"] = {"metadata": {"supabase_user_id": user_id}}
    return {"id": event_id, "object": "event", "type": "invoice.payment_failed", "data": {"object": invoice}}


def signed_delivery(event: Dict[str, Any], secret: Optional[str] = None):
    """(headers, body) for an event, signed like Stripe does."""
    body = json.dumps(event).encode("utf-8")
    return {"stripe-signature": sign(body, secret)}, body
