"""
Stripe billing provider implementation.

Implements the BillingProvider protocol using the Stripe API, plus
webhook signature verification.
"""
import json
from typing import Dict, Any, Mapping, Optional
import stripe

from careermentor.core.config import settings
from careermentor.core.errors import InvalidRequestError, InvalidSignatureError
from careermentor.features.billing.provider import BillingProviderError

SIGNATURE_HEADER = "stripe-signature"
USER_ID_METADATA_KEY = "supabase_user_id"


class StripeProvider:
    """Stripe implementation of BillingProvider protocol."""

    def __init__(self, secret_key: Optional[str] = None, api_version: Optional[str] = None):
        """
        Initialize Stripe provider.

        Args:
            secret_key: Stripe secret key (defaults to settings.STRIPE_SECRET_KEY)
            api_version: Stripe API version pin (defaults to settings.STRIPE_API_VERSION)
        """
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY

        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")

        stripe.api_key = self.secret_key
        stripe.api_version = api_version or settings.STRIPE_API_VERSION

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        """Create a Stripe customer tagged with the user id."""
        customer_data: Dict[str, Any] = {
            "metadata": {USER_ID_METADATA_KEY: user_id}
        }
        if email:
            customer_data["email"] = email
        try:
            customer = stripe.Customer.create(**customer_data)
            return customer.id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe customer creation failed: {e}") from e

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> str:
        """Create Stripe subscription checkout session."""
        try:
            session = stripe.checkout.Session.create(
                customer=customer_id,
                line_items=[{"price": price_id, "quantity": 1}],
                mode="subscription",
                success_url=success_url,
                cancel_url=cancel_url,
                subscription_data={"metadata": {USER_ID_METADATA_KEY: user_id}},
                allow_promotion_codes=True,
                billing_address_collection="required",
                automatic_tax={"enabled": True},
                customer_update={"address": "auto", "name": "auto"},
            )
            return session.id
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe checkout session creation failed: {e}") from e

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        try:
            subscription = stripe.Subscription.retrieve(subscription_id)
            return subscription.to_dict()
        except stripe.StripeError as e:
            raise BillingProviderError(f"Stripe subscription lookup failed: {e}") from e


def _header(headers: Mapping[str, str], name: str) -> Optional[str]:
    for key, value in headers.items():
        if key.lower() == name:
            return value
    return None


def verify_webhook_signature(
    headers: Mapping[str, str],
    body: bytes,
    secret: Optional[str],
    tolerance: Optional[int] = None,
) -> Dict[str, Any]:
    """
    Verify the stripe-signature header over the raw body and decode the event.

    Returns:
        The event payload as a dict

    Raises:
        InvalidSignatureError: Missing header or failed verification
        InvalidRequestError: Body is not a JSON object
        BillingProviderError: No signing secret configured
    """
    if not secret:
        raise BillingProviderError("STRIPE_WEBHOOK_SIGNING_SECRET not configured")

    sig_header = _header(headers, SIGNATURE_HEADER)
    if not sig_header:
        raise InvalidSignatureError("No Stripe signature found")

    try:
        payload = body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise InvalidSignatureError("Webhook body is not valid UTF-8") from e

    try:
        stripe.WebhookSignature.verify_header(
            payload,
            sig_header,
            secret,
            tolerance if tolerance is not None else settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    except stripe.SignatureVerificationError as e:
        raise InvalidSignatureError(f"Invalid signature: {e}") from e

    try:
        event = json.loads(payload)
    except ValueError as e:
        raise InvalidRequestError(f"Invalid payload: {e}") from e
    if not isinstance(event, dict):
        raise InvalidRequestError("Invalid payload: expected a JSON object")
    return event
