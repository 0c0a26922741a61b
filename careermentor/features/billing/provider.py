"""
Billing provider protocol.

Defines the interface the billing service needs from a payment processor.
Stripe is the only implementation; tests substitute a fake.
"""
from typing import Protocol, Dict, Any, Optional

from careermentor.core.errors import AppError


class BillingProvider(Protocol):
    """
    Protocol for billing providers.

    Implementations must handle:
    - Customer creation (tagged with the internal user id)
    - Hosted checkout session creation
    - Subscription lookup (for invoice events)
    """

    def create_customer(self, user_id: str, email: Optional[str] = None) -> str:
        """
        Create a billing customer for the user.

        Args:
            user_id: Internal user ID, stored as metadata.supabase_user_id
            email: User email (optional)

        Returns:
            Provider customer ID (e.g., Stripe customer ID)

        Raises:
            BillingProviderError: If customer creation fails
        """
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        user_id: str,
    ) -> str:
        """
        Create a hosted subscription checkout session.

        The user id must be attached to the resulting subscription's metadata;
        it is the only link from later lifecycle events back to the user.

        Returns:
            Checkout session ID

        Raises:
            BillingProviderError: If session creation fails
        """
        ...

    def retrieve_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """
        Fetch a subscription as a plain dict.

        Raises:
            BillingProviderError: If the lookup fails
        """
        ...


class BillingProviderError(AppError):
    """Payment processor API failure or misconfiguration."""
    code = "billing_provider_error"
    status_code = 502
