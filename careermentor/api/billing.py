"""
Billing API routes.

Surface:
- POST /api/billing/checkout: Create checkout session
- POST /api/billing/webhook: Handle Stripe webhooks
- GET  /api/billing/entitlement: Current user's entitlement record
- POST /api/billing/entitlement/consume: Spend one analysis credit

Checkout and webhook failures are rendered as 400 {"error", "code"};
the processor retries any non-2xx webhook response.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field, ValidationError as PydanticValidationError

from careermentor.api.deps import (
    get_billing_provider,
    get_credit_gate,
    get_plan_catalog,
    get_webhook_secret,
)
from careermentor.core.auth import AuthenticatedUser, get_current_user
from careermentor.core.errors import AppError, InvalidRequestError
from careermentor.features.billing.provider import BillingProvider
from careermentor.features.billing.service import (
    process_webhook_event,
    start_checkout,
    validate_checkout_request,
)
from careermentor.features.credits.gate import CreditGate
from careermentor.features.entitlements.service import get_or_create_profile
from careermentor.features.plans.catalog import PlanCatalog

logger = logging.getLogger("careermentor")

router = APIRouter(prefix="/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    """Request to create checkout session."""
    model_config = ConfigDict(populate_by_name=True)

    price_id: str = Field(alias="priceId")
    success_url: str = Field(alias="successUrl")
    cancel_url: str = Field(alias="cancelUrl")


class CheckoutResponse(BaseModel):
    sessionId: str


class EntitlementResponse(BaseModel):
    role: str
    subscriptionStatus: Optional[str] = None
    subscriptionPeriodEnd: Optional[str] = None  # ISO8601
    analysisCredits: int
    canCreateAnalysis: bool


class ConsumeResponse(BaseModel):
    allowed: bool
    analysisCredits: int


def _billing_error(e: AppError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": e.message, "code": e.code})


async def _parse_checkout(req: Request) -> CheckoutRequest:
    try:
        body = await req.json()
    except ValueError as e:
        raise InvalidRequestError("Request body must be JSON") from e
    if not isinstance(body, dict):
        raise InvalidRequestError("Request body must be a JSON object")
    try:
        return CheckoutRequest.model_validate(body)
    except PydanticValidationError as e:
        missing = ", ".join(str(err["loc"][0]) for err in e.errors() if err.get("loc"))
        raise InvalidRequestError(f"Missing or invalid fields: {missing}") from e


@router.post("/checkout", response_model=CheckoutResponse)
async def create_checkout(
    req: Request,
    catalog: PlanCatalog = Depends(get_plan_catalog),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
):
    """
    Create a Stripe checkout session for the authenticated user.

    Body: {"priceId", "successUrl", "cancelUrl"}

    Returns:
        {"sessionId": "cs_..."}

    Errors:
        400 {"error", "code"}: auth, validation or processor failure
    """
    try:
        payload = await _parse_checkout(req)
        validate_checkout_request(payload.price_id, payload.success_url, payload.cancel_url)
        user = await get_current_user(req)
        session_id = start_checkout(
            user,
            payload.price_id,
            payload.success_url,
            payload.cancel_url,
            provider=provider,
            free_credits=catalog.free_credits,
        )
    except AppError as e:
        return _billing_error(e)
    except Exception as e:
        logger.exception("billing.checkout.unexpected_error")
        return JSONResponse(status_code=400, content={"error": str(e) or "Checkout failed", "code": "internal_error"})

    return {"sessionId": session_id}


@router.post("/webhook")
async def handle_webhook(
    request: Request,
    catalog: PlanCatalog = Depends(get_plan_catalog),
    provider: Optional[BillingProvider] = Depends(get_billing_provider),
    webhook_secret: Optional[str] = Depends(get_webhook_secret),
):
    """
    Handle Stripe webhook events.

    Verifies the stripe-signature header over the raw body, then applies the
    event. Redeliveries are re-applied (pure overwrites).

    Returns:
        {"received": true}

    Errors:
        400 {"error", "code"}: anything else; Stripe retries
    """
    # Raw body is required for signature verification
    body = await request.body()

    try:
        process_webhook_event(
            request.headers,
            body,
            catalog=catalog,
            webhook_secret=webhook_secret,
            provider=provider,
        )
    except AppError as e:
        return _billing_error(e)
    except Exception as e:
        logger.exception("billing.webhook.unexpected_error")
        return JSONResponse(status_code=400, content={"error": str(e) or "Webhook failed", "code": "internal_error"})

    return {"received": True}


@router.get("/entitlement", response_model=EntitlementResponse)
async def get_entitlement(
    user: AuthenticatedUser = Depends(get_current_user),
    gate: CreditGate = Depends(get_credit_gate),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Current user's tier and credits. First call creates the free default."""
    record = get_or_create_profile(user.user_id, free_credits=catalog.free_credits)
    period_end = record.subscription_period_end
    return {
        "role": record.role.value,
        "subscriptionStatus": record.subscription_status,
        "subscriptionPeriodEnd": period_end.isoformat() if period_end else None,
        "analysisCredits": record.analysis_credits,
        "canCreateAnalysis": gate.can_create_analysis(user.user_id),
    }


@router.post("/entitlement/consume", response_model=ConsumeResponse)
async def consume_credit(
    user: AuthenticatedUser = Depends(get_current_user),
    gate: CreditGate = Depends(get_credit_gate),
    catalog: PlanCatalog = Depends(get_plan_catalog),
):
    """Server-side re-check at analysis creation time; spends one credit when allowed."""
    allowed = gate.consume(user.user_id)
    record = get_or_create_profile(user.user_id, free_credits=catalog.free_credits)
    return {"allowed": allowed, "analysisCredits": record.analysis_credits}
