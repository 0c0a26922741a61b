"""Shared FastAPI dependencies for the CareerMentor routers."""
from typing import Optional

from fastapi import Request

from careermentor.core.config import settings
from careermentor.features.billing.provider import BillingProvider
from careermentor.features.billing.service import get_provider
from careermentor.features.credits.gate import CreditGate
from careermentor.features.plans.catalog import PlanCatalog, load_plan_catalog


def get_plan_catalog(request: Request) -> PlanCatalog:
    """The catalog built at startup; built on demand if the lifespan did not run."""
    catalog = getattr(request.app.state, "plan_catalog", None)
    if catalog is None:
        catalog = load_plan_catalog(settings)
        request.app.state.plan_catalog = catalog
    return catalog


def get_credit_gate(request: Request) -> CreditGate:
    gate = getattr(request.app.state, "credit_gate", None)
    if gate is None:
        gate = CreditGate(get_plan_catalog(request))
        request.app.state.credit_gate = gate
    return gate


def get_billing_provider() -> Optional[BillingProvider]:
    return get_provider()


def get_webhook_secret() -> Optional[str]:
    return settings.STRIPE_WEBHOOK_SIGNING_SECRET
