"""
Admin-only entitlement operations router.
Requires X-Admin-Key header for all endpoints.
"""

import logging
from datetime import datetime
from typing import Optional, List, Dict, Any
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field

from careermentor.core.admin_auth import require_admin, AdminActor
from careermentor.core.errors import NotFoundError
from careermentor.features.audit.service import list_audit_events, record_audit_event
from careermentor.features.billing.service import get_billing_event
from careermentor.features.entitlements.service import get_profile, set_analysis_credits
from careermentor.models.entitlement import EntitlementRecord, UNLIMITED_CREDITS

logger = logging.getLogger("careermentor.admin")

router = APIRouter(prefix="/admin", tags=["admin"])


class CreditOverrideRequest(BaseModel):
    """Set a user's analysis credits (-1 = unlimited)."""
    credits: int = Field(..., ge=UNLIMITED_CREDITS)
    reason: Optional[str] = Field(default=None, max_length=500)


class EntitlementView(BaseModel):
    user_id: str
    role: str
    billing_customer_id: Optional[str]
    subscription_status: Optional[str]
    subscription_period_end: Optional[datetime]
    analysis_credits: int


class AuditEventItem(BaseModel):
    id: int
    actor: str
    action_type: str
    resource_type: str
    resource_id: Optional[str]
    details: Optional[Dict[str, Any]]
    created_at: datetime


def _view(record: EntitlementRecord) -> EntitlementView:
    return EntitlementView(
        user_id=record.user_id,
        role=record.role.value,
        billing_customer_id=record.billing_customer_id,
        subscription_status=record.subscription_status,
        subscription_period_end=record.subscription_period_end,
        analysis_credits=record.analysis_credits,
    )


@router.get("/users/{user_id}/entitlement", response_model=EntitlementView)
def get_user_entitlement(user_id: str, actor: AdminActor = Depends(require_admin)):
    record = get_profile(user_id)
    if record is None:
        raise NotFoundError(f"No profile for user {user_id}")
    return _view(record)


@router.put("/users/{user_id}/credits", response_model=EntitlementView)
def override_credits(
    user_id: str,
    body: CreditOverrideRequest,
    actor: AdminActor = Depends(require_admin),
):
    """
    Overwrite a user's analysis credit balance.

    Audited as analysis_credits_updated with the previous and new values.
    """
    previous = get_profile(user_id)
    if previous is None:
        raise NotFoundError(f"No profile for user {user_id}")

    record = set_analysis_credits(user_id, body.credits)
    record_audit_event(
        actor=actor.actor_id,
        action_type="analysis_credits_updated",
        resource_type="user_profiles",
        resource_id=user_id,
        details={
            "previous_credits": previous.analysis_credits,
            "credits": body.credits,
            "reason": body.reason,
        },
    )
    logger.info(
        f"[admin] credits for {user_id} set to {body.credits} by {actor.actor_id}",
        extra={"user_id": user_id},
    )
    return _view(record)


@router.get("/audit", response_model=List[AuditEventItem])
def get_audit_events(
    resource_id: Optional[str] = Query(None),
    action_type: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    actor: AdminActor = Depends(require_admin),
):
    return list_audit_events(resource_id=resource_id, action_type=action_type, limit=limit)


@router.get("/billing/events/{stripe_event_id}")
def get_event(stripe_event_id: str, actor: AdminActor = Depends(require_admin)):
    """Delivery log row for one Stripe event (attempts, last error)."""
    event = get_billing_event(stripe_event_id)
    if event is None:
        raise NotFoundError(f"Unknown event {stripe_event_id}")
    return event
