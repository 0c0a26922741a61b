"""
careermentor/models/entitlement.py

Per-user entitlement record: tier, credit balance and subscription mirror.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict, Field

UNLIMITED_CREDITS = -1


class Role(str, Enum):
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"


class EntitlementRecord(BaseModel):
    """
    Snapshot of a user's row in user_profiles.

    analysis_credits:
    - -1: unlimited
    - >= 0: remaining analyses
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    role: Role = Role.FREE
    billing_customer_id: Optional[str] = None
    subscription_status: Optional[str] = None
    subscription_period_end: Optional[datetime] = None
    analysis_credits: int = Field(ge=UNLIMITED_CREDITS)
    updated_at: Optional[datetime] = None

    @property
    def is_unlimited(self) -> bool:
        return self.analysis_credits == UNLIMITED_CREDITS
