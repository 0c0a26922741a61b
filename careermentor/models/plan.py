"""
careermentor/models/plan.py

Plan catalog entry: what a purchasable price grants.
"""

from pydantic import BaseModel, ConfigDict

from careermentor.models.entitlement import Role


class PlanEntry(BaseModel):
    """
    A paid tier and the credits it grants when a subscription starts or renews.

    Only pro and premium are purchasable; free is the implicit default.
    """
    model_config = ConfigDict(frozen=True)

    price_id: str
    tier: Role
    credit_allotment: int
