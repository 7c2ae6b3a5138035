"""
subscription_engine/models/plan.py

Plan catalog models.

Plans are capability tiers with pricing and an ordered feature list.
"""

from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class PlanTier(str, Enum):
    FREE = "free"
    BASIC = "basic"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class BillingCycle(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class Feature(BaseModel):
    """
    A plan feature.

    `limit` is one of "10", "10GB" or "1000 requests/day". An included
    feature without a limit is unlimited.
    """
    model_config = ConfigDict(frozen=True)

    name: str
    description: str = ""
    included: bool
    limit: Optional[str] = None


class Plan(BaseModel):
    """
    Plan represents a priced capability tier.

    Examples:
    - free-plan (Free tier, no invoice)
    - basic-plan
    - premium-plan
    - enterprise-plan (unlimited resources)
    """
    model_config = ConfigDict(frozen=True)

    id: str
    tier: PlanTier
    name: str
    description: str = ""
    monthly_price: float = Field(ge=0)
    annual_price: float = Field(ge=0)
    features: List[Feature] = Field(default_factory=list)
    is_popular: bool = False
    is_available: bool = True

    def feature(self, name: str) -> Optional[Feature]:
        for feature in self.features:
            if feature.name == name:
                return feature
        return None
