"""
subscription_engine/models/subscription.py

Subscription record.

Records are never deleted. A user's history is every record with their
user_id; the "current" subscription is the first one that is not expired.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, ConfigDict

from subscription_engine.models.plan import BillingCycle


class SubscriptionStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    CANCELED = "canceled"
    # Nothing transitions into EXPIRED; it only hides a record from current()
    EXPIRED = "expired"


class Subscription(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    plan_id: str
    status: SubscriptionStatus
    billing_cycle: BillingCycle
    start_date: datetime
    end_date: datetime
    auto_renew: bool = True
    canceled_at: Optional[datetime] = None
