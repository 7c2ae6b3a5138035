"""
subscription_engine/models/usage.py

Metered resource usage per user.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict

from subscription_engine.models.plan import Feature


class UsageRecord(BaseModel):
    """
    Cumulative counters. Storage is in bytes; the rest are plain counts.

    Counters only ever grow through tracked usage; nothing resets them on
    billing-cycle rollover.
    """
    model_config = ConfigDict(frozen=True)

    projects: float = 0
    storage: float = 0
    team_members: float = 0
    api_requests: float = 0


class FeatureUsage(Feature):
    """A plan feature annotated with the user's consumption."""

    current_usage: Optional[str] = None
    usage_percentage: Optional[int] = None
