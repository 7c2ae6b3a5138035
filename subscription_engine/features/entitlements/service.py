"""
subscription_engine/features/entitlements/service.py

Entitlement checks against the user's current plan.

Handles:
- Feature access (active subscriptions only)
- Resource limit lookup and verification
- Feature listing annotated with current usage
"""

import logging
import math
from typing import List, Optional

from subscription_engine.core.errors import NotFoundError, PermissionError
from subscription_engine.features.downgrade.advisor import format_quantity
from subscription_engine.features.plans.catalog import PlanCatalog
from subscription_engine.features.subscriptions.ledger import SubscriptionLedger
from subscription_engine.features.usage.service import (
    RESOURCE_COUNTERS,
    UsageMeter,
    is_gb_limit,
    parse_limit,
)
from subscription_engine.models.plan import Plan
from subscription_engine.models.subscription import SubscriptionStatus
from subscription_engine.models.usage import FeatureUsage


logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class EntitlementService:
    def __init__(self, catalog: PlanCatalog, ledger: SubscriptionLedger, usage: UsageMeter):
        self.catalog = catalog
        self.ledger = ledger
        self.usage = usage

    def _active_plan(self, user_id: str) -> Optional[Plan]:
        subscription = self.ledger.current(user_id)
        if subscription is None or subscription.status != SubscriptionStatus.ACTIVE:
            return None
        return self.catalog.get(subscription.plan_id)

    def has_feature_access(self, user_id: str, feature_name: str) -> bool:
        """True when the user's active plan includes the feature."""
        plan = self._active_plan(user_id)
        if plan is None:
            return False
        feature = plan.feature(feature_name)
        allowed = bool(feature and feature.included)
        if not allowed:
            logger.info(
                "[entitlement] feature not included",
                extra={"user_id": user_id, "event_type": "entitlement.denied", "details": {"feature": feature_name}},
            )
        return allowed

    def get_resource_limit(self, user_id: str, resource: str) -> Optional[str]:
        """
        Limit string for a resource on the user's active plan.

        Returns None for an included resource without a limit (unlimited).

        Raises:
            PermissionError: No active subscription, or resource not included
        """
        plan = self._active_plan(user_id)
        if plan is None:
            raise PermissionError("No active subscription found")
        feature = plan.feature(resource)
        if feature is None or not feature.included:
            raise PermissionError(f"The current plan does not include {resource}")
        return feature.limit

    def verify_resource_limit(self, user_id: str, resource: str, requested: float = 1) -> bool:
        limit = self.get_resource_limit(user_id, resource)
        allowed = self.usage.within_limit(user_id, resource, requested, limit)
        if not allowed:
            logger.warning(
                "[entitlement] WOULD_EXCEED",
                extra={
                    "user_id": user_id,
                    "event_type": "entitlement.would_exceed",
                    "details": {"resource": resource, "limit": limit, "requested": requested},
                },
            )
        return allowed

    def features(self, user_id: str) -> List[FeatureUsage]:
        """
        Current plan's features annotated with usage.

        Any non-expired subscription qualifies, pending included.

        Raises:
            NotFoundError: No current subscription
        """
        subscription = self.ledger.current(user_id)
        if subscription is None:
            raise NotFoundError("No active subscription found")
        plan = self.catalog.get(subscription.plan_id)

        annotated = []
        for feature in plan.features:
            current_usage = None
            usage_percentage = None
            if feature.name in RESOURCE_COUNTERS:
                value = self.usage.normalized(user_id, feature.name, feature.limit)
                if is_gb_limit(feature.limit):
                    value = round(value, 2)
                current_usage = format_quantity(value)
                limit = parse_limit(feature.limit)
                if limit:
                    usage_percentage = min(100, _round_half_up(value / limit * 100))
            annotated.append(
                FeatureUsage(
                    **feature.model_dump(),
                    current_usage=current_usage,
                    usage_percentage=usage_percentage,
                )
            )
        return annotated
