"""
subscription_engine/features/downgrade/advisor.py

Downgrade advisory.

Compares a user's metered usage against a target plan's limits and
describes what must shrink before the downgrade takes effect. Advisory
only: callers log or display the warnings, nothing is blocked.
"""

from typing import List

from subscription_engine.core.errors import NotFoundError
from subscription_engine.core.logging import log_event
from subscription_engine.features.plans.catalog import PlanCatalog
from subscription_engine.features.usage.service import (
    RESOURCE_COUNTERS,
    UsageMeter,
    is_gb_limit,
    parse_limit,
)


RESOURCE_LABELS = {
    "Projects": "projects",
    "Storage": "storage usage",
    "Team members": "team members",
    "API Access": "API requests",
}


def format_quantity(value: float) -> str:
    """Render whole numbers without a trailing ".0"; callers round GB figures first."""
    if value == int(value):
        return str(int(value))
    return str(value)


class DowngradeAdvisor:
    def __init__(self, catalog: PlanCatalog, usage: UsageMeter):
        self.catalog = catalog
        self.usage = usage

    def evaluate(self, user_id: str, from_plan_id: str, to_plan_id: str) -> List[str]:
        """
        Warnings for every target-plan limit the user's usage exceeds.

        Features are checked in the target plan's declaration order.
        Unlimited, excluded, unmetered or unparsable limits are skipped.
        Returns an empty list when nothing would be violated.
        """
        try:
            self.catalog.get(from_plan_id)
            target = self.catalog.get(to_plan_id)
        except NotFoundError:
            log_event(
                "warning",
                "downgrade.unknown_plan",
                user_id=user_id,
                event_type="downgrade.skipped",
                extra={"from_plan_id": from_plan_id, "to_plan_id": to_plan_id},
            )
            return []

        warnings: List[str] = []
        for feature in target.features:
            if not feature.included or feature.name not in RESOURCE_COUNTERS:
                continue
            limit = parse_limit(feature.limit)
            if limit is None:
                continue

            current = self.usage.normalized(user_id, feature.name, feature.limit)
            if is_gb_limit(feature.limit):
                current = round(current, 2)
            if current <= limit:
                continue

            unit = "GB" if is_gb_limit(feature.limit) else ""
            warnings.append(
                f"You will need to reduce your {RESOURCE_LABELS[feature.name]} "
                f"from {format_quantity(current)}{unit} to {limit}{unit} "
                f"before the downgrade takes effect."
            )

        return warnings
