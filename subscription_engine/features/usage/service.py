"""
subscription_engine/features/usage/service.py

Usage accounting service.

Handles:
- Usage recording (additive counters per user)
- Unit normalization against a plan limit (bytes -> GB)
- Limit checks
"""

import re
from typing import Optional

from subscription_engine.core.locks import UserLockRegistry
from subscription_engine.core.logging import log_event
from subscription_engine.features.storage.repository import BillingRepository
from subscription_engine.models.usage import UsageRecord


BYTES_PER_GB = 1024 ** 3

# Explicit mapping from plan feature name to UsageRecord counter
RESOURCE_COUNTERS = {
    "Projects": "projects",
    "Storage": "storage",
    "Team members": "team_members",
    "API Access": "api_requests",
}

_LIMIT_PATTERNS = (
    re.compile(r"(\d+)"),
    re.compile(r"(\d+)GB"),
    re.compile(r"(\d+) requests/day"),
)


def parse_limit(limit: Optional[str]) -> Optional[int]:
    """
    Parse a feature limit string.

    Accepts "10", "10GB" and "1000 requests/day". Returns None when the
    limit is absent or in any other form, which callers treat as unlimited.
    """
    if not limit:
        return None
    for pattern in _LIMIT_PATTERNS:
        match = pattern.fullmatch(limit)
        if match:
            return int(match.group(1))
    return None


def is_gb_limit(limit: Optional[str]) -> bool:
    return bool(limit) and "GB" in limit


class UsageMeter:
    """Per-user consumption of metered resources."""

    def __init__(self, repository: BillingRepository, locks: UserLockRegistry):
        self.repository = repository
        self.locks = locks

    def usage(self, user_id: str) -> UsageRecord:
        return self.repository.get_usage(user_id) or UsageRecord()

    def raw(self, user_id: str, resource: str) -> float:
        counter = RESOURCE_COUNTERS.get(resource)
        if counter is None:
            return 0
        return getattr(self.usage(user_id), counter)

    def record(self, user_id: str, resource: str, delta: float) -> UsageRecord:
        """
        Add delta to the user's counter for resource.

        Negative deltas are applied as-is. Unknown resource names leave the
        record unchanged.
        """
        counter = RESOURCE_COUNTERS.get(resource)
        with self.locks.hold(user_id):
            current = self.usage(user_id)
            if counter is None:
                log_event(
                    "warning",
                    "usage.unknown_resource",
                    user_id=user_id,
                    event_type="usage.ignored",
                    extra={"resource": resource, "delta": delta},
                )
                return current
            updated = current.model_copy(update={counter: getattr(current, counter) + delta})
            self.repository.save_usage(user_id, updated)

        log_event(
            "info",
            "usage.recorded",
            user_id=user_id,
            event_type="usage.recorded",
            extra={"resource": resource, "delta": delta, "total": getattr(updated, counter)},
        )
        return updated

    def normalized(self, user_id: str, resource: str, limit: Optional[str]) -> float:
        """Current usage in the unit of limit (GB limits see bytes / 2^30)."""
        value = self.raw(user_id, resource)
        if resource == "Storage" and is_gb_limit(limit):
            return value / BYTES_PER_GB
        return value

    def within_limit(self, user_id: str, resource: str, requested: float, limit: Optional[str]) -> bool:
        parsed = parse_limit(limit)
        if parsed is None:
            return True
        return self.normalized(user_id, resource, limit) + requested <= parsed
