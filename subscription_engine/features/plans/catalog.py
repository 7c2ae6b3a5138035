"""
subscription_engine/features/plans/catalog.py

Plan catalog.

Handles:
- Plan seeding (free, basic, premium, enterprise)
- Plan lookup (available plans only)
- Tier priority for upgrade/downgrade decisions
"""

from typing import Dict, List, Optional, Any

from subscription_engine.core.errors import NotFoundError
from subscription_engine.models.plan import Feature, Plan, PlanTier


# Default plan configurations (insertion order is catalog order)
DEFAULT_PLANS: Dict[str, Dict[str, Any]] = {
    "free-plan": {
        "tier": PlanTier.FREE,
        "name": "Free",
        "description": "Basic features for individuals",
        "monthly_price": 0,
        "annual_price": 0,
        "is_popular": False,
        "features": [
            ("Projects", "Up to 3 projects", True, "3"),
            ("Storage", "Up to 1GB storage", True, "1GB"),
            ("Team members", "Collaborate with up to 2 team members", True, "2"),
            ("Support", "Community support", True, None),
            ("API Access", "API access", False, None),
            ("Advanced security", "Advanced security features", False, None),
        ],
    },
    "basic-plan": {
        "tier": PlanTier.BASIC,
        "name": "Basic",
        "description": "For small teams and professionals",
        "monthly_price": 9.99,
        "annual_price": 99.99,
        "is_popular": True,
        "features": [
            ("Projects", "Up to 10 projects", True, "10"),
            ("Storage", "Up to 10GB storage", True, "10GB"),
            ("Team members", "Collaborate with up to 5 team members", True, "5"),
            ("Support", "Email support", True, None),
            ("API Access", "API access with rate limits", True, "1000 requests/day"),
            ("Advanced security", "Advanced security features", False, None),
        ],
    },
    "premium-plan": {
        "tier": PlanTier.PREMIUM,
        "name": "Premium",
        "description": "For growing businesses and teams",
        "monthly_price": 29.99,
        "annual_price": 299.99,
        "is_popular": False,
        "features": [
            ("Projects", "Up to 50 projects", True, "50"),
            ("Storage", "Up to 100GB storage", True, "100GB"),
            ("Team members", "Collaborate with up to 20 team members", True, "20"),
            ("Support", "Priority email and chat support", True, None),
            ("API Access", "API access with higher rate limits", True, "10000 requests/day"),
            ("Advanced security", "Advanced security features", True, None),
        ],
    },
    "enterprise-plan": {
        "tier": PlanTier.ENTERPRISE,
        "name": "Enterprise",
        "description": "For large organizations with advanced needs",
        "monthly_price": 99.99,
        "annual_price": 999.99,
        "is_popular": False,
        "features": [
            ("Projects", "Unlimited projects", True, None),
            ("Storage", "Unlimited storage", True, None),
            ("Team members", "Unlimited team members", True, None),
            ("Support", "Dedicated account manager and 24/7 support", True, None),
            ("API Access", "Unlimited API access", True, None),
            ("Advanced security", "Advanced security features with custom configurations", True, None),
        ],
    },
}

TIER_PRIORITY = {
    PlanTier.FREE: 0,
    PlanTier.BASIC: 1,
    PlanTier.PREMIUM: 2,
    PlanTier.ENTERPRISE: 3,
}


def build_plan(plan_id: str, config: Dict[str, Any]) -> Plan:
    features = [
        Feature(name=name, description=description, included=included, limit=limit)
        for name, description, included, limit in config["features"]
    ]
    return Plan(
        id=plan_id,
        tier=config["tier"],
        name=config["name"],
        description=config.get("description", ""),
        monthly_price=config["monthly_price"],
        annual_price=config["annual_price"],
        features=features,
        is_popular=config.get("is_popular", False),
        is_available=config.get("is_available", True),
    )


def seed_plans(configs: Optional[Dict[str, Dict[str, Any]]] = None) -> List[Plan]:
    """Build the plan list from configuration (defaults to DEFAULT_PLANS)."""
    source = DEFAULT_PLANS if configs is None else configs
    return [build_plan(plan_id, config) for plan_id, config in source.items()]


class PlanCatalog:
    """Immutable registry of plans, seeded once at construction."""

    def __init__(self, plans: Optional[List[Plan]] = None):
        self._plans: tuple = tuple(plans if plans is not None else seed_plans())

    def list_available(self) -> List[Plan]:
        return [plan for plan in self._plans if plan.is_available]

    def get(self, plan_id: str) -> Plan:
        """Get an available plan by id. Raises NotFoundError otherwise."""
        for plan in self._plans:
            if plan.id == plan_id and plan.is_available:
                return plan
        raise NotFoundError("Subscription plan not found")

    @staticmethod
    def priority(tier: PlanTier) -> int:
        """Ordinal used for upgrade/downgrade comparisons (higher = higher tier)."""
        return TIER_PRIORITY.get(tier, -1)

    def is_free(self, plan_id: str) -> bool:
        # Unavailable plans count too; a retired plan can still back a subscription
        for plan in self._plans:
            if plan.id == plan_id:
                return plan.tier == PlanTier.FREE
        return False
