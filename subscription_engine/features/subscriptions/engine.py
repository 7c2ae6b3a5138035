"""
subscription_engine/features/subscriptions/engine.py

SubscriptionEngine: the single entry point callers (the HTTP adapter,
scripts, tests) use.

Wires plan catalog, usage meter, billing engine, payment processor,
downgrade advisor, ledger and entitlements around one repository and one
per-user lock registry. Contains no business rules of its own.
"""

import random
from datetime import datetime
from typing import Callable, Dict, List, Optional

from subscription_engine.core.config import Settings, settings as default_settings
from subscription_engine.core.errors import NotFoundError
from subscription_engine.core.locks import UserLockRegistry
from subscription_engine.features.billing.service import BillingEngine, utc_now
from subscription_engine.features.downgrade.advisor import DowngradeAdvisor
from subscription_engine.features.entitlements.service import EntitlementService
from subscription_engine.features.payments.gateway import PaymentGateway, SimulatedGateway
from subscription_engine.features.payments.service import PaymentProcessor
from subscription_engine.features.plans.catalog import PlanCatalog
from subscription_engine.features.storage.repository import BillingRepository, get_repository
from subscription_engine.features.subscriptions.ledger import SubscriptionLedger
from subscription_engine.features.usage.service import UsageMeter
from subscription_engine.models.billing import Invoice, PaymentMethod, PaymentTransaction
from subscription_engine.models.plan import BillingCycle, Plan
from subscription_engine.models.subscription import Subscription
from subscription_engine.models.usage import FeatureUsage, UsageRecord


class SubscriptionEngine:
    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        gateway: Optional[PaymentGateway] = None,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[Settings] = None,
        catalog: Optional[PlanCatalog] = None,
    ):
        self.settings = settings or default_settings
        self.repository = repository if repository is not None else get_repository()
        self.locks = UserLockRegistry()
        self.catalog = catalog or PlanCatalog()
        self.usage = UsageMeter(self.repository, self.locks)
        self.billing = BillingEngine(self.repository, clock=clock, settings=self.settings)
        self.payments = PaymentProcessor(
            self.repository,
            gateway or SimulatedGateway(self.settings.PAYMENT_SUCCESS_RATE, random.Random()),
            self.locks,
            clock=clock,
            settings=self.settings,
        )
        self.advisor = DowngradeAdvisor(self.catalog, self.usage)
        self.ledger = SubscriptionLedger(
            self.repository, self.catalog, self.billing, self.advisor, self.locks, clock=clock
        )
        self.entitlements = EntitlementService(self.catalog, self.ledger, self.usage)

    # ===== PLANS =====

    def list_plans(self) -> List[Plan]:
        return self.catalog.list_available()

    def get_plan(self, plan_id: str) -> Plan:
        return self.catalog.get(plan_id)

    # ===== SUBSCRIPTIONS =====

    def get_current_subscription(self, user_id: str) -> Optional[Subscription]:
        return self.ledger.current(user_id)

    def create_subscription(
        self, user_id: str, plan_id: str, billing_cycle: BillingCycle = BillingCycle.MONTHLY
    ) -> Subscription:
        return self.ledger.create(user_id, plan_id, billing_cycle)

    def change_subscription(
        self, user_id: str, plan_id: str, billing_cycle: Optional[BillingCycle] = None
    ) -> Subscription:
        return self.ledger.change(user_id, plan_id, billing_cycle)

    def cancel_subscription(self, user_id: str, immediate: bool = False) -> str:
        return self.ledger.cancel(user_id, immediate)

    def get_history(self, user_id: str) -> List[Subscription]:
        return self.ledger.history(user_id)

    def preview_plan_change(self, user_id: str, plan_id: str) -> List[str]:
        """Advisor warnings for moving the current subscription to plan_id."""
        current = self.ledger.current(user_id)
        if current is None:
            raise NotFoundError("No active subscription found")
        return self.advisor.evaluate(user_id, current.plan_id, plan_id)

    # ===== INVOICES & TRANSACTIONS =====

    def get_invoices(self, user_id: str) -> List[Invoice]:
        return self.payments.list_invoices(user_id)

    def get_invoice(self, user_id: str, invoice_id: str) -> Invoice:
        return self.payments.get_invoice(user_id, invoice_id)

    def get_invoice_document(self, user_id: str, invoice_id: str) -> Dict[str, str]:
        invoice = self.payments.get_invoice(user_id, invoice_id)
        return {"url": self.billing.invoice_document_url(invoice)}

    def get_transactions(self, user_id: str) -> List[PaymentTransaction]:
        return self.payments.list_transactions(user_id)

    # ===== PAYMENT METHODS =====

    def add_payment_method(self, user_id: str, method: PaymentMethod) -> PaymentMethod:
        return self.payments.add_method(user_id, method)

    def get_payment_methods(self, user_id: str) -> List[PaymentMethod]:
        return self.payments.list_methods(user_id)

    def get_payment_method(self, user_id: str, method_id: str) -> PaymentMethod:
        return self.payments.get_method(user_id, method_id)

    def set_default_payment_method(self, user_id: str, method_id: str) -> PaymentMethod:
        return self.payments.set_default(user_id, method_id)

    def remove_payment_method(self, user_id: str, method_id: str) -> str:
        return self.payments.remove_method(user_id, method_id)

    # ===== PAYMENTS =====

    def process_payment(
        self, user_id: str, invoice_id: str, payment_method_id: Optional[str] = None
    ) -> PaymentTransaction:
        return self.payments.process_payment(user_id, invoice_id, payment_method_id)

    def retry_failed_payment(self, user_id: str, transaction_id: str) -> PaymentTransaction:
        return self.payments.retry_failed_payment(user_id, transaction_id)

    # ===== ENTITLEMENTS & USAGE =====

    def has_feature_access(self, user_id: str, feature_name: str) -> bool:
        return self.entitlements.has_feature_access(user_id, feature_name)

    def get_resource_limit(self, user_id: str, resource: str) -> Optional[str]:
        return self.entitlements.get_resource_limit(user_id, resource)

    def verify_resource_limit(self, user_id: str, resource: str, requested: float = 1) -> bool:
        return self.entitlements.verify_resource_limit(user_id, resource, requested)

    def track_resource_usage(self, user_id: str, resource: str, amount: float) -> UsageRecord:
        return self.usage.record(user_id, resource, amount)

    def get_usage(self, user_id: str) -> UsageRecord:
        return self.usage.usage(user_id)

    def get_features(self, user_id: str) -> List[FeatureUsage]:
        return self.entitlements.features(user_id)

    def shutdown(self) -> None:
        self.payments.shutdown()


# Global engine instance (lazy initialization)
_engine_instance: Optional[SubscriptionEngine] = None


def get_engine() -> SubscriptionEngine:
    """Get the process-wide engine, creating it on first use."""
    global _engine_instance
    if _engine_instance is None:
        _engine_instance = SubscriptionEngine()
    return _engine_instance


def reset_engine() -> None:
    """
    Drop the process-wide engine.

    FOR TESTING ONLY - the next get_engine() call builds a fresh one.
    """
    global _engine_instance
    if _engine_instance is not None:
        _engine_instance.shutdown()
    _engine_instance = None
