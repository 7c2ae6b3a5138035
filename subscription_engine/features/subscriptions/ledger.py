"""
Subscription ledger.

Owns subscription records and applies lifecycle transitions:

    create:  free plan -> ACTIVE, paid plan -> PENDING + invoice
    change:  upgrade applied in place (+ invoice); downgrade of an ACTIVE
             record scheduled as a new PENDING record starting at its end;
             downgrade of a PENDING record applied in place; move to the
             free tier applied in place and forced ACTIVE
    cancel:  immediate (or free plan) -> CANCELED; otherwise auto_renew off

Payment settlement (PENDING -> ACTIVE) lives in the payment processor.
All mutations for a user run under that user's lock.
"""
import uuid
from datetime import datetime
from typing import Callable, List, Optional

from subscription_engine.core.errors import ConflictError, NotFoundError, ValidationError
from subscription_engine.core.locks import UserLockRegistry
from subscription_engine.core.logging import log_event
from subscription_engine.core.metrics import subscription_transitions_total
from subscription_engine.features.billing.service import BillingEngine, utc_now
from subscription_engine.features.downgrade.advisor import DowngradeAdvisor
from subscription_engine.features.plans.catalog import PlanCatalog
from subscription_engine.features.storage.repository import BillingRepository
from subscription_engine.models.plan import BillingCycle, PlanTier
from subscription_engine.models.subscription import Subscription, SubscriptionStatus


CANCELED_IMMEDIATELY = "Subscription has been canceled immediately"
CANCELED_AT_PERIOD_END = "Subscription will be canceled at the end of the current billing period"


class SubscriptionLedger:
    def __init__(
        self,
        repository: BillingRepository,
        catalog: PlanCatalog,
        billing: BillingEngine,
        advisor: DowngradeAdvisor,
        locks: UserLockRegistry,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repository = repository
        self.catalog = catalog
        self.billing = billing
        self.advisor = advisor
        self.locks = locks
        self.clock = clock

    def current(self, user_id: str) -> Optional[Subscription]:
        """First record in storage order that is not expired."""
        for subscription in self.repository.list_subscriptions(user_id):
            if subscription.status != SubscriptionStatus.EXPIRED:
                return subscription
        return None

    def history(self, user_id: str) -> List[Subscription]:
        return sorted(
            self.repository.list_subscriptions(user_id),
            key=lambda s: s.start_date,
            reverse=True,
        )

    def create(self, user_id: str, plan_id: str, cycle: BillingCycle = BillingCycle.MONTHLY) -> Subscription:
        """
        Start a subscription.

        Raises:
            ConflictError: If the user's current subscription is active
            NotFoundError: If the plan is unknown or unavailable
        """
        with self.locks.hold(user_id):
            existing = self.current(user_id)
            if existing and existing.status == SubscriptionStatus.ACTIVE:
                raise ConflictError("User already has an active subscription")

            plan = self.catalog.get(plan_id)
            start = self.clock()
            is_free = plan.tier == PlanTier.FREE

            subscription = Subscription(
                id=str(uuid.uuid4()),
                user_id=user_id,
                plan_id=plan.id,
                status=SubscriptionStatus.ACTIVE if is_free else SubscriptionStatus.PENDING,
                billing_cycle=cycle,
                start_date=start,
                end_date=self.billing.end_date_for(start, cycle),
                auto_renew=True,
            )
            self.repository.add_subscription(subscription)

            if not is_free:
                self.billing.generate_invoice(subscription, plan)

        self._record_transition(subscription, f"created->{subscription.status.value}")
        return subscription

    def change(self, user_id: str, target_plan_id: str, cycle: Optional[BillingCycle] = None) -> Subscription:
        """
        Move the current subscription to another plan.

        Returns the record that carries the new plan: the current record
        when the change applies in place, or the new pending record when a
        downgrade is scheduled for the end of the period.

        Raises:
            NotFoundError: No current subscription, or unknown plan
            ValidationError: Combination the state machine does not handle
        """
        with self.locks.hold(user_id):
            current = self.current(user_id)
            if current is None:
                raise NotFoundError("No active subscription found")

            target_plan = self.catalog.get(target_plan_id)
            current_plan = self.catalog.get(current.plan_id)
            is_upgrade = self.catalog.priority(target_plan.tier) > self.catalog.priority(current_plan.tier)
            to_free = target_plan.tier == PlanTier.FREE

            if not is_upgrade and not to_free:
                warnings = self.advisor.evaluate(user_id, current.plan_id, target_plan.id)
                if warnings:
                    log_event(
                        "warning",
                        "downgrade.resource_warnings",
                        user_id=user_id,
                        subscription_id=current.id,
                        event_type="downgrade.advisory",
                        extra={"warnings": warnings, "target_plan_id": target_plan.id},
                    )

            if not is_upgrade and current.status == SubscriptionStatus.ACTIVE:
                self.repository.update_subscription(current.model_copy(update={"auto_renew": False}))
                next_cycle = cycle or current.billing_cycle
                scheduled = Subscription(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    plan_id=target_plan.id,
                    status=SubscriptionStatus.PENDING,
                    billing_cycle=next_cycle,
                    start_date=current.end_date,
                    end_date=self.billing.end_date_for(current.end_date, next_cycle),
                    auto_renew=True,
                )
                self.repository.add_subscription(scheduled)
                self._record_transition(scheduled, "downgrade->scheduled")
                return scheduled

            if is_upgrade:
                updated = current.model_copy(update=self._plan_update(current, target_plan.id, cycle))
                self.repository.update_subscription(updated)
                self.billing.generate_invoice(updated, target_plan)
                self._record_transition(updated, "upgrade->applied")
                return updated

            if to_free:
                updated = current.model_copy(
                    update={"plan_id": target_plan.id, "status": SubscriptionStatus.ACTIVE}
                )
                self.repository.update_subscription(updated)
                self._record_transition(updated, "free->applied")
                return updated

            if current.status == SubscriptionStatus.PENDING:
                updated = current.model_copy(update=self._plan_update(current, target_plan.id, cycle))
                self.repository.update_subscription(updated)
                self._record_transition(updated, "downgrade->applied")
                return updated

        raise ValidationError("Could not process subscription change")

    def _plan_update(self, current: Subscription, plan_id: str, cycle: Optional[BillingCycle]) -> dict:
        update = {"plan_id": plan_id}
        if cycle:
            update["billing_cycle"] = cycle
            update["end_date"] = self.billing.end_date_for(current.start_date, cycle)
        return update

    def cancel(self, user_id: str, immediate: bool = False) -> str:
        """
        Cancel the current subscription.

        Without immediate effect the record stays in its status with
        auto_renew off; nothing later moves it to canceled.

        Raises:
            NotFoundError: No current subscription
        """
        with self.locks.hold(user_id):
            current = self.current(user_id)
            if current is None:
                raise NotFoundError("No active subscription found")

            now = self.clock()
            if immediate or self.catalog.is_free(current.plan_id):
                updated = current.model_copy(
                    update={"status": SubscriptionStatus.CANCELED, "canceled_at": now}
                )
                message = CANCELED_IMMEDIATELY
                transition = "cancel->immediate"
            else:
                updated = current.model_copy(update={"auto_renew": False, "canceled_at": now})
                message = CANCELED_AT_PERIOD_END
                transition = "cancel->period_end"
            self.repository.update_subscription(updated)

        self._record_transition(updated, transition)
        return message

    def _record_transition(self, subscription: Subscription, transition: str) -> None:
        subscription_transitions_total.inc({"transition": transition})
        log_event(
            "info",
            "subscription.transition",
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            event_type=transition,
            extra={"plan_id": subscription.plan_id, "status": subscription.status.value},
        )
