"""
Payment processor.

Coordinates:
- Payment-method management (exactly one default per user)
- Charging through the injected PaymentGateway, bounded by a timeout
- Transaction recording (append-only; retries add rows)
- Invoice settlement and Pending -> Active activation
"""
import uuid
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Callable, List, Optional

from subscription_engine.core.config import Settings, settings as default_settings
from subscription_engine.core.errors import ConflictError, NotFoundError, ValidationError
from subscription_engine.core.locks import UserLockRegistry
from subscription_engine.core.logging import log_event
from subscription_engine.core.metrics import billing_payments_total, subscription_transitions_total
from subscription_engine.features.billing.service import utc_now
from subscription_engine.features.payments.gateway import ChargeOutcome, PaymentGateway
from subscription_engine.features.storage.repository import BillingRepository
from subscription_engine.models.billing import (
    Invoice,
    InvoiceStatus,
    PaymentMethod,
    PaymentStatus,
    PaymentTransaction,
)
from subscription_engine.models.subscription import SubscriptionStatus


RETRYABLE_STATUSES = (PaymentStatus.FAILED, PaymentStatus.TIMEOUT)


def _log_late_outcome(future: Future, method: PaymentMethod, reference: Optional[str]) -> None:
    """Record what a gateway call said after its charge was already reported as timed out."""
    error = future.exception()
    log_event(
        "warning",
        "payment.late_outcome",
        transaction_id=reference,
        event_type="payment.late_outcome",
        error_code="gateway_error" if error is not None else None,
        extra={
            "payment_method_id": method.id,
            "outcome": error if error is not None else future.result(),
        },
    )


class PaymentProcessor:
    def __init__(
        self,
        repository: BillingRepository,
        gateway: PaymentGateway,
        locks: UserLockRegistry,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.gateway = gateway
        self.locks = locks
        self.clock = clock
        self.settings = settings or default_settings
        self._executor = ThreadPoolExecutor(
            max_workers=self.settings.PAYMENT_GATEWAY_WORKERS,
            thread_name_prefix="payment-gateway",
        )

    # ===== PAYMENT METHODS =====

    def list_methods(self, user_id: str) -> List[PaymentMethod]:
        return self.repository.list_payment_methods(user_id)

    def get_method(self, user_id: str, method_id: str) -> PaymentMethod:
        for method in self.repository.list_payment_methods(user_id):
            if method.id == method_id:
                return method
        raise NotFoundError("Payment method not found")

    def add_method(self, user_id: str, method: PaymentMethod) -> PaymentMethod:
        """
        Store a payment method for the user.

        The first method, or one submitted with is_default, becomes the
        default and every other method is demoted.

        Raises:
            ConflictError: If a method with the same id already exists
        """
        with self.locks.hold(user_id):
            methods = self.repository.list_payment_methods(user_id)
            if method.id and any(m.id == method.id for m in methods):
                raise ConflictError("Payment method already exists")

            new_method = method if method.id else method.model_copy(update={"id": str(uuid.uuid4())})
            if not methods or new_method.is_default:
                methods = [m.model_copy(update={"is_default": False}) for m in methods]
                new_method = new_method.model_copy(update={"is_default": True})

            methods.append(new_method)
            self.repository.replace_payment_methods(user_id, methods)

        log_event(
            "info",
            "payment_method.added",
            user_id=user_id,
            event_type="payment_method.added",
            extra={"payment_method_id": new_method.id, "is_default": new_method.is_default},
        )
        return new_method

    def set_default(self, user_id: str, method_id: str) -> PaymentMethod:
        with self.locks.hold(user_id):
            methods = self.repository.list_payment_methods(user_id)
            if not any(m.id == method_id for m in methods):
                raise NotFoundError("Payment method not found")

            methods = [m.model_copy(update={"is_default": m.id == method_id}) for m in methods]
            self.repository.replace_payment_methods(user_id, methods)

        log_event("info", "payment_method.default_set", user_id=user_id, extra={"payment_method_id": method_id})
        return next(m for m in methods if m.id == method_id)

    def remove_method(self, user_id: str, method_id: str) -> str:
        with self.locks.hold(user_id):
            methods = self.repository.list_payment_methods(user_id)
            target = next((m for m in methods if m.id == method_id), None)
            if target is None:
                raise NotFoundError("Payment method not found")
            if target.is_default and len(methods) > 1:
                raise ValidationError("Cannot remove default payment method. Set another method as default first.")

            remaining = [m for m in methods if m.id != method_id]
            self.repository.replace_payment_methods(user_id, remaining)

        log_event("info", "payment_method.removed", user_id=user_id, extra={"payment_method_id": method_id})
        return "Payment method removed successfully"

    def select_method(self, user_id: str, method_id: Optional[str] = None) -> PaymentMethod:
        if method_id:
            return self.get_method(user_id, method_id)
        for method in self.repository.list_payment_methods(user_id):
            if method.is_default:
                return method
        raise ValidationError("No default payment method found")

    # ===== INVOICES & TRANSACTIONS =====

    def list_invoices(self, user_id: str) -> List[Invoice]:
        return sorted(self.repository.list_invoices(user_id), key=lambda i: i.date, reverse=True)

    def get_invoice(self, user_id: str, invoice_id: str) -> Invoice:
        for invoice in self.repository.list_invoices(user_id):
            if invoice.id == invoice_id:
                return invoice
        raise NotFoundError("Invoice not found")

    def list_transactions(self, user_id: str) -> List[PaymentTransaction]:
        return sorted(self.repository.list_transactions(user_id), key=lambda t: t.date, reverse=True)

    # ===== CHARGING =====

    def charge(self, amount: float, method: PaymentMethod, reference: Optional[str] = None) -> PaymentStatus:
        """
        Charge through the gateway with a bounded wait.

        Never raises: a gateway error is a failed charge, an overrun is a
        timeout. An overrun charge still waiting for a worker is cancelled
        and never reaches the gateway; one already in flight runs to the end
        and its outcome is logged against `reference`.
        """
        future = self._executor.submit(self.gateway.charge, amount, method)
        try:
            outcome = future.result(timeout=self.settings.PAYMENT_TIMEOUT_SECONDS)
        except FutureTimeoutError:
            cancelled = future.cancel()
            log_event(
                "warning",
                "payment.gateway_timeout",
                transaction_id=reference,
                event_type="payment.timeout",
                extra={
                    "payment_method_id": method.id,
                    "timeout_s": self.settings.PAYMENT_TIMEOUT_SECONDS,
                    "cancelled": cancelled,
                },
            )
            if not cancelled:
                future.add_done_callback(lambda done: _log_late_outcome(done, method, reference))
            return PaymentStatus.TIMEOUT
        except Exception as e:
            log_event(
                "error",
                "payment.gateway_error",
                transaction_id=reference,
                event_type="payment.failed",
                error_code="gateway_error",
                extra={"payment_method_id": method.id, "error": e},
            )
            return PaymentStatus.FAILED

        if outcome == ChargeOutcome.APPROVED:
            return PaymentStatus.COMPLETED
        return PaymentStatus.FAILED

    def process_payment(self, user_id: str, invoice_id: str, payment_method_id: Optional[str] = None) -> PaymentTransaction:
        """
        Charge an open invoice.

        A transaction row is recorded for every attempt. On success the
        invoice becomes paid and every pending subscription of the user whose
        plan appears on the invoice becomes active.

        Raises:
            NotFoundError: Unknown invoice or payment method
            ValidationError: Invoice already paid, or no default method
        """
        with self.locks.hold(user_id):
            invoice = self.get_invoice(user_id, invoice_id)
            if invoice.status == InvoiceStatus.PAID:
                raise ValidationError("Invoice already paid")

            method = self.select_method(user_id, payment_method_id)
            transaction_ref = str(uuid.uuid4())
            status = self.charge(invoice.total, method, reference=transaction_ref)
            now = self.clock()

            transaction = PaymentTransaction(
                id=transaction_ref,
                user_id=user_id,
                invoice_id=invoice.id,
                payment_method=method.type,
                status=status,
                amount=invoice.total,
                date=now,
                transaction_id=f"trx-{int(now.timestamp() * 1000)}",
                metadata={"payment_method_id": method.id},
            )
            self.repository.add_transaction(transaction)
            billing_payments_total.inc({"status": status.value})

            if status == PaymentStatus.COMPLETED:
                self.repository.update_invoice(invoice.model_copy(update={"status": InvoiceStatus.PAID}))
                self._activate_pending(user_id, invoice)

        log_event(
            "info" if status == PaymentStatus.COMPLETED else "warning",
            "payment.processed",
            user_id=user_id,
            invoice_id=invoice.id,
            transaction_id=transaction.id,
            event_type=f"payment.{status.value}",
            extra={"amount": transaction.amount, "payment_method_id": method.id},
        )
        return transaction

    def _activate_pending(self, user_id: str, invoice: Invoice) -> None:
        # Every matching pending record is activated, not only the one billed
        plan_ids = set(invoice.plan_ids())
        for subscription in self.repository.list_subscriptions(user_id):
            if subscription.status != SubscriptionStatus.PENDING or subscription.plan_id not in plan_ids:
                continue
            self.repository.update_subscription(
                subscription.model_copy(update={"status": SubscriptionStatus.ACTIVE})
            )
            subscription_transitions_total.inc({"transition": "pending->active"})
            log_event(
                "info",
                "subscription.activated",
                user_id=user_id,
                subscription_id=subscription.id,
                invoice_id=invoice.id,
                event_type="subscription.activated",
            )

    def retry_failed_payment(self, user_id: str, transaction_id: str) -> PaymentTransaction:
        """
        Re-run a failed or timed-out charge against the same invoice.

        Uses the payment method recorded on the failed attempt. The original
        row is left untouched; the retry is a new transaction.

        Raises:
            NotFoundError: No failed transaction with that id for the user
        """
        with self.locks.hold(user_id):
            failed = next(
                (
                    t for t in self.repository.list_transactions(user_id)
                    if t.id == transaction_id and t.status in RETRYABLE_STATUSES
                ),
                None,
            )
            if failed is None:
                raise NotFoundError("Failed transaction not found")

            log_event(
                "info",
                "payment.retry",
                user_id=user_id,
                invoice_id=failed.invoice_id,
                transaction_id=failed.id,
                event_type="payment.retry",
            )
            return self.process_payment(user_id, failed.invoice_id, failed.payment_method_id)

    def shutdown(self) -> None:
        self._executor.shutdown(wait=False)
