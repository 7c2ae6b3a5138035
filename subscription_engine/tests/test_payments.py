"""
Tests for payment methods, payment processing and caller-driven retry.
"""
import logging
import threading
import time

import pytest

from subscription_engine.core.config import Settings
from subscription_engine.core.errors import ConflictError, NotFoundError, ValidationError
from subscription_engine.core.metrics import billing_payments_total
from subscription_engine.features.payments.gateway import ChargeOutcome, PaymentGatewayError
from subscription_engine.features.storage.repository import InMemoryRepository
from subscription_engine.features.subscriptions.engine import SubscriptionEngine
from subscription_engine.models.billing import (
    InvoiceStatus,
    PaymentMethod,
    PaymentMethodType,
    PaymentStatus,
)
from subscription_engine.models.subscription import SubscriptionStatus


def _method(method_id=None, is_default=False, kind=PaymentMethodType.CREDIT_CARD):
    return PaymentMethod(id=method_id, type=kind, details={"token": "tok"}, is_default=is_default)


class TestPaymentMethods:
    def test_first_method_becomes_default(self, engine):
        added = engine.add_payment_method("u1", _method("pm-1"))
        assert added.is_default is True

    def test_later_methods_are_not_default(self, engine):
        engine.add_payment_method("u1", _method("pm-1"))
        second = engine.add_payment_method("u1", _method("pm-2", kind=PaymentMethodType.PAYPAL))
        assert second.is_default is False
        assert [m.id for m in engine.get_payment_methods("u1") if m.is_default] == ["pm-1"]

    def test_requesting_default_demotes_others(self, engine):
        engine.add_payment_method("u1", _method("pm-1"))
        engine.add_payment_method("u1", _method("pm-2"))
        engine.add_payment_method("u1", _method("pm-3", is_default=True))

        defaults = [m.id for m in engine.get_payment_methods("u1") if m.is_default]
        assert defaults == ["pm-3"]

    def test_missing_id_is_generated(self, engine):
        added = engine.add_payment_method("u1", _method())
        assert added.id
        assert engine.get_payment_method("u1", added.id) == added

    def test_duplicate_id_conflicts(self, engine):
        engine.add_payment_method("u1", _method("pm-1"))
        with pytest.raises(ConflictError):
            engine.add_payment_method("u1", _method("pm-1"))

    def test_methods_are_per_user(self, engine):
        engine.add_payment_method("u1", _method("pm-1"))
        assert engine.get_payment_methods("u2") == []
        with pytest.raises(NotFoundError):
            engine.get_payment_method("u2", "pm-1")

    def test_set_default(self, engine):
        engine.add_payment_method("u1", _method("pm-1"))
        engine.add_payment_method("u1", _method("pm-2"))

        updated = engine.set_default_payment_method("u1", "pm-2")

        assert updated.is_default is True
        defaults = [m.id for m in engine.get_payment_methods("u1") if m.is_default]
        assert defaults == ["pm-2"]

    def test_set_default_unknown_method(self, engine):
        with pytest.raises(NotFoundError) as exc:
            engine.set_default_payment_method("u1", "nope")
        assert exc.value.message == "Payment method not found"

    def test_cannot_remove_default_while_others_exist(self, engine):
        engine.add_payment_method("u1", _method("pm-1"))
        engine.add_payment_method("u1", _method("pm-2"))

        with pytest.raises(ValidationError):
            engine.remove_payment_method("u1", "pm-1")

        methods = engine.get_payment_methods("u1")
        assert [(m.id, m.is_default) for m in methods] == [("pm-1", True), ("pm-2", False)]

    def test_remove_non_default(self, engine):
        engine.add_payment_method("u1", _method("pm-1"))
        engine.add_payment_method("u1", _method("pm-2"))

        message = engine.remove_payment_method("u1", "pm-2")

        assert message == "Payment method removed successfully"
        assert [m.id for m in engine.get_payment_methods("u1")] == ["pm-1"]

    def test_remove_last_method(self, engine):
        engine.add_payment_method("u1", _method("pm-1"))
        engine.remove_payment_method("u1", "pm-1")
        assert engine.get_payment_methods("u1") == []

    def test_concurrent_default_adds_leave_one_default(self, engine):
        start = threading.Barrier(5)

        def add(index):
            start.wait()
            engine.add_payment_method("u1", _method(f"pm-{index}", is_default=True))

        threads = [threading.Thread(target=add, args=(i,)) for i in range(5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        methods = engine.get_payment_methods("u1")
        assert len(methods) == 5
        assert len([m for m in methods if m.is_default]) == 1


class TestProcessPayment:
    def test_successful_payment_activates_subscription(self, engine, card):
        subscription = engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)

        transaction = engine.process_payment("u1", invoice.id)

        assert transaction.status == PaymentStatus.COMPLETED
        assert transaction.amount == invoice.total
        assert transaction.payment_method == PaymentMethodType.CREDIT_CARD
        assert transaction.payment_method_id == "pm-card"
        assert transaction.transaction_id.startswith("trx-")
        assert engine.get_invoice("u1", invoice.id).status == InvoiceStatus.PAID
        current = engine.get_current_subscription("u1")
        assert current.id == subscription.id
        assert current.status == SubscriptionStatus.ACTIVE
        assert billing_payments_total.value({"status": "completed"}) == 1

    def test_paid_invoice_rejected(self, engine, card):
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)
        engine.process_payment("u1", invoice.id)

        with pytest.raises(ValidationError) as exc:
            engine.process_payment("u1", invoice.id)
        assert exc.value.message == "Invoice already paid"
        assert len(engine.get_transactions("u1")) == 1

    def test_unknown_invoice(self, engine, card):
        engine.add_payment_method("u1", card)
        with pytest.raises(NotFoundError) as exc:
            engine.process_payment("u1", "missing")
        assert exc.value.message == "Invoice not found"

    def test_invoice_of_other_user_not_visible(self, engine, card):
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u2", card)
        with pytest.raises(NotFoundError):
            engine.process_payment("u2", invoice.id)

    def test_no_default_method(self, engine):
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        with pytest.raises(ValidationError) as exc:
            engine.process_payment("u1", invoice.id)
        assert exc.value.message == "No default payment method found"

    def test_explicit_method_is_used(self, engine, gateway, card):
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)
        engine.add_payment_method("u1", _method("pm-paypal", kind=PaymentMethodType.PAYPAL))

        transaction = engine.process_payment("u1", invoice.id, "pm-paypal")

        assert transaction.payment_method == PaymentMethodType.PAYPAL
        assert gateway.calls[-1][1] == "pm-paypal"

    def test_declined_payment_records_failed_transaction(self, engine, gateway, card):
        gateway.outcomes = [ChargeOutcome.DECLINED]
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)

        transaction = engine.process_payment("u1", invoice.id)

        assert transaction.status == PaymentStatus.FAILED
        assert engine.get_invoice("u1", invoice.id).status == InvoiceStatus.OPEN
        assert engine.get_current_subscription("u1").status == SubscriptionStatus.PENDING

    def test_gateway_error_is_a_failed_charge(self, engine, gateway, card):
        gateway.outcomes = [PaymentGatewayError("provider unreachable")]
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)

        transaction = engine.process_payment("u1", invoice.id)

        assert transaction.status == PaymentStatus.FAILED

    def test_slow_gateway_times_out(self, engine, gateway, card):
        gateway.delay = 1.0
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)

        transaction = engine.process_payment("u1", invoice.id)

        assert transaction.status == PaymentStatus.TIMEOUT
        assert engine.get_invoice("u1", invoice.id).status == InvoiceStatus.OPEN
        assert billing_payments_total.value({"status": "timeout"}) == 1

    def test_payment_activates_every_matching_pending_subscription(self, engine, card):
        first = engine.create_subscription("u1", "basic-plan")
        second = engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[-1]
        engine.add_payment_method("u1", card)

        engine.process_payment("u1", invoice.id)

        statuses = {s.id: s.status for s in engine.get_history("u1")}
        assert statuses[first.id] == SubscriptionStatus.ACTIVE
        assert statuses[second.id] == SubscriptionStatus.ACTIVE

    def test_concurrent_payments_of_one_invoice_serialize(self, engine, gateway, card):
        gateway.delay = 0.05
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)

        results = []
        errors = []

        def pay():
            try:
                results.append(engine.process_payment("u1", invoice.id))
            except ValidationError as e:
                errors.append(e)

        threads = [threading.Thread(target=pay) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(results) == 1
        assert results[0].status == PaymentStatus.COMPLETED
        assert len(errors) == 1
        assert errors[0].message == "Invoice already paid"

    def test_timed_out_charges_waiting_for_a_worker_are_never_sent(self, gateway, clock, card):
        gateway.delay = 0.5
        engine = SubscriptionEngine(
            repository=InMemoryRepository(),
            gateway=gateway,
            clock=clock,
            settings=Settings(PAYMENT_TIMEOUT_SECONDS=0.1, PAYMENT_GATEWAY_WORKERS=1),
        )
        users = ["u1", "u2", "u3"]
        invoices = {}
        for user_id in users:
            engine.create_subscription(user_id, "basic-plan")
            engine.add_payment_method(user_id, card)
            invoices[user_id] = engine.get_invoices(user_id)[0].id

        results = []
        start = threading.Barrier(len(users))

        def pay(user_id):
            start.wait()
            results.append(engine.process_payment(user_id, invoices[user_id]))

        threads = [threading.Thread(target=pay, args=(u,)) for u in users]
        try:
            for t in threads:
                t.start()
            for t in threads:
                t.join()
            time.sleep(1.0)
        finally:
            engine.shutdown()

        assert [r.status for r in results] == [PaymentStatus.TIMEOUT] * 3
        # only the charge that had a worker reached the gateway
        assert len(gateway.calls) == 1

    def test_late_gateway_outcome_is_logged_with_transaction_id(self, engine, gateway, card, caplog):
        gateway.delay = 0.5
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)

        with caplog.at_level(logging.WARNING, logger="subscription_engine"):
            transaction = engine.process_payment("u1", invoice.id)
            deadline = time.monotonic() + 2.0
            late = []
            while not late and time.monotonic() < deadline:
                time.sleep(0.05)
                late = [r for r in caplog.records if r.getMessage() == "payment.late_outcome"]

        assert transaction.status == PaymentStatus.TIMEOUT
        assert len(late) == 1
        assert late[0].transaction_id == transaction.id
        assert late[0].details["payment_method_id"] == "pm-card"
        # the late approval does not settle the invoice
        assert engine.get_invoice("u1", invoice.id).status == InvoiceStatus.OPEN


class TestRetry:
    def test_retry_after_decline(self, engine, gateway, card, clock):
        gateway.outcomes = [ChargeOutcome.DECLINED, ChargeOutcome.APPROVED]
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)
        failed = engine.process_payment("u1", invoice.id)

        clock.advance(minutes=5)
        retried = engine.retry_failed_payment("u1", failed.id)

        assert retried.status == PaymentStatus.COMPLETED
        assert retried.id != failed.id
        assert retried.payment_method_id == failed.payment_method_id
        transactions = engine.get_transactions("u1")
        assert [t.id for t in transactions] == [retried.id, failed.id]
        assert transactions[1].status == PaymentStatus.FAILED
        assert engine.get_current_subscription("u1").status == SubscriptionStatus.ACTIVE

    def test_retry_uses_method_of_failed_attempt(self, engine, gateway, card):
        gateway.outcomes = [ChargeOutcome.DECLINED, ChargeOutcome.APPROVED]
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)
        engine.add_payment_method("u1", _method("pm-bank", kind=PaymentMethodType.BANK_TRANSFER))
        failed = engine.process_payment("u1", invoice.id, "pm-bank")

        retried = engine.retry_failed_payment("u1", failed.id)

        assert retried.payment_method == PaymentMethodType.BANK_TRANSFER
        assert gateway.calls[-1][1] == "pm-bank"

    def test_timeout_is_retryable(self, engine, gateway, card):
        gateway.delay = 1.0
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)
        timed_out = engine.process_payment("u1", invoice.id)

        gateway.delay = 0.0
        retried = engine.retry_failed_payment("u1", timed_out.id)

        assert timed_out.status == PaymentStatus.TIMEOUT
        assert retried.status == PaymentStatus.COMPLETED

    def test_completed_transaction_cannot_be_retried(self, engine, card):
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)
        completed = engine.process_payment("u1", invoice.id)

        with pytest.raises(NotFoundError) as exc:
            engine.retry_failed_payment("u1", completed.id)
        assert exc.value.message == "Failed transaction not found"

    def test_retry_of_other_users_transaction(self, engine, gateway, card):
        gateway.outcomes = [ChargeOutcome.DECLINED]
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        engine.add_payment_method("u1", card)
        failed = engine.process_payment("u1", invoice.id)

        with pytest.raises(NotFoundError):
            engine.retry_failed_payment("u2", failed.id)


class TestListings:
    def test_invoices_newest_first(self, engine, clock):
        engine.create_subscription("u1", "basic-plan")
        clock.advance(days=1)
        engine.change_subscription("u1", "premium-plan")

        invoices = engine.get_invoices("u1")

        assert len(invoices) == 2
        assert invoices[0].date > invoices[1].date
        assert invoices[0].items[0].plan_id == "premium-plan"

    def test_invoice_document(self, engine):
        engine.create_subscription("u1", "basic-plan")
        invoice = engine.get_invoices("u1")[0]
        document = engine.get_invoice_document("u1", invoice.id)
        assert document["url"].endswith(f"/{invoice.invoice_number}.pdf")
