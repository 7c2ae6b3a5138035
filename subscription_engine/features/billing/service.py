"""
Billing engine.

Pure-ish business logic that computes:
- Cycle prices (quarterly carries a discount)
- Invoices (flat tax, fixed due window, one line item per plan)
- Cycle end dates

Invoices are written through the repository; nothing here talks to a
payment gateway.
"""
import calendar
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from subscription_engine.core.config import Settings, settings as default_settings
from subscription_engine.core.logging import log_event
from subscription_engine.core.metrics import billing_invoices_total
from subscription_engine.features.storage.repository import BillingRepository
from subscription_engine.models.billing import Invoice, InvoiceItem, InvoiceStatus
from subscription_engine.models.plan import BillingCycle, Plan
from subscription_engine.models.subscription import Subscription


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def add_months(dt: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month = dt.month + months
    year = dt.year + (month - 1) // 12
    month = (month - 1) % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def add_years(dt: datetime, years: int) -> datetime:
    try:
        return dt.replace(year=dt.year + years)
    except ValueError:
        # Feb 29 -> Feb 28
        return dt.replace(year=dt.year + years, day=28)


def end_date_for(start: datetime, cycle: BillingCycle) -> datetime:
    """Monthly -> +1 month, quarterly -> +3 months, annual -> +1 year."""
    if cycle == BillingCycle.MONTHLY:
        return add_months(start, 1)
    if cycle == BillingCycle.QUARTERLY:
        return add_months(start, 3)
    if cycle == BillingCycle.ANNUAL:
        return add_years(start, 1)
    raise ValueError(f"Unknown billing cycle: {cycle}")


def invoice_number_for(moment: datetime) -> str:
    """
    INV- plus the first 10 digits of the epoch-millisecond timestamp.

    Two invoices issued within the same ~1000 seconds share a number.
    """
    millis = int(moment.timestamp() * 1000)
    return f"INV-{str(millis)[:10]}"


class BillingEngine:
    def __init__(
        self,
        repository: BillingRepository,
        clock: Callable[[], datetime] = utc_now,
        settings: Optional[Settings] = None,
    ):
        self.repository = repository
        self.clock = clock
        self.settings = settings or default_settings

    def price_for(self, plan: Plan, cycle: BillingCycle) -> float:
        if cycle == BillingCycle.ANNUAL:
            return plan.annual_price
        if cycle == BillingCycle.QUARTERLY:
            return plan.monthly_price * 3 * (1 - self.settings.QUARTERLY_DISCOUNT)
        return plan.monthly_price

    def end_date_for(self, start: datetime, cycle: BillingCycle) -> datetime:
        return end_date_for(start, cycle)

    def generate_invoice(self, subscription: Subscription, plan: Plan) -> Invoice:
        """
        Build and store an open invoice for the subscription's cycle.

        Args:
            subscription: Subscription being billed (its cycle sets the price)
            plan: Plan the line item is for

        Returns:
            The stored Invoice
        """
        price = self.price_for(plan, subscription.billing_cycle)
        tax = price * self.settings.TAX_RATE
        issued_at = self.clock()

        invoice = Invoice(
            id=str(uuid.uuid4()),
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            invoice_number=invoice_number_for(issued_at),
            status=InvoiceStatus.OPEN,
            date=issued_at,
            due_date=issued_at + timedelta(days=self.settings.INVOICE_DUE_DAYS),
            subtotal=price,
            tax=tax,
            total=price + tax,
            items=[
                InvoiceItem(
                    description=f"{plan.name} Plan ({subscription.billing_cycle.value})",
                    quantity=1,
                    unit_price=price,
                    amount=price,
                    plan_id=plan.id,
                )
            ],
        )
        self.repository.add_invoice(invoice)

        billing_invoices_total.inc({"cycle": subscription.billing_cycle.value})
        log_event(
            "info",
            "invoice.generated",
            user_id=subscription.user_id,
            subscription_id=subscription.id,
            invoice_id=invoice.id,
            event_type="invoice.generated",
            extra={"plan_id": plan.id, "total": invoice.total, "invoice_number": invoice.invoice_number},
        )
        return invoice

    def invoice_document_url(self, invoice: Invoice) -> str:
        """Simulated PDF location for an invoice."""
        base = self.settings.INVOICE_DOCUMENT_BASE_URL.rstrip("/")
        return f"{base}/{invoice.invoice_number}.pdf"
