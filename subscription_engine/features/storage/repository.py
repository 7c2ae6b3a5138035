"""
subscription_engine/features/storage/repository.py

Storage for billing records.

BillingRepository is the seam the ledger, usage meter and payment processor
write through. InMemoryRepository is the only backend; a persistent one
must keep the same semantics:
- Subscriptions/invoices/transactions are append-only and listed in
  insertion order.
- update_* replaces a record in place (same position, same id).
- Payment-method lists are swapped whole per user.
"""

from typing import Dict, List, Optional, Protocol

from subscription_engine.models.billing import Invoice, PaymentMethod, PaymentTransaction
from subscription_engine.models.subscription import Subscription
from subscription_engine.models.usage import UsageRecord


class BillingRepository(Protocol):
    """Protocol for billing record storage."""

    def add_subscription(self, subscription: Subscription) -> None:
        ...

    def update_subscription(self, subscription: Subscription) -> None:
        """Replace the stored record with the same id. Raises KeyError if unknown."""
        ...

    def list_subscriptions(self, user_id: str) -> List[Subscription]:
        """All records for the user, in insertion order."""
        ...

    def add_invoice(self, invoice: Invoice) -> None:
        ...

    def update_invoice(self, invoice: Invoice) -> None:
        ...

    def list_invoices(self, user_id: str) -> List[Invoice]:
        ...

    def add_transaction(self, transaction: PaymentTransaction) -> None:
        ...

    def list_transactions(self, user_id: str) -> List[PaymentTransaction]:
        ...

    def list_payment_methods(self, user_id: str) -> List[PaymentMethod]:
        ...

    def replace_payment_methods(self, user_id: str, methods: List[PaymentMethod]) -> None:
        ...

    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        ...

    def save_usage(self, user_id: str, usage: UsageRecord) -> None:
        ...


def _replace_by_id(records: list, record) -> None:
    for index, existing in enumerate(records):
        if existing.id == record.id:
            records[index] = record
            return
    raise KeyError(record.id)


class InMemoryRepository:
    """
    Process-local storage.

    Lists returned are always copies, never references to internal state.
    """

    def __init__(self):
        self._subscriptions: List[Subscription] = []
        self._invoices: List[Invoice] = []
        self._transactions: List[PaymentTransaction] = []
        self._payment_methods: Dict[str, List[PaymentMethod]] = {}
        self._usage: Dict[str, UsageRecord] = {}

    # ===== SUBSCRIPTIONS =====

    def add_subscription(self, subscription: Subscription) -> None:
        self._subscriptions.append(subscription)

    def update_subscription(self, subscription: Subscription) -> None:
        _replace_by_id(self._subscriptions, subscription)

    def list_subscriptions(self, user_id: str) -> List[Subscription]:
        return [s for s in self._subscriptions if s.user_id == user_id]

    # ===== INVOICES =====

    def add_invoice(self, invoice: Invoice) -> None:
        self._invoices.append(invoice)

    def update_invoice(self, invoice: Invoice) -> None:
        _replace_by_id(self._invoices, invoice)

    def list_invoices(self, user_id: str) -> List[Invoice]:
        return [i for i in self._invoices if i.user_id == user_id]

    # ===== TRANSACTIONS =====

    def add_transaction(self, transaction: PaymentTransaction) -> None:
        self._transactions.append(transaction)

    def list_transactions(self, user_id: str) -> List[PaymentTransaction]:
        return [t for t in self._transactions if t.user_id == user_id]

    # ===== PAYMENT METHODS =====

    def list_payment_methods(self, user_id: str) -> List[PaymentMethod]:
        return list(self._payment_methods.get(user_id, []))

    def replace_payment_methods(self, user_id: str, methods: List[PaymentMethod]) -> None:
        self._payment_methods[user_id] = list(methods)

    # ===== USAGE =====

    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        return self._usage.get(user_id)

    def save_usage(self, user_id: str, usage: UsageRecord) -> None:
        self._usage[user_id] = usage

    def clear(self) -> None:
        """
        Drop every record.
        FOR TESTING ONLY.
        """
        self._subscriptions.clear()
        self._invoices.clear()
        self._transactions.clear()
        self._payment_methods.clear()
        self._usage.clear()


# Global repository instance (lazy initialization)
_repository_instance: Optional[InMemoryRepository] = None


def get_repository() -> BillingRepository:
    """
    Get the singleton repository instance.

    This is the primary API that all consumers should use.
    """
    global _repository_instance
    if _repository_instance is None:
        _repository_instance = InMemoryRepository()
    return _repository_instance


def reset_repository() -> None:
    """
    Reset the repository instance.

    FOR TESTING ONLY - forces re-initialization on next get_repository() call.
    """
    global _repository_instance
    if _repository_instance is not None:
        _repository_instance.clear()
    _repository_instance = None
