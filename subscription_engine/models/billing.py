"""
Billing models: invoices, payment methods and payment transactions.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class InvoiceStatus(str, Enum):
    OPEN = "open"
    PAID = "paid"


class PaymentMethodType(str, Enum):
    CREDIT_CARD = "credit_card"
    PAYPAL = "paypal"
    BANK_TRANSFER = "bank_transfer"
    CRYPTO = "crypto"


class PaymentStatus(str, Enum):
    """Outcome of a single charge attempt."""
    COMPLETED = "completed"
    FAILED = "failed"
    TIMEOUT = "timeout"  # gateway did not answer within PAYMENT_TIMEOUT_SECONDS


class InvoiceItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    description: str
    quantity: int = 1
    unit_price: float
    amount: float
    plan_id: str


class Invoice(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    subscription_id: Optional[str] = None
    invoice_number: str
    status: InvoiceStatus = InvoiceStatus.OPEN
    date: datetime
    due_date: datetime
    subtotal: float
    tax: float
    total: float
    items: List[InvoiceItem] = Field(min_length=1)

    def plan_ids(self) -> List[str]:
        return [item.plan_id for item in self.items]


class PaymentMethod(BaseModel):
    """Stored payment method. `details` is opaque to the engine."""
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    type: PaymentMethodType
    details: Dict[str, Any] = Field(default_factory=dict)
    is_default: bool = False


class PaymentTransaction(BaseModel):
    """Immutable charge record; a retry appends a new one."""
    model_config = ConfigDict(frozen=True)

    id: str
    user_id: str
    invoice_id: str
    payment_method: PaymentMethodType
    status: PaymentStatus
    amount: float
    date: datetime
    transaction_id: str
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def payment_method_id(self) -> Optional[str]:
        return self.metadata.get("payment_method_id")
