"""
Payment gateway protocol.

Defines the interface for charging a payment method. The engine ships a
simulated gateway; a real provider plugs in behind the same protocol
without changing business logic.
"""
import random
from enum import Enum
from typing import Optional, Protocol

from subscription_engine.models.billing import PaymentMethod


class ChargeOutcome(str, Enum):
    APPROVED = "approved"
    DECLINED = "declined"


class PaymentGateway(Protocol):
    """
    Protocol for payment gateways.

    Implementations must:
    - Charge the given amount against the method
    - Return APPROVED or DECLINED for a definitive answer
    - Raise PaymentGatewayError for transport/provider failures
    """

    def charge(self, amount: float, method: PaymentMethod) -> ChargeOutcome:
        """
        Charge a payment method.

        Args:
            amount: Amount to charge (invoice total)
            method: Stored payment method to charge

        Returns:
            ChargeOutcome

        Raises:
            PaymentGatewayError: If the provider could not be reached
        """
        ...


class SimulatedGateway:
    """Approves a charge with probability success_rate."""

    def __init__(self, success_rate: float = 0.9, rng: Optional[random.Random] = None):
        self.success_rate = success_rate
        self.rng = rng or random.Random()

    def charge(self, amount: float, method: PaymentMethod) -> ChargeOutcome:
        if self.rng.random() < self.success_rate:
            return ChargeOutcome.APPROVED
        return ChargeOutcome.DECLINED


class PaymentGatewayError(Exception):
    """Base exception for payment gateway errors."""
    pass
