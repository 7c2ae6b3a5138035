# subscription_engine/conftest.py
import sys
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

# Add repository root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from subscription_engine.core.config import Settings
from subscription_engine.core.metrics import METRICS
from subscription_engine.features.payments.gateway import ChargeOutcome
from subscription_engine.features.storage.repository import InMemoryRepository, reset_repository
from subscription_engine.features.subscriptions.engine import SubscriptionEngine, reset_engine
from subscription_engine.models.billing import PaymentMethod, PaymentMethodType


class FakeGateway:
    """
    Deterministic gateway.

    Plays back `outcomes` in order (then repeats the last one). An outcome
    may be an exception instance, which is raised instead.
    """

    def __init__(self, outcomes=None, delay: float = 0.0):
        self.outcomes = list(outcomes or [ChargeOutcome.APPROVED])
        self.delay = delay
        self.calls = []

    def charge(self, amount, method):
        self.calls.append((amount, method.id))
        if self.delay:
            time.sleep(self.delay)
        outcome = self.outcomes.pop(0) if len(self.outcomes) > 1 else self.outcomes[0]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def _reset_state():
    """Fresh singletons and counters for every test."""
    METRICS.reset()
    reset_engine()
    reset_repository()
    yield
    reset_engine()
    reset_repository()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def test_settings():
    return Settings(PAYMENT_TIMEOUT_SECONDS=0.2)


@pytest.fixture
def engine(gateway, clock, test_settings):
    eng = SubscriptionEngine(
        repository=InMemoryRepository(),
        gateway=gateway,
        clock=clock,
        settings=test_settings,
    )
    yield eng
    eng.shutdown()


@pytest.fixture
def card():
    return PaymentMethod(
        id="pm-card",
        type=PaymentMethodType.CREDIT_CARD,
        details={"last4": "4242", "brand": "visa"},
    )
