"""
Subscription API routes.

Thin HTTP surface over SubscriptionEngine:
- Plans:            GET  /subscriptions/plans[/{plan_id}]
- Subscriptions:    GET/POST/PATCH/DELETE /subscriptions/user/{user_id}/...
- Invoices:         GET  /subscriptions/user/{user_id}/invoices[/{invoice_id}]
- Payment methods:  /subscriptions/payment-methods/{user_id}[/{method_id}]
- Payments:         POST /subscriptions/process-payment|retry-payment/...
- Entitlements:     /subscriptions/features/{user_id}, .../feature-access, ...

Handlers are sync: the engine blocks on the payment gateway, so FastAPI
runs them in its threadpool. Errors propagate as AppError and are rendered
by the app-level handler.
"""
from typing import Dict, List, Optional, Union

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel, Field

from subscription_engine.features.subscriptions.engine import SubscriptionEngine, get_engine
from subscription_engine.models.billing import Invoice, PaymentMethod, PaymentTransaction
from subscription_engine.models.plan import BillingCycle, Plan
from subscription_engine.models.subscription import Subscription
from subscription_engine.models.usage import FeatureUsage, UsageRecord


router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


class SubscribeRequest(BaseModel):
    plan_id: str
    billing_cycle: BillingCycle = BillingCycle.MONTHLY


class ChangeSubscriptionRequest(BaseModel):
    plan_id: str
    billing_cycle: Optional[BillingCycle] = None


class CancelSubscriptionRequest(BaseModel):
    immediate: bool = False


class ProcessPaymentRequest(BaseModel):
    payment_method_id: Optional[str] = None


class VerifyLimitRequest(BaseModel):
    resource_name: str
    requested_amount: float = Field(default=1)


class TrackUsageRequest(BaseModel):
    resource: str
    amount: float


class PlanChangePreviewRequest(BaseModel):
    new_plan_id: str


class MessageResponse(BaseModel):
    message: str


# ===== PLANS =====

@router.get("/plans", response_model=List[Plan])
def list_plans(engine: SubscriptionEngine = Depends(get_engine)):
    return engine.list_plans()


@router.get("/plans/{plan_id}", response_model=Plan)
def get_plan(plan_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_plan(plan_id)


# ===== USER SUBSCRIPTIONS =====

@router.get("/user/{user_id}", response_model=Union[Subscription, MessageResponse])
def get_user_subscription(user_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    subscription = engine.get_current_subscription(user_id)
    if subscription is None:
        return MessageResponse(message="User has no active subscription")
    return subscription


@router.post("/user/{user_id}/subscribe", response_model=Subscription)
def subscribe(user_id: str, body: SubscribeRequest, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.create_subscription(user_id, body.plan_id, body.billing_cycle)


@router.patch("/user/{user_id}/change", response_model=Subscription)
def change_subscription(
    user_id: str,
    body: ChangeSubscriptionRequest,
    engine: SubscriptionEngine = Depends(get_engine),
):
    return engine.change_subscription(user_id, body.plan_id, body.billing_cycle)


@router.delete("/user/{user_id}/cancel", response_model=MessageResponse)
def cancel_subscription(
    user_id: str,
    body: Optional[CancelSubscriptionRequest] = Body(None),
    engine: SubscriptionEngine = Depends(get_engine),
):
    immediate = body.immediate if body else False
    return MessageResponse(message=engine.cancel_subscription(user_id, immediate))


@router.get("/user/{user_id}/history", response_model=List[Subscription])
def get_history(user_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_history(user_id)


# ===== INVOICES & TRANSACTIONS =====

@router.get("/user/{user_id}/invoices", response_model=List[Invoice])
def get_invoices(user_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_invoices(user_id)


@router.get("/user/{user_id}/invoices/{invoice_id}", response_model=Invoice)
def get_invoice(user_id: str, invoice_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_invoice(user_id, invoice_id)


@router.get("/invoice-pdf/{user_id}/{invoice_id}")
def get_invoice_document(user_id: str, invoice_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    """Simulated PDF: returns {"url": ...}."""
    return engine.get_invoice_document(user_id, invoice_id)


@router.get("/user/{user_id}/transactions", response_model=List[PaymentTransaction])
def get_transactions(user_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_transactions(user_id)


# ===== PAYMENT METHODS =====

@router.post("/payment-methods/{user_id}", response_model=PaymentMethod)
def add_payment_method(user_id: str, body: PaymentMethod, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.add_payment_method(user_id, body)


@router.get("/payment-methods/{user_id}", response_model=List[PaymentMethod])
def get_payment_methods(user_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_payment_methods(user_id)


@router.get("/payment-methods/{user_id}/{method_id}", response_model=PaymentMethod)
def get_payment_method(user_id: str, method_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_payment_method(user_id, method_id)


@router.patch("/payment-methods/{user_id}/{method_id}/default", response_model=PaymentMethod)
def set_default_payment_method(user_id: str, method_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.set_default_payment_method(user_id, method_id)


@router.delete("/payment-methods/{user_id}/{method_id}", response_model=MessageResponse)
def remove_payment_method(user_id: str, method_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return MessageResponse(message=engine.remove_payment_method(user_id, method_id))


# ===== PAYMENTS =====

@router.post("/process-payment/{user_id}/{invoice_id}", response_model=PaymentTransaction)
def process_payment(
    user_id: str,
    invoice_id: str,
    body: Optional[ProcessPaymentRequest] = Body(None),
    engine: SubscriptionEngine = Depends(get_engine),
):
    method_id = body.payment_method_id if body else None
    return engine.process_payment(user_id, invoice_id, method_id)


@router.post("/retry-payment/{user_id}/{transaction_id}", response_model=PaymentTransaction)
def retry_payment(user_id: str, transaction_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.retry_failed_payment(user_id, transaction_id)


# ===== FEATURES & LIMITS =====

@router.get("/features/{user_id}", response_model=List[FeatureUsage])
def get_features(user_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_features(user_id)


@router.get("/user/{user_id}/feature-access/{feature_name}")
def has_feature_access(user_id: str, feature_name: str, engine: SubscriptionEngine = Depends(get_engine)) -> Dict[str, bool]:
    return {"has_access": engine.has_feature_access(user_id, feature_name)}


@router.get("/user/{user_id}/resource-limit/{resource_name}")
def get_resource_limit(user_id: str, resource_name: str, engine: SubscriptionEngine = Depends(get_engine)) -> Dict[str, Optional[str]]:
    return {"limit": engine.get_resource_limit(user_id, resource_name)}


@router.post("/user/{user_id}/verify-limit")
def verify_resource_limit(user_id: str, body: VerifyLimitRequest, engine: SubscriptionEngine = Depends(get_engine)) -> Dict[str, bool]:
    return {"allowed": engine.verify_resource_limit(user_id, body.resource_name, body.requested_amount)}


@router.get("/user/{user_id}/resource-usage", response_model=UsageRecord)
def get_resource_usage(user_id: str, engine: SubscriptionEngine = Depends(get_engine)):
    return engine.get_usage(user_id)


@router.post("/user/{user_id}/track-usage")
def track_usage(user_id: str, body: TrackUsageRequest, engine: SubscriptionEngine = Depends(get_engine)) -> Dict[str, bool]:
    engine.track_resource_usage(user_id, body.resource, body.amount)
    return {"success": True}


@router.post("/user/{user_id}/change-plan-preview")
def preview_plan_change(
    user_id: str,
    body: PlanChangePreviewRequest,
    engine: SubscriptionEngine = Depends(get_engine),
) -> Dict[str, List[str]]:
    return {"warnings": engine.preview_plan_change(user_id, body.new_plan_id)}
