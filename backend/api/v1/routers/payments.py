"""
Payments Router - receives verified payment provider events.

The provider-facing webhook (signature verification) forwards decoded
events here using an admin token.
"""

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.deps import get_current_caller, get_subscriptions
from core.errors import Forbidden
from core.security import Caller
from integrations.payments import parse_payment_event
from subscriptions.lifecycle import SubscriptionManager

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


class PaymentEventResult(BaseModel):
    handled: bool
    event_type: str | None = None
    subscription_id: str | None = None
    subscription_status: str | None = None


@router.post("/events", response_model=PaymentEventResult)
async def receive_payment_event(
    payload: dict,
    caller: Caller = Depends(get_current_caller),
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    if not caller.is_admin:
        raise Forbidden("Payment events are accepted from the payment gateway only")

    event = parse_payment_event(payload)
    if event is None:
        return PaymentEventResult(handled=False)

    sub = await manager.handle_payment_event(event)
    return PaymentEventResult(
        handled=sub is not None,
        event_type=event.event_type.value,
        subscription_id=str(sub.subscription_id) if sub else None,
        subscription_status=sub.status if sub else None,
    )
