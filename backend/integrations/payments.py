"""
Payment provider events.

The provider's webhook endpoint (signature checking included) lives outside
this service; it forwards the decoded event body here. Provider event names
are mapped onto the three events the subscription lifecycle reacts to.
"""

import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Any

from core.errors import InvalidArgument


class PaymentEventType(str, Enum):
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"


PROVIDER_EVENT_TYPES: dict[str, PaymentEventType] = {
    "checkout.session.completed": PaymentEventType.PAYMENT_SUCCEEDED,
    "invoice.payment_succeeded": PaymentEventType.PAYMENT_SUCCEEDED,
    "invoice.paid": PaymentEventType.PAYMENT_SUCCEEDED,
    "invoice.payment_failed": PaymentEventType.PAYMENT_FAILED,
    "customer.subscription.deleted": PaymentEventType.SUBSCRIPTION_CANCELLED,
}


@dataclass
class PaymentEvent:
    event_type: PaymentEventType
    member_id: uuid.UUID
    wine_cave_id: uuid.UUID
    tier_id: uuid.UUID | None = None
    external_subscription_id: str | None = None
    delivery_address: str | None = None


def _as_uuid(value: Any, field_name: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        raise InvalidArgument(f"Payment event is missing a valid {field_name}", field=field_name)


def parse_payment_event(payload: dict[str, Any]) -> PaymentEvent | None:
    """
    Map a provider event body to a PaymentEvent.

    Returns None for event types the lifecycle does not react to.
    Subscription identity travels in ``data.object.metadata``.
    """
    event_type = PROVIDER_EVENT_TYPES.get(payload.get("type", ""))
    if event_type is None:
        return None

    obj = (payload.get("data") or {}).get("object") or {}
    metadata = obj.get("metadata") or {}

    tier_id = metadata.get("tier_id")
    return PaymentEvent(
        event_type=event_type,
        member_id=_as_uuid(metadata.get("member_id"), "member_id"),
        wine_cave_id=_as_uuid(metadata.get("wine_cave_id"), "wine_cave_id"),
        tier_id=_as_uuid(tier_id, "tier_id") if tier_id else None,
        external_subscription_id=obj.get("subscription") or obj.get("id"),
        delivery_address=metadata.get("delivery_address"),
    )
