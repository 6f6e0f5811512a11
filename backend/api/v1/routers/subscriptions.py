"""
Subscriptions Router - member subscription lifecycle endpoints.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.deps import get_current_caller, get_subscriptions
from core.security import Caller
from subscriptions.lifecycle import SubscriptionManager

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class SubscriptionResponse(BaseModel):
    subscription_id: UUID
    member_id: UUID
    wine_cave_id: UUID
    tier_id: UUID
    status: str
    start_date: datetime
    next_shipment_date: date | None
    delivery_address: str | None
    cancelled_at: datetime | None

    model_config = {"from_attributes": True}


class SubscriptionCreate(BaseModel):
    wine_cave_id: UUID
    tier_id: UUID
    delivery_address: str | None = None


class SubscriptionStatusUpdate(BaseModel):
    status: str


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=SubscriptionResponse, status_code=201)
async def activate_subscription(
    body: SubscriptionCreate,
    caller: Caller = Depends(get_current_caller),
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    return await manager.activate(
        caller,
        caller.user_id,
        body.wine_cave_id,
        body.tier_id,
        delivery_address=body.delivery_address,
    )


@router.get("/", response_model=list[SubscriptionResponse])
async def list_my_subscriptions(
    caller: Caller = Depends(get_current_caller),
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    return await manager.list_for_member(caller, caller.user_id)


@router.get("/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(
    subscription_id: UUID,
    caller: Caller = Depends(get_current_caller),
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    return await manager.get(caller, subscription_id)


@router.patch("/{subscription_id}/status", response_model=SubscriptionResponse)
async def update_subscription_status(
    subscription_id: UUID,
    body: SubscriptionStatusUpdate,
    caller: Caller = Depends(get_current_caller),
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    return await manager.set_status(caller, subscription_id, body.status)
