"""
Recommendations Router - ranked wines and the taste profile behind them.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from api.deps import get_current_caller, get_db, get_subscriptions
from core.errors import NotFound
from core.security import Caller
from recommendations.scorer import DEFAULT_LIMIT, recommend_for_member
from subscriptions.lifecycle import SubscriptionManager

router = APIRouter(prefix="/api/v1/recommendations", tags=["recommendations"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class RecommendationResponse(BaseModel):
    wine_id: UUID
    name: str
    price: Decimal
    score: float
    average_rating: float


class PreferencesResponse(BaseModel):
    member_id: UUID
    price_range_min: Decimal | None
    price_range_max: Decimal | None
    wine_types: list[str] | None
    include_varietals: list[str] | None
    exclude_varietals: list[str] | None
    updated_at: datetime

    model_config = {"from_attributes": True}


class PreferencesUpdate(BaseModel):
    price_range_min: Decimal | None = None
    price_range_max: Decimal | None = None
    wine_types: list[str] | None = None
    include_varietals: list[str] | None = None
    exclude_varietals: list[str] | None = None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(
    caller: Caller = Depends(get_current_caller),
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    prefs = await manager.get_preferences(caller, caller.user_id)
    if prefs is None:
        raise NotFound("No preferences recorded")
    return prefs


@router.put("/preferences", response_model=PreferencesResponse)
async def update_preferences(
    body: PreferencesUpdate,
    caller: Caller = Depends(get_current_caller),
    manager: SubscriptionManager = Depends(get_subscriptions),
):
    return await manager.update_preferences(
        caller,
        caller.user_id,
        price_range_min=body.price_range_min,
        price_range_max=body.price_range_max,
        wine_types=body.wine_types,
        include_varietals=body.include_varietals,
        exclude_varietals=body.exclude_varietals,
    )


@router.get("/", response_model=list[RecommendationResponse])
async def recommend(
    wine_cave_id: UUID | None = None,
    limit: int = Query(DEFAULT_LIMIT, ge=1, le=50),
    caller: Caller = Depends(get_current_caller),
    db: AsyncSession = Depends(get_db),
):
    ranked = await recommend_for_member(db, caller.user_id, wine_cave_id, limit)
    return [
        RecommendationResponse(
            wine_id=r.wine.wine_id,
            name=r.wine.name,
            price=r.wine.price,
            score=r.score,
            average_rating=r.average_rating,
        )
        for r in ranked
    ]
