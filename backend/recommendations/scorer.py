"""
Recommendation Scorer - rank candidate wines for a member.

    score = average_rating × 2  (+5 when the price sits inside the member's
                                 preferred price range)

Used by the fulfillment scheduler to pick default bottles for a shipment.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from db.models import MemberPreferences, Wine, WineRating

RATING_WEIGHT = 2
PRICE_MATCH_BONUS = 5
DEFAULT_LIMIT = 10


@dataclass
class PricePreferences:
    price_min: Decimal | None = None
    price_max: Decimal | None = None

    def matches(self, price: Decimal) -> bool:
        """Inside the range; a range with neither bound set matches nothing."""
        if self.price_min is None and self.price_max is None:
            return False
        if self.price_min is not None and price < self.price_min:
            return False
        if self.price_max is not None and price > self.price_max:
            return False
        return True


@dataclass
class Candidate:
    wine: Wine
    ratings: list[int]


@dataclass
class RankedWine:
    wine: Wine
    score: float
    average_rating: float


def average(ratings: list[int]) -> float:
    if not ratings:
        return 0.0
    return sum(ratings) / len(ratings)


def score_wines(
    candidates: list[Candidate],
    preferences: PricePreferences | None = None,
    limit: int | None = DEFAULT_LIMIT,
) -> list[RankedWine]:
    """Score and rank candidates. Ties keep input order; limit=None keeps all."""
    ranked = []
    for candidate in candidates:
        avg = average(candidate.ratings)
        score = avg * RATING_WEIGHT
        if preferences is not None and preferences.matches(Decimal(candidate.wine.price)):
            score += PRICE_MATCH_BONUS
        ranked.append(RankedWine(wine=candidate.wine, score=score, average_rating=avg))

    ranked.sort(key=lambda r: r.score, reverse=True)
    if limit is None:
        return ranked
    return ranked[: max(limit, 0)]


async def load_preferences(db: AsyncSession, member_id: uuid.UUID) -> PricePreferences | None:
    result = await db.execute(select(MemberPreferences).where(MemberPreferences.member_id == member_id))
    prefs = result.scalar_one_or_none()
    if prefs is None or (prefs.price_range_min is None and prefs.price_range_max is None):
        return None
    return PricePreferences(price_min=prefs.price_range_min, price_max=prefs.price_range_max)


async def recommend_for_member(
    db: AsyncSession,
    member_id: uuid.UUID,
    wine_cave_id: uuid.UUID | None = None,
    limit: int | None = DEFAULT_LIMIT,
    in_stock_only: bool = True,
) -> list[RankedWine]:
    """Load candidates with their ratings and the member's preferences, then rank."""
    query = select(Wine)
    if wine_cave_id is not None:
        query = query.where(Wine.wine_cave_id == wine_cave_id)
    if in_stock_only:
        query = query.where(Wine.stock_quantity > 0)
    query = query.order_by(Wine.name, Wine.wine_id)
    wines = list((await db.execute(query)).scalars().all())
    if not wines:
        return []

    rating_rows = await db.execute(
        select(WineRating.wine_id, WineRating.rating).where(WineRating.wine_id.in_([w.wine_id for w in wines]))
    )
    ratings: dict[uuid.UUID, list[int]] = {}
    for wine_id, rating in rating_rows.all():
        ratings.setdefault(wine_id, []).append(rating)

    preferences = await load_preferences(db, member_id)
    candidates = [Candidate(wine=w, ratings=ratings.get(w.wine_id, [])) for w in wines]
    return score_wines(candidates, preferences, limit)
