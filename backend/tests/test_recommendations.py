"""
Tests for the recommendation scorer.
"""

from decimal import Decimal
from types import SimpleNamespace

import pytest

from db.models import MemberPreferences, WineRating
from recommendations.scorer import (
    Candidate,
    PricePreferences,
    average,
    load_preferences,
    recommend_for_member,
    score_wines,
)


def _wine(name, price):
    return SimpleNamespace(name=name, price=Decimal(price))


class TestScoreWines:
    def test_rating_only_score(self):
        """No preference record: score is the average rating doubled."""
        ranked = score_wines([Candidate(wine=_wine("A", "18.00"), ratings=[4, 5, 3])], None)
        assert ranked[0].score == pytest.approx(8.0)
        assert ranked[0].average_rating == pytest.approx(4.0)

    def test_unrated_wine_scores_zero(self):
        ranked = score_wines([Candidate(wine=_wine("A", "18.00"), ratings=[])])
        assert ranked[0].score == 0.0

    def test_price_bonus_inside_range(self):
        prefs = PricePreferences(price_min=Decimal("10"), price_max=Decimal("20"))
        ranked = score_wines(
            [
                Candidate(wine=_wine("Cheap", "15.00"), ratings=[3]),
                Candidate(wine=_wine("Pricey", "45.00"), ratings=[5]),
            ],
            prefs,
        )
        # 3×2+5 = 11 beats 5×2 = 10
        assert [r.wine.name for r in ranked] == ["Cheap", "Pricey"]
        assert ranked[0].score == pytest.approx(11.0)

    def test_range_bounds_are_inclusive(self):
        prefs = PricePreferences(price_min=Decimal("10.00"), price_max=Decimal("20.00"))
        assert prefs.matches(Decimal("10.00"))
        assert prefs.matches(Decimal("20.00"))
        assert not prefs.matches(Decimal("20.01"))

    def test_open_ended_range(self):
        assert PricePreferences(price_min=Decimal("30")).matches(Decimal("300"))
        assert PricePreferences(price_max=Decimal("30")).matches(Decimal("1"))

    def test_empty_range_earns_no_bonus(self):
        ranked = score_wines([Candidate(wine=_wine("A", "18.00"), ratings=[4, 5, 3])], PricePreferences())
        assert ranked[0].score == pytest.approx(8.0)
        assert not PricePreferences().matches(Decimal("18.00"))

    def test_ties_keep_input_order(self):
        candidates = [Candidate(wine=_wine(n, "10.00"), ratings=[4]) for n in ("first", "second", "third")]
        ranked = score_wines(candidates)
        assert [r.wine.name for r in ranked] == ["first", "second", "third"]

    def test_limit(self):
        candidates = [Candidate(wine=_wine(str(i), "10.00"), ratings=[i % 5 + 1]) for i in range(15)]
        assert len(score_wines(candidates)) == 10
        assert len(score_wines(candidates, limit=3)) == 3
        assert len(score_wines(candidates, limit=None)) == 15

    def test_average_empty(self):
        assert average([]) == 0.0


@pytest.mark.asyncio
class TestRecommendForMember:
    async def test_no_preferences_record(self, seeded_db, test_db):
        assert await load_preferences(test_db, seeded_db["member"].member_id) is None

    async def test_preferences_without_bounds_ignored(self, seeded_db, test_db):
        member = seeded_db["member"]
        test_db.add(MemberPreferences(member_id=member.member_id, wine_types=["red"]))
        await test_db.commit()
        assert await load_preferences(test_db, member.member_id) is None

    async def test_ranks_by_ratings_and_preferences(self, seeded_db, test_db):
        member = seeded_db["member"]
        pinot, chablis, rhone = seeded_db["pinot"], seeded_db["chablis"], seeded_db["rhone"]
        test_db.add_all(
            [
                WineRating(wine_id=pinot.wine_id, member_id=member.member_id, rating=4),
                WineRating(wine_id=pinot.wine_id, member_id=seeded_db["owner"].member_id, rating=5),
                WineRating(wine_id=pinot.wine_id, member_id=seeded_db["stranger"].member_id, rating=3),
                WineRating(wine_id=chablis.wine_id, member_id=member.member_id, rating=5),
                MemberPreferences(
                    member_id=member.member_id,
                    price_range_min=Decimal("10.00"),
                    price_range_max=Decimal("15.00"),
                ),
            ]
        )
        await test_db.commit()

        ranked = await recommend_for_member(test_db, member.member_id, seeded_db["cave"].wine_cave_id)

        # chablis 10.0, pinot 8.0, rhone 0 + 5 price bonus
        assert [r.wine.wine_id for r in ranked] == [chablis.wine_id, pinot.wine_id, rhone.wine_id]
        assert ranked[1].score == pytest.approx(8.0)
        assert ranked[2].score == pytest.approx(5.0)

    async def test_out_of_stock_excluded(self, seeded_db, test_db):
        seeded_db["rhone"].stock_quantity = 0
        await test_db.commit()
        ranked = await recommend_for_member(test_db, seeded_db["member"].member_id, seeded_db["cave"].wine_cave_id)
        assert seeded_db["rhone"].wine_id not in {r.wine.wine_id for r in ranked}
        assert len(ranked) == 2
