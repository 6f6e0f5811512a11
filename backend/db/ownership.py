"""Ownership checks shared by the cave-scoped services."""

import uuid

from sqlalchemy.ext.asyncio import AsyncSession

from core.errors import Forbidden, NotFound
from core.security import Caller
from db.models import WineCave


async def get_cave(db: AsyncSession, wine_cave_id: uuid.UUID) -> WineCave:
    cave = await db.get(WineCave, wine_cave_id)
    if cave is None:
        raise NotFound(f"Wine cave {wine_cave_id} not found")
    return cave


async def require_cave_owner(db: AsyncSession, caller: Caller, wine_cave_id: uuid.UUID) -> WineCave:
    """Return the cave if the caller owns it (scheduler passes); raise otherwise."""
    cave = await get_cave(db, wine_cave_id)
    if not caller.can_act_for(cave.owner_id):
        raise Forbidden("Only the wine cave owner can perform this action", wine_cave_id=wine_cave_id)
    return cave
