"""
Inventory Router - low-stock view and point-of-sale depletion.
"""

from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.deps import get_current_caller, get_inventory
from core.security import Caller
from inventory.replenishment import InventoryMonitor

router = APIRouter(prefix="/api/v1/inventory", tags=["inventory"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class WineStockResponse(BaseModel):
    wine_id: UUID
    wine_cave_id: UUID
    supplier_id: UUID | None
    name: str
    varietal: str | None
    vintage: int | None
    price: Decimal
    cost_price: Decimal | None
    stock_quantity: int
    low_stock_threshold: int | None

    model_config = {"from_attributes": True}


class SaleRequest(BaseModel):
    quantity: int = Field(..., gt=0)


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.get("/{wine_cave_id}/low-stock", response_model=list[WineStockResponse])
async def list_low_stock(
    wine_cave_id: UUID,
    caller: Caller = Depends(get_current_caller),
    monitor: InventoryMonitor = Depends(get_inventory),
):
    """Wines at or below their low-stock threshold."""
    return await monitor.scan_low_stock(caller, wine_cave_id)


@router.post("/wines/{wine_id}/sales", response_model=WineStockResponse)
async def record_sale(
    wine_id: UUID,
    body: SaleRequest,
    caller: Caller = Depends(get_current_caller),
    monitor: InventoryMonitor = Depends(get_inventory),
):
    return await monitor.record_sale(caller, wine_id, body.quantity)
