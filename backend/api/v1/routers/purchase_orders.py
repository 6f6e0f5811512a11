"""
Purchase Order Router - replenishment workflow endpoints.

The supplier ordering workflow:
  1. Low-stock scan groups wines by supplier → status='draft' (or 'sent')
  2. Owner reviews → sends, confirms or cancels
  3. Goods arrive → status='received', stock incremented once
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from api.deps import get_current_caller, get_inventory
from core.security import Caller
from inventory.replenishment import InventoryMonitor

router = APIRouter(prefix="/api/v1/purchase-orders", tags=["purchase-orders"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class POItemResponse(BaseModel):
    wine_id: UUID
    quantity: int
    unit_price: Decimal

    model_config = {"from_attributes": True}


class POResponse(BaseModel):
    po_id: UUID
    wine_cave_id: UUID
    supplier_id: UUID
    total_amount: Decimal
    status: str
    expected_delivery_date: datetime | None
    notes: str | None
    created_at: datetime
    sent_at: datetime | None
    received_at: datetime | None
    items: list[POItemResponse]

    model_config = {"from_attributes": True}


class POGenerateRequest(BaseModel):
    wine_cave_id: UUID
    auto_send: bool = False


class POStatusUpdate(BaseModel):
    status: str
    notes: str | None = None


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/generate", response_model=list[POResponse], status_code=201)
async def generate_purchase_orders(
    body: POGenerateRequest,
    caller: Caller = Depends(get_current_caller),
    monitor: InventoryMonitor = Depends(get_inventory),
):
    return await monitor.generate_purchase_orders(caller, body.wine_cave_id, auto_send=body.auto_send)


@router.get("/", response_model=list[POResponse])
async def list_purchase_orders(
    wine_cave_id: UUID,
    status: str | None = None,
    caller: Caller = Depends(get_current_caller),
    monitor: InventoryMonitor = Depends(get_inventory),
):
    return await monitor.list_orders(caller, wine_cave_id, status)


@router.get("/{po_id}", response_model=POResponse)
async def get_purchase_order(
    po_id: UUID,
    caller: Caller = Depends(get_current_caller),
    monitor: InventoryMonitor = Depends(get_inventory),
):
    return await monitor.get_order(caller, po_id)


@router.patch("/{po_id}/status", response_model=POResponse)
async def update_purchase_order_status(
    po_id: UUID,
    body: POStatusUpdate,
    caller: Caller = Depends(get_current_caller),
    monitor: InventoryMonitor = Depends(get_inventory),
):
    return await monitor.update_order_status(caller, po_id, body.status, body.notes)


@router.post("/{po_id}/receive", response_model=POResponse)
async def receive_purchase_order(
    po_id: UUID,
    caller: Caller = Depends(get_current_caller),
    monitor: InventoryMonitor = Depends(get_inventory),
):
    return await monitor.receive_order(caller, po_id)
