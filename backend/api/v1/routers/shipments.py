"""
Shipments Router - create, label, track and update subscription shipments.
"""

from datetime import date, datetime
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.deps import get_current_caller, get_pipeline
from core.security import Caller
from fulfillment.pipeline import FulfillmentPipeline, WineSelection

router = APIRouter(prefix="/api/v1/shipments", tags=["shipments"])


# ─── Schemas ────────────────────────────────────────────────────────────────


class ShipmentItemResponse(BaseModel):
    wine_id: UUID
    quantity: int

    model_config = {"from_attributes": True}


class ShipmentResponse(BaseModel):
    shipment_id: UUID
    subscription_id: UUID
    wine_cave_id: UUID
    carrier: str
    status: str
    tracking_number: str | None
    label_url: str | None
    shipment_date: date
    cycle_date: date | None
    estimated_delivery: datetime | None
    delivered_at: datetime | None
    items: list[ShipmentItemResponse]

    model_config = {"from_attributes": True}


class WineSelectionRequest(BaseModel):
    wine_id: UUID
    quantity: int = Field(..., description="Bottles of this wine")


class ShipmentCreate(BaseModel):
    subscription_id: UUID
    carrier: str
    wines: list[WineSelectionRequest] = []


class ShipmentStatusUpdate(BaseModel):
    status: str


class TrackingEventResponse(BaseModel):
    timestamp: datetime | None
    location: str | None
    description: str | None
    status: str | None

    model_config = {"from_attributes": True}


class TrackingResponse(BaseModel):
    tracking_number: str | None
    status: str
    message: str | None = None
    location: str | None = None
    estimated_delivery: datetime | None = None
    updates: list[TrackingEventResponse] = []

    model_config = {"from_attributes": True}


# ─── Endpoints ──────────────────────────────────────────────────────────────


@router.post("/", response_model=ShipmentResponse, status_code=201)
async def create_shipment(
    body: ShipmentCreate,
    caller: Caller = Depends(get_current_caller),
    pipeline: FulfillmentPipeline = Depends(get_pipeline),
):
    selections = [WineSelection(wine_id=w.wine_id, quantity=w.quantity) for w in body.wines]
    return await pipeline.create_shipment(caller, body.subscription_id, body.carrier, selections)


@router.get("/", response_model=list[ShipmentResponse])
async def list_shipments(
    wine_cave_id: UUID,
    status: str | None = None,
    caller: Caller = Depends(get_current_caller),
    pipeline: FulfillmentPipeline = Depends(get_pipeline),
):
    return await pipeline.list_for_cave(caller, wine_cave_id, status)


@router.get("/{shipment_id}", response_model=ShipmentResponse)
async def get_shipment(
    shipment_id: UUID,
    caller: Caller = Depends(get_current_caller),
    pipeline: FulfillmentPipeline = Depends(get_pipeline),
):
    return await pipeline.get(caller, shipment_id)


@router.post("/{shipment_id}/label", response_model=ShipmentResponse)
async def generate_label(
    shipment_id: UUID,
    caller: Caller = Depends(get_current_caller),
    pipeline: FulfillmentPipeline = Depends(get_pipeline),
):
    return await pipeline.generate_label(caller, shipment_id)


@router.get("/{shipment_id}/tracking", response_model=TrackingResponse)
async def track_shipment(
    shipment_id: UUID,
    caller: Caller = Depends(get_current_caller),
    pipeline: FulfillmentPipeline = Depends(get_pipeline),
):
    return await pipeline.track(caller, shipment_id)


@router.patch("/{shipment_id}/status", response_model=ShipmentResponse)
async def update_shipment_status(
    shipment_id: UUID,
    body: ShipmentStatusUpdate,
    caller: Caller = Depends(get_current_caller),
    pipeline: FulfillmentPipeline = Depends(get_pipeline),
):
    return await pipeline.update_status(caller, shipment_id, body.status)
