"""FastAPI routes for stored inventory and reconciliation."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.database import get_db
from pipeyard.services import queries

router = APIRouter(prefix="/inventory", tags=["inventory"])


class InventoryUnitResponse(BaseModel):
    """Schema for one stored batch of joints."""

    id: UUID
    company_id: UUID
    request_id: UUID
    location_id: str
    origin_load_id: UUID
    disposal_load_id: UUID | None = None
    quantity: int
    length_m: float
    linear_m: float
    reference: str | None = None
    grade: str | None = None
    status: str
    stored_at: datetime | None = None
    picked_up_at: datetime | None = None

    model_config = {"from_attributes": True}


class InventoryListResponse(BaseModel):
    """Response schema for inventory listings."""

    items: list[InventoryUnitResponse]
    total_items: int
    total_quantity: int


class ReconciliationEntry(BaseModel):
    """Ledger occupancy against stored inventory for one rack."""

    location_id: str
    occupied_count: int
    in_storage_quantity: int
    held_quantity: int
    discrepancy: int
    is_consistent: bool

    model_config = {"from_attributes": True}


class ReconciliationResponse(BaseModel):
    """Response schema for the reconciliation report."""

    locations: list[ReconciliationEntry]
    discrepancies: int = Field(description="Racks that do not reconcile")


@router.get("", response_model=InventoryListResponse)
async def list_inventory(
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[UUID | None, Query(description="Filter by company")] = None,
    location_id: Annotated[str | None, Query(description="Filter by rack")] = None,
    status: Annotated[
        str | None,
        Query(description="Filter by status (defaults to in_storage)"),
    ] = "in_storage",
) -> InventoryListResponse:
    """List inventory units, by default only those in storage."""
    units = await queries.list_inventory(
        db, company_id=company_id, location_id=location_id, status=status
    )
    return InventoryListResponse(
        items=[InventoryUnitResponse.model_validate(unit) for unit in units],
        total_items=len(units),
        total_quantity=sum(unit.quantity for unit in units),
    )


@router.get("/reconciliation", response_model=ReconciliationResponse)
async def get_reconciliation(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> ReconciliationResponse:
    """Compare each rack's occupancy with its stored inventory and open holds."""
    report = await queries.reconciliation_report(db)
    return ReconciliationResponse(
        locations=[ReconciliationEntry.model_validate(entry) for entry in report],
        discrepancies=sum(1 for entry in report if not entry.is_consistent),
    )


@router.get("/{unit_id}", response_model=InventoryUnitResponse)
async def get_inventory_unit(
    unit_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> InventoryUnitResponse:
    """Get one inventory unit by ID."""
    unit = await queries.get_inventory_unit(db, unit_id)
    return InventoryUnitResponse.model_validate(unit)
