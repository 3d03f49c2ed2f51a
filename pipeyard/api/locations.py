"""FastAPI routes for racks and yard capacity."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.api.dependencies import get_authorizer, get_operator_id
from pipeyard.database import get_db, transaction
from pipeyard.models.storage_location import AllocationMode
from pipeyard.services import queries
from pipeyard.services.authorization import OperatorAuthorizer, require_operator
from pipeyard.services.capacity_ledger import (
    MIN_ADJUSTMENT_REASON_LENGTH,
    adjust_occupancy,
    register_location,
    to_location_capacity,
)

router = APIRouter(prefix="/locations", tags=["locations"])


# --- Pydantic Schemas ---


class LocationCapacityResponse(BaseModel):
    """Response schema for one rack's capacity."""

    location_id: str = Field(description="Rack code")
    area: str = Field(description="Yard area code")
    allocation_mode: str = Field(description="linear_capacity or slot")
    capacity: int = Field(description="Maximum joints")
    occupied_count: int = Field(description="Joints committed to the rack")
    available_count: int = Field(description="Joints that still fit")
    capacity_linear: float = Field(description="Maximum metres")
    occupied_linear: float = Field(description="Metres committed to the rack")
    available_linear: float = Field(description="Metres that still fit")

    model_config = {"from_attributes": True}


class AreaCapacityResponse(BaseModel):
    """Response schema for capacity totals of one yard area."""

    area: str = Field(description="Yard area code")
    location_count: int = Field(description="Racks in the area")
    capacity: int = Field(description="Total joints")
    occupied_count: int = Field(description="Joints committed")
    available_count: int = Field(description="Joints that still fit")
    capacity_linear: float = Field(description="Total metres")
    occupied_linear: float = Field(description="Metres committed")
    available_linear: float = Field(description="Metres that still fit")

    model_config = {"from_attributes": True}


class LocationCreateRequest(BaseModel):
    """Request schema for registering a rack."""

    location_id: str = Field(min_length=1, max_length=50, description="Rack code, e.g. A-A1-5")
    area: str = Field(min_length=1, max_length=50, description="Yard area code")
    capacity: int = Field(gt=0, description="Maximum joints")
    capacity_linear: float = Field(gt=0, description="Maximum metres")
    name: str | None = Field(default=None, description="Display name")
    allocation_mode: AllocationMode = Field(
        default=AllocationMode.LINEAR_CAPACITY,
        description="linear_capacity or single-occupant slot",
    )


class OccupancyAdjustmentRequest(BaseModel):
    """Request schema for a manual occupancy correction."""

    occupied_count: int = Field(ge=0, description="Joints the rack actually holds")
    occupied_linear: float = Field(ge=0, description="Metres the rack actually holds")
    reason: str = Field(
        min_length=MIN_ADJUSTMENT_REASON_LENGTH,
        description="Why the rack's figures are being corrected",
    )


# --- API Endpoints ---


@router.get("", response_model=list[LocationCapacityResponse])
async def list_locations(
    db: Annotated[AsyncSession, Depends(get_db)],
    area: Annotated[str | None, Query(description="Filter by yard area")] = None,
) -> list[LocationCapacityResponse]:
    """List racks with their remaining capacity."""
    locations = await queries.capacity_by_location(db, area=area)
    return [LocationCapacityResponse.model_validate(location) for location in locations]


@router.get("/areas", response_model=list[AreaCapacityResponse])
async def list_area_capacity(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[AreaCapacityResponse]:
    """Remaining capacity summed per yard area."""
    areas = await queries.capacity_by_area(db)
    return [AreaCapacityResponse.model_validate(area) for area in areas]


@router.get("/{location_id}", response_model=LocationCapacityResponse)
async def get_location(
    location_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> LocationCapacityResponse:
    """Get one rack's capacity."""
    location = await queries.get_location(db, location_id)
    return LocationCapacityResponse.model_validate(to_location_capacity(location))


@router.post("", response_model=LocationCapacityResponse, status_code=201)
async def create_location(
    body: LocationCreateRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> LocationCapacityResponse:
    """Register an empty rack."""
    require_operator(operator_id, authorizer)
    async with transaction(db):
        location = await register_location(
            db,
            location_id=body.location_id,
            area=body.area,
            capacity=body.capacity,
            capacity_linear=body.capacity_linear,
            name=body.name,
            allocation_mode=body.allocation_mode,
        )
    return LocationCapacityResponse.model_validate(to_location_capacity(location))


@router.post("/{location_id}/adjustments", response_model=LocationCapacityResponse)
async def adjust_location_occupancy(
    location_id: str,
    body: OccupancyAdjustmentRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> LocationCapacityResponse:
    """Correct a rack's occupancy by hand; the change is audited."""
    location = await adjust_occupancy(
        db,
        location_id,
        new_count=body.occupied_count,
        new_linear=body.occupied_linear,
        reason=body.reason,
        operator_id=operator_id,
        authorizer=authorizer,
    )
    return LocationCapacityResponse.model_validate(to_location_capacity(location))
