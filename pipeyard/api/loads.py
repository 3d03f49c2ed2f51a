"""FastAPI routes for trucking loads."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.api.dependencies import get_authorizer, get_operator_id
from pipeyard.database import get_db
from pipeyard.models.load import LoadDirection
from pipeyard.services import load_lifecycle, materializer, queries, sequential_gate
from pipeyard.services.authorization import OperatorAuthorizer
from pipeyard.services.materializer import ManifestLineItem

router = APIRouter(prefix="/loads", tags=["loads"])


# --- Pydantic Schemas ---


class LoadResponse(BaseModel):
    """Response schema for a trucking load."""

    id: UUID = Field(description="Load UUID")
    request_id: UUID = Field(description="Parent storage request UUID")
    direction: str = Field(description="inbound or outbound")
    sequence_number: int = Field(description="Position among the request's loads")
    status: str = Field(description="new, approved, in_transit, completed or rejected")
    planned_quantity: int = Field(description="Joints declared by the customer")
    completed_quantity: int | None = Field(description="Joints actually moved")
    rejection_reason: str | None = Field(description="Reason given on rejection")
    correction_issues: list[str] | None = Field(description="Issues from the last correction request")
    notes: str | None = Field(description="Completion notes")
    approved_at: datetime | None = Field(description="When the load was approved")
    departed_at: datetime | None = Field(description="When the load went in transit")
    completed_at: datetime | None = Field(description="When the load was completed")
    rejected_at: datetime | None = Field(description="When the load was rejected")
    created_at: datetime = Field(description="Record creation timestamp")

    model_config = {"from_attributes": True}


class LoadCreate(BaseModel):
    """Request schema for creating a load."""

    request_id: UUID = Field(description="Approved storage request UUID")
    direction: LoadDirection = Field(description="inbound or outbound")
    planned_quantity: int = Field(gt=0, description="Joints to move")


class RejectLoadBody(BaseModel):
    """Request schema for rejecting a load."""

    reason: str = Field(min_length=1, description="Why the load was rejected")


class CorrectionBody(BaseModel):
    """Request schema for sending a load back for correction."""

    issues: list[str] = Field(min_length=1, description="Issues the customer must fix")


class ManifestLineItemBody(BaseModel):
    """One manifest line."""

    quantity: int = Field(gt=0, description="Joints on the line")
    length_ft: float | None = Field(default=None, gt=0, description="Joint length in feet")
    reference: str | None = Field(default=None, description="Serial or heat number")
    grade: str | None = Field(default=None, description="Pipe grade")


class CompleteInboundBody(BaseModel):
    """Request schema for receiving an inbound load."""

    location_id: str = Field(description="Rack receiving the pipe")
    actual_quantity: int = Field(gt=0, description="Joints physically received")
    line_items: list[ManifestLineItemBody] = Field(default_factory=list, description="Manifest lines")
    notes: str | None = Field(default=None, description="Completion notes")


class CompleteOutboundBody(BaseModel):
    """Request schema for an outbound pickup."""

    inventory_ids: list[UUID] = Field(min_length=1, description="Inventory units picked up")
    actual_quantity: int = Field(gt=0, description="Joints physically picked up")
    notes: str | None = Field(default=None, description="Completion notes")


class CompletionResponse(BaseModel):
    """Response schema for a load completion."""

    load_id: UUID = Field(description="Completed load UUID")
    status: str = Field(description="Load status after completion")
    completed_quantity: int = Field(description="Joints moved")
    inventory_ids: list[UUID] = Field(description="Units created or picked up")
    location_ids: list[str] = Field(description="Racks whose occupancy changed")
    delivered_quantity: int = Field(description="Request's delivered total")

    model_config = {"from_attributes": True}


# --- API Endpoints ---


@router.get("", response_model=list[LoadResponse])
async def list_loads(
    db: Annotated[AsyncSession, Depends(get_db)],
    request_id: Annotated[UUID | None, Query(description="Filter by request")] = None,
    company_id: Annotated[UUID | None, Query(description="Filter by company")] = None,
    direction: Annotated[LoadDirection | None, Query(description="Filter by direction")] = None,
    status: Annotated[str | None, Query(description="Filter by status")] = None,
) -> list[LoadResponse]:
    """List loads ordered by request, direction and sequence."""
    items = await queries.list_loads(
        db, request_id=request_id, company_id=company_id, direction=direction, status=status
    )
    return [LoadResponse.model_validate(item) for item in items]


@router.post("", response_model=LoadResponse, status_code=201)
async def create_load(
    body: LoadCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
) -> LoadResponse:
    """Create the next load for a request.

    Refused with 409 while an earlier load in the same direction is open.
    """
    load = await sequential_gate.create_load(
        db,
        body.request_id,
        direction=body.direction,
        planned_quantity=body.planned_quantity,
        created_by=operator_id,
    )
    return LoadResponse.model_validate(load)


@router.get("/{load_id}", response_model=LoadResponse)
async def get_load(
    load_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> LoadResponse:
    """Get a load by ID."""
    load = await queries.get_load(db, load_id)
    return LoadResponse.model_validate(load)


@router.post("/{load_id}/approve", response_model=LoadResponse)
async def approve_load(
    load_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> LoadResponse:
    """Approve a new load."""
    load = await load_lifecycle.approve_load(db, load_id, operator_id, authorizer=authorizer)
    return LoadResponse.model_validate(load)


@router.post("/{load_id}/reject", response_model=LoadResponse)
async def reject_load(
    load_id: UUID,
    body: RejectLoadBody,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> LoadResponse:
    """Reject a new load."""
    load = await load_lifecycle.reject_load(
        db, load_id, body.reason, operator_id, authorizer=authorizer
    )
    return LoadResponse.model_validate(load)


@router.post("/{load_id}/corrections", response_model=LoadResponse)
async def request_correction(
    load_id: UUID,
    body: CorrectionBody,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> LoadResponse:
    """Send a new load back to the customer for correction."""
    load = await load_lifecycle.request_correction(
        db, load_id, body.issues, operator_id, authorizer=authorizer
    )
    return LoadResponse.model_validate(load)


@router.post("/{load_id}/depart", response_model=LoadResponse)
async def mark_in_transit(
    load_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> LoadResponse:
    """Mark an approved load as in transit."""
    load = await load_lifecycle.mark_in_transit(db, load_id, operator_id, authorizer=authorizer)
    return LoadResponse.model_validate(load)


@router.post("/{load_id}/complete-inbound", response_model=CompletionResponse)
async def complete_inbound(
    load_id: UUID,
    body: CompleteInboundBody,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> CompletionResponse:
    """Receive an inbound load onto a rack and create its inventory."""
    result = await materializer.complete_inbound_load(
        db,
        load_id,
        location_id=body.location_id,
        actual_quantity=body.actual_quantity,
        line_items=[ManifestLineItem(**item.model_dump()) for item in body.line_items],
        operator_id=operator_id,
        notes=body.notes,
        authorizer=authorizer,
    )
    return CompletionResponse.model_validate(result)


@router.post("/{load_id}/complete-outbound", response_model=CompletionResponse)
async def complete_outbound(
    load_id: UUID,
    body: CompleteOutboundBody,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> CompletionResponse:
    """Pick stored inventory up with an outbound load."""
    result = await materializer.complete_outbound_load(
        db,
        load_id,
        inventory_ids=body.inventory_ids,
        actual_quantity=body.actual_quantity,
        operator_id=operator_id,
        notes=body.notes,
        authorizer=authorizer,
    )
    return CompletionResponse.model_validate(result)
