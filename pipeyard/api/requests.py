"""FastAPI routes for storage requests and their approval."""

from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.api.dependencies import get_authorizer, get_operator_id
from pipeyard.database import get_db
from pipeyard.models.load import LoadDirection
from pipeyard.services import queries, request_approval
from pipeyard.services.authorization import OperatorAuthorizer

router = APIRouter(prefix="/requests", tags=["requests"])


# --- Pydantic Schemas ---


class StorageRequestResponse(BaseModel):
    """Response schema for a storage request."""

    id: UUID = Field(description="Request UUID")
    company_id: UUID = Field(description="Owning company UUID")
    reference_id: str = Field(description="Customer project reference")
    status: str = Field(description="draft, pending, approved, rejected or completed")
    required_quantity: int = Field(description="Joints the customer asked to store")
    avg_joint_length_m: float | None = Field(description="Average joint length in metres")
    assigned_location_ids: list[str] = Field(description="Racks reserved on approval")
    rejection_reason: str | None = Field(description="Reason given on rejection")
    operator_notes: str | None = Field(description="Notes recorded at approval")
    delivered_quantity: int = Field(description="Joints delivered so far")
    approved_by: str | None = Field(description="Approving operator")
    submitted_at: datetime | None = Field(description="When the request was submitted")
    approved_at: datetime | None = Field(description="When the request was approved")
    rejected_at: datetime | None = Field(description="When the request was rejected")
    completed_at: datetime | None = Field(description="When the request was completed")
    created_at: datetime = Field(description="Record creation timestamp")

    model_config = {"from_attributes": True}


class StorageRequestCreate(BaseModel):
    """Request schema for creating a draft storage request."""

    company_id: UUID = Field(description="Owning company UUID")
    reference_id: str = Field(min_length=1, max_length=100, description="Project reference")
    required_quantity: int = Field(gt=0, description="Joints to store")
    avg_joint_length_m: float | None = Field(default=None, gt=0, description="Average joint length")


class ApproveRequestBody(BaseModel):
    """Request schema for approving a storage request."""

    location_ids: list[str] = Field(min_length=1, description="Racks to assign, in preference order")
    required_quantity: int = Field(gt=0, description="Joints to reserve")
    notes: str | None = Field(default=None, description="Operator notes")
    split: dict[str, int] | None = Field(
        default=None,
        description="Optional explicit joints per rack",
    )


class RejectRequestBody(BaseModel):
    """Request schema for rejecting a storage request."""

    reason: str = Field(min_length=1, description="Why the request was rejected")


class ApprovalResponse(BaseModel):
    """Response schema for an approval."""

    request_id: UUID = Field(description="Request UUID")
    reference_id: str = Field(description="Customer project reference")
    status: str = Field(description="Request status after the call")
    assigned_location_ids: list[str] = Field(description="Racks holding capacity")
    distribution: dict[str, int] = Field(description="Joints held per rack")
    approved_quantity: int = Field(description="Total joints held")
    already_approved: bool = Field(description="True when the call was a replay")

    model_config = {"from_attributes": True}


class LoadGateResponse(BaseModel):
    """Whether a new load may be created."""

    request_id: UUID = Field(description="Request UUID")
    direction: LoadDirection = Field(description="inbound or outbound")
    can_create_load: bool = Field(description="False while an earlier load is open")


# --- API Endpoints ---


@router.get("", response_model=list[StorageRequestResponse])
async def list_requests(
    db: Annotated[AsyncSession, Depends(get_db)],
    company_id: Annotated[UUID | None, Query(description="Filter by company")] = None,
    status: Annotated[str | None, Query(description="Filter by status")] = None,
    limit: Annotated[int, Query(ge=1, le=500, description="Maximum results")] = 100,
    offset: Annotated[int, Query(ge=0, description="Results to skip")] = 0,
) -> list[StorageRequestResponse]:
    """List storage requests, newest first."""
    items = await queries.list_requests(
        db, company_id=company_id, status=status, limit=limit, offset=offset
    )
    return [StorageRequestResponse.model_validate(item) for item in items]


@router.post("", response_model=StorageRequestResponse, status_code=201)
async def create_request(
    body: StorageRequestCreate,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
) -> StorageRequestResponse:
    """Create a draft storage request."""
    request = await request_approval.create_request(
        db,
        company_id=body.company_id,
        reference_id=body.reference_id,
        required_quantity=body.required_quantity,
        created_by=operator_id,
        avg_joint_length_m=body.avg_joint_length_m,
    )
    return StorageRequestResponse.model_validate(request)


@router.get("/{request_id}", response_model=StorageRequestResponse)
async def get_request(
    request_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> StorageRequestResponse:
    """Get a storage request by ID."""
    request = await queries.get_request(db, request_id)
    return StorageRequestResponse.model_validate(request)


@router.post("/{request_id}/submit", response_model=StorageRequestResponse)
async def submit_request(
    request_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
) -> StorageRequestResponse:
    """Submit a draft request for operator approval."""
    request = await request_approval.submit_request(db, request_id, submitted_by=operator_id)
    return StorageRequestResponse.model_validate(request)


@router.post("/{request_id}/approve", response_model=ApprovalResponse)
async def approve_request(
    request_id: UUID,
    body: ApproveRequestBody,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> ApprovalResponse:
    """Approve a pending request and reserve rack capacity.

    Calling this again on an approved request returns the existing
    assignment without reserving anything twice.
    """
    result = await request_approval.approve_request(
        db,
        request_id,
        location_ids=body.location_ids,
        required_quantity=body.required_quantity,
        operator_id=operator_id,
        notes=body.notes,
        split=body.split,
        authorizer=authorizer,
    )
    return ApprovalResponse.model_validate(result)


@router.post("/{request_id}/reject", response_model=StorageRequestResponse)
async def reject_request(
    request_id: UUID,
    body: RejectRequestBody,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> StorageRequestResponse:
    """Reject a pending request."""
    request = await request_approval.reject_request(
        db, request_id, reason=body.reason, operator_id=operator_id, authorizer=authorizer
    )
    return StorageRequestResponse.model_validate(request)


@router.post("/{request_id}/complete", response_model=StorageRequestResponse)
async def complete_request(
    request_id: UUID,
    db: Annotated[AsyncSession, Depends(get_db)],
    operator_id: Annotated[str, Depends(get_operator_id)],
    authorizer: Annotated[OperatorAuthorizer, Depends(get_authorizer)],
) -> StorageRequestResponse:
    """Close an approved request and release unused holds."""
    request = await request_approval.complete_request(
        db, request_id, operator_id=operator_id, authorizer=authorizer
    )
    return StorageRequestResponse.model_validate(request)


@router.get("/{request_id}/load-gate", response_model=LoadGateResponse)
async def get_load_gate(
    request_id: UUID,
    direction: Annotated[LoadDirection, Query(description="inbound or outbound")],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> LoadGateResponse:
    """Whether a new load can be created for the request in this direction."""
    await queries.get_request(db, request_id)
    allowed = await queries.can_create_load(db, request_id, direction)
    return LoadGateResponse(request_id=request_id, direction=direction, can_create_load=allowed)
