"""FastAPI routes for the operator audit trail.

This module provides API endpoints for:
- Querying audit entries with filters and pagination
- Retrieving the full trail of one request, load or rack
- Counting entries per action
"""

from datetime import datetime
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.database import get_db
from pipeyard.services.audit_logging import (
    AuditFilters,
    count_audit_entries,
    get_action_counts,
    get_audit_entries,
    get_entity_audit_trail,
)

router = APIRouter(prefix="/audit", tags=["audit"])


# --- Pydantic Schemas ---


class AuditEntryResponse(BaseModel):
    """Response schema for a single audit entry."""

    id: str = Field(description="Audit entry UUID")
    actor: str = Field(description="Operator who acted")
    action: str = Field(description="Action taken")
    entity_type: str = Field(description="Kind of record affected")
    entity_id: str = Field(description="Id of the affected record")
    timestamp: datetime = Field(description="When the action happened")
    details: dict[str, Any] | None = Field(description="Structured context")

    model_config = {"from_attributes": True}


class AuditEntryListResponse(BaseModel):
    """Response schema for audit entry listing with pagination."""

    items: list[AuditEntryResponse] = Field(description="List of audit entries")
    total: int = Field(description="Total number of matching entries")
    page: int = Field(description="Current page number")
    page_size: int = Field(description="Items per page")
    total_pages: int = Field(description="Total number of pages")


# --- API Endpoints ---


@router.get("/entries", response_model=AuditEntryListResponse)
async def list_audit_entries(
    db: Annotated[AsyncSession, Depends(get_db)],
    page: Annotated[int, Query(ge=1, description="Page number")] = 1,
    page_size: Annotated[
        int, Query(ge=1, le=100, description="Items per page")
    ] = 20,
    actor: Annotated[str | None, Query(description="Filter by operator")] = None,
    action: Annotated[str | None, Query(description="Filter by action")] = None,
    entity_type: Annotated[str | None, Query(description="Filter by entity type")] = None,
    entity_id: Annotated[str | None, Query(description="Filter by entity id")] = None,
    start_time: Annotated[
        datetime | None,
        Query(description="Filter for entries after this time"),
    ] = None,
    end_time: Annotated[
        datetime | None,
        Query(description="Filter for entries before this time"),
    ] = None,
) -> AuditEntryListResponse:
    """List audit entries, most recent first."""
    filters = AuditFilters(
        actor=actor,
        action=action.upper() if action else None,
        entity_type=entity_type,
        entity_id=entity_id,
        start_time=start_time,
        end_time=end_time,
    )

    total = await count_audit_entries(db, filters)
    total_pages = max(1, (total + page_size - 1) // page_size)
    offset = (page - 1) * page_size

    items = await get_audit_entries(db, filters=filters, limit=page_size, offset=offset)

    return AuditEntryListResponse(
        items=[AuditEntryResponse.model_validate(item) for item in items],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.get("/entities/{entity_type}/{entity_id}", response_model=list[AuditEntryResponse])
async def get_entity_trail(
    entity_type: str,
    entity_id: str,
    db: Annotated[AsyncSession, Depends(get_db)],
) -> list[AuditEntryResponse]:
    """Get the complete audit trail for one record, oldest first."""
    entries = await get_entity_audit_trail(db, entity_type, entity_id)
    return [AuditEntryResponse.model_validate(entry) for entry in entries]


@router.get("/actions", response_model=dict[str, int])
async def list_action_counts(
    db: Annotated[AsyncSession, Depends(get_db)],
    actor: Annotated[str | None, Query(description="Filter by operator")] = None,
) -> dict[str, int]:
    """Count audit entries per action."""
    filters = AuditFilters(actor=actor) if actor else None
    return await get_action_counts(db, filters)
