"""Audit logging service for operator actions.

This module provides functions for:
- Appending audit entries inside the caller's transaction
- Querying audit entries by actor, action, entity and time range
- Fetching the full trail for one record
- Aggregating audit counts for dashboards
"""

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.models.audit_entry import AuditEntry


@dataclass(frozen=True)
class AuditFilters:
    """Filters for querying audit entries.

    Attributes:
        actor: Filter by operator id
        action: Filter by action name
        entity_type: Filter by entity type
        entity_id: Filter by entity id
        start_time: Filter for timestamp >= this value
        end_time: Filter for timestamp <= this value
    """

    actor: str | None = None
    action: str | None = None
    entity_type: str | None = None
    entity_id: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None


def _apply_filters(query: Any, filters: AuditFilters | None) -> Any:
    if not filters:
        return query
    if filters.actor:
        query = query.where(AuditEntry.actor == filters.actor)
    if filters.action:
        query = query.where(AuditEntry.action == filters.action)
    if filters.entity_type:
        query = query.where(AuditEntry.entity_type == filters.entity_type)
    if filters.entity_id:
        query = query.where(AuditEntry.entity_id == filters.entity_id)
    if filters.start_time:
        query = query.where(AuditEntry.timestamp >= filters.start_time)
    if filters.end_time:
        query = query.where(AuditEntry.timestamp <= filters.end_time)
    return query


async def record_audit_entry(
    session: AsyncSession,
    actor: str,
    action: str,
    entity_type: str,
    entity_id: Any,
    details: dict[str, Any] | None = None,
    timestamp: datetime | None = None,
) -> AuditEntry:
    """Append an audit entry.

    The entry is flushed but not committed, so it lands or vanishes together
    with the change it describes.

    Args:
        session: Database session
        actor: Operator id performing the action
        action: Action name (e.g., "APPROVE_REQUEST")
        entity_type: Kind of record affected
        entity_id: Id of the affected record (stringified)
        details: Optional structured context
        timestamp: Optional timestamp (defaults to now)

    Returns:
        The created AuditEntry instance
    """
    entry = AuditEntry(
        actor=actor,
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        details=details,
        timestamp=timestamp or datetime.now(UTC),
    )
    session.add(entry)
    await session.flush()
    return entry


async def get_audit_entries(
    session: AsyncSession,
    filters: AuditFilters | None = None,
    limit: int = 100,
    offset: int = 0,
    order_desc: bool = True,
) -> list[AuditEntry]:
    """Query audit entries with optional filters.

    Args:
        session: Database session
        filters: Optional filters to apply
        limit: Maximum number of results (default 100)
        offset: Number of results to skip (for pagination)
        order_desc: Order by timestamp descending (default True)

    Returns:
        List of matching AuditEntry rows
    """
    query = _apply_filters(select(AuditEntry), filters)

    if order_desc:
        query = query.order_by(desc(AuditEntry.timestamp))
    else:
        query = query.order_by(AuditEntry.timestamp)

    query = query.offset(offset).limit(limit)

    result = await session.execute(query)
    return list(result.scalars().all())


async def get_entity_audit_trail(
    session: AsyncSession,
    entity_type: str,
    entity_id: Any,
) -> list[AuditEntry]:
    """Get every audit entry for one record, oldest first."""
    return await get_audit_entries(
        session,
        filters=AuditFilters(entity_type=entity_type, entity_id=str(entity_id)),
        limit=1000,
        order_desc=False,
    )


async def count_audit_entries(
    session: AsyncSession,
    filters: AuditFilters | None = None,
) -> int:
    """Count audit entries matching filters."""
    query = _apply_filters(select(func.count(AuditEntry.id)), filters)
    result = await session.execute(query)
    return result.scalar() or 0


async def get_action_counts(
    session: AsyncSession,
    filters: AuditFilters | None = None,
) -> dict[str, int]:
    """Count audit entries per action name."""
    query = _apply_filters(
        select(AuditEntry.action, func.count(AuditEntry.id)).group_by(AuditEntry.action),
        filters,
    )
    result = await session.execute(query)
    return {row[0]: row[1] for row in result}
