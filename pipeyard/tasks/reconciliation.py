"""Celery task that checks rack occupancy against stored inventory."""

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from pipeyard.celery_app import celery_app
from pipeyard.config import settings
from pipeyard.database import get_async_database_url
from pipeyard.services.queries import reconciliation_report

logger = logging.getLogger(__name__)


async def run_reconciliation(session: AsyncSession) -> dict[str, Any]:
    """Build a reconciliation summary from one session.

    Args:
        session: Database session

    Returns:
        Dictionary with the racks checked and every discrepancy found
    """
    report = await reconciliation_report(session)
    discrepancies = [
        {
            "location_id": entry.location_id,
            "occupied_count": entry.occupied_count,
            "in_storage_quantity": entry.in_storage_quantity,
            "held_quantity": entry.held_quantity,
            "discrepancy": entry.discrepancy,
        }
        for entry in report
        if not entry.is_consistent
    ]
    for item in discrepancies:
        logger.error(
            "Rack %s does not reconcile: occupied %d, in storage %d, held %d",
            item["location_id"],
            item["occupied_count"],
            item["in_storage_quantity"],
            item["held_quantity"],
        )
    return {
        "status": "discrepancies" if discrepancies else "consistent",
        "checked_at": datetime.now(UTC).isoformat(),
        "locations_checked": len(report),
        "discrepancies": discrepancies,
    }


async def _async_check_reconciliation() -> dict[str, Any]:
    """Async implementation of the reconciliation check."""
    engine = create_async_engine(
        get_async_database_url(settings.database_url),
        pool_pre_ping=True,
    )
    async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    try:
        async with async_session() as session:
            return await run_reconciliation(session)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    name="pipeyard.tasks.reconciliation.check_reconciliation",
    max_retries=3,
    default_retry_delay=300,  # 5 minutes
)
def check_reconciliation(self: Any) -> dict[str, Any]:
    """Celery task to check every rack's occupancy.

    A rack reconciles when its occupied count equals the joints of
    in-storage inventory on it plus the joints still held for approved
    requests. Discrepancies are logged and returned, never corrected.

    Returns:
        Dictionary with the racks checked and any discrepancies
    """
    logger.info("Starting rack reconciliation check")
    try:
        result = asyncio.run(_async_check_reconciliation())
        logger.info(
            "Reconciliation check completed: %d racks checked, %d discrepancies",
            result["locations_checked"],
            len(result["discrepancies"]),
        )
        return result
    except Exception as e:
        logger.exception("Reconciliation check task failed")
        raise self.retry(exc=e) from e
