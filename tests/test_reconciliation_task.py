"""Tests for the rack reconciliation Celery task."""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.tasks.reconciliation import (
    _async_check_reconciliation,
    check_reconciliation,
    run_reconciliation,
)


class TestRunReconciliation:
    """Tests for run_reconciliation."""

    @pytest.mark.asyncio
    async def test_consistent_yard(
        self, session: AsyncSession, add_location, add_request, add_load, add_unit
    ) -> None:
        await add_location("A-1", capacity=100, occupied=12)
        await add_location("A-2", capacity=100)
        request = await add_request(status="approved", assigned_location_ids=["A-1"])
        load = await add_load(request.id, status="completed")
        await add_unit(request, "A-1", load.id, 12)

        result = await run_reconciliation(session)

        assert result["status"] == "consistent"
        assert result["locations_checked"] == 2
        assert result["discrepancies"] == []

    @pytest.mark.asyncio
    async def test_reports_drift(self, session: AsyncSession, add_location) -> None:
        """Test that occupancy with nothing behind it is reported, not fixed."""
        await add_location("A-1", capacity=100, occupied=7)

        result = await run_reconciliation(session)

        assert result["status"] == "discrepancies"
        assert result["discrepancies"] == [
            {
                "location_id": "A-1",
                "occupied_count": 7,
                "in_storage_quantity": 0,
                "held_quantity": 0,
                "discrepancy": 7,
            }
        ]


class TestAsyncCheckReconciliation:
    """Tests for the task's async body."""

    @pytest.mark.asyncio
    async def test_uses_its_own_engine(self, engine, add_location) -> None:
        await add_location("A-1", capacity=100)
        url = engine.url.render_as_string(hide_password=False)

        with patch("pipeyard.tasks.reconciliation.get_async_database_url", return_value=url):
            result = await _async_check_reconciliation()

        assert result["status"] == "consistent"
        assert result["locations_checked"] == 1


class TestCheckReconciliationTask:
    """Tests for the Celery task."""

    @patch("pipeyard.tasks.reconciliation.asyncio.run")
    def test_task_calls_async_check(self, mock_asyncio_run: MagicMock) -> None:
        mock_asyncio_run.return_value = {
            "status": "consistent",
            "checked_at": "2026-10-19T00:00:00+00:00",
            "locations_checked": 3,
            "discrepancies": [],
        }

        result = check_reconciliation.run()

        assert result["locations_checked"] == 3
        mock_asyncio_run.assert_called_once()

    @patch("pipeyard.tasks.reconciliation.asyncio.run")
    def test_failure_is_retried(self, mock_asyncio_run: MagicMock) -> None:
        """Test that a failed check goes through the retry path."""
        mock_asyncio_run.side_effect = ConnectionError("database unavailable")

        with patch.object(check_reconciliation, "retry", side_effect=RuntimeError("retry")) as retry:
            with pytest.raises(RuntimeError):
                check_reconciliation.run()

        retry.assert_called_once()

    def test_registered_in_beat_schedule(self) -> None:
        from pipeyard.celery_app import celery_app

        schedule = celery_app.conf.beat_schedule["check-rack-reconciliation"]
        assert schedule["task"] == check_reconciliation.name

    def test_schedule_interval_follows_settings(self) -> None:
        """Test that the check runs every configured number of minutes."""
        from pipeyard.celery_app import celery_app
        from pipeyard.config import settings

        schedule = celery_app.conf.beat_schedule["check-rack-reconciliation"]["schedule"]
        assert schedule == timedelta(minutes=settings.reconciliation_schedule_minutes)
