"""Tests for the HTTP API."""

from collections.abc import AsyncIterator
from uuid import uuid4

import httpx
import pytest
import pytest_asyncio
from fastapi import status
from fastapi.testclient import TestClient
from sqlalchemy.ext.asyncio import AsyncSession

from pipeyard.api.dependencies import get_authorizer, status_code_for
from pipeyard.database import get_db
from pipeyard.main import app
from pipeyard.services.errors import (
    CapacityExceeded,
    InsufficientCapacity,
    NotAuthorized,
    QuantityMismatch,
    RequestNotFound,
    SequentialGateClosed,
    TransactionConflict,
    ValidationFailed,
)
from tests.conftest import OPERATOR, allow_operator

HEADERS = {"X-Operator-Id": OPERATOR}


@pytest_asyncio.fixture
async def client(session_factory) -> AsyncIterator[httpx.AsyncClient]:
    """API client backed by the per-test SQLite database."""

    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_authorizer] = lambda: allow_operator
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as api_client:
        yield api_client
    app.dependency_overrides.clear()


async def _approved_request(client: httpx.AsyncClient, quantity: int = 20) -> str:
    response = await client.post(
        "/requests",
        json={"company_id": str(uuid4()), "reference_id": "REF-2001", "required_quantity": quantity},
        headers=HEADERS,
    )
    request_id = response.json()["id"]
    await client.post(f"/requests/{request_id}/submit", headers=HEADERS)
    response = await client.post(
        f"/requests/{request_id}/approve",
        json={"location_ids": ["A-A1-1"], "required_quantity": quantity},
        headers=HEADERS,
    )
    assert response.status_code == status.HTTP_200_OK
    return request_id


class TestHealthEndpoint:
    """Tests for the health check endpoint."""

    def test_health_check(self) -> None:
        response = TestClient(app).get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy"}


class TestErrorMapping:
    """Tests for engine error to HTTP status mapping."""

    @pytest.mark.parametrize(
        "error,expected",
        [
            (RequestNotFound("missing"), 404),
            (NotAuthorized("no"), 403),
            (InsufficientCapacity("full"), 409),
            (CapacityExceeded("full"), 409),
            (SequentialGateClosed("open"), 409),
            (TransactionConflict("retry"), 409),
            (QuantityMismatch("off by two"), 400),
            (ValidationFailed("blank"), 400),
        ],
    )
    def test_status_codes(self, error, expected: int) -> None:
        assert status_code_for(error) == expected

    @pytest.mark.asyncio
    async def test_missing_operator_header(self, client: httpx.AsyncClient) -> None:
        response = await client.post(f"/requests/{uuid4()}/submit")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestLocationsAPI:
    """Tests for /locations."""

    @pytest.mark.asyncio
    async def test_register_and_read_rack(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/locations",
            json={"location_id": "A-A1-1", "area": "A-A1", "capacity": 100, "capacity_linear": 1200},
            headers=HEADERS,
        )
        assert response.status_code == status.HTTP_201_CREATED
        assert response.json()["available_count"] == 100

        response = await client.get("/locations/A-A1-1")
        assert response.json()["occupied_count"] == 0

        response = await client.get("/locations/areas")
        assert response.json()[0]["area"] == "A-A1"
        assert response.json()[0]["location_count"] == 1

    @pytest.mark.asyncio
    async def test_register_needs_operator(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/locations",
            json={"location_id": "A-A1-1", "area": "A-A1", "capacity": 100, "capacity_linear": 1200},
            headers={"X-Operator-Id": "customer-1"},
        )

        assert response.status_code == status.HTTP_403_FORBIDDEN
        assert response.json()["detail"]["code"] == "not_authorized"

    @pytest.mark.asyncio
    async def test_unknown_rack(self, client: httpx.AsyncClient) -> None:
        response = await client.get("/locations/Z-Z9-9")

        assert response.status_code == status.HTTP_404_NOT_FOUND

    @pytest.mark.asyncio
    async def test_manual_adjustment(self, client: httpx.AsyncClient, add_location) -> None:
        await add_location("A-A1-1", capacity=100, occupied=30)

        response = await client.post(
            "/locations/A-A1-1/adjustments",
            json={"occupied_count": 25, "occupied_linear": 300, "reason": "Joints moved to A-A1-2"},
            headers=HEADERS,
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["occupied_count"] == 25
        assert response.json()["available_count"] == 75

        trail = (await client.get("/audit/entities/rack/A-A1-1")).json()
        assert [entry["action"] for entry in trail] == ["ADJUST_RACK_OCCUPANCY"]

        response = await client.post(
            "/locations/A-A1-1/adjustments",
            json={"occupied_count": 101, "occupied_linear": 300, "reason": "Joints moved to A-A1-2"},
            headers=HEADERS,
        )
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["code"] == "capacity_exceeded"

        response = await client.post(
            "/locations/A-A1-1/adjustments",
            json={"occupied_count": 20, "occupied_linear": 240, "reason": "fix"},
            headers=HEADERS,
        )
        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestRequestsAPI:
    """Tests for /requests."""

    @pytest.mark.asyncio
    async def test_approval_and_refusal(self, client: httpx.AsyncClient, add_location) -> None:
        """Test the 100/75 rack scenario through the API."""
        await add_location("A-A1-1", capacity=100, occupied=75)

        first = await _approved_request(client, quantity=20)
        response = await client.get(f"/requests/{first}")
        assert response.json()["status"] == "approved"
        assert response.json()["assigned_location_ids"] == ["A-A1-1"]

        response = await client.post(
            "/requests",
            json={"company_id": str(uuid4()), "reference_id": "REF-2002", "required_quantity": 10},
            headers=HEADERS,
        )
        second = response.json()["id"]
        await client.post(f"/requests/{second}/submit", headers=HEADERS)
        response = await client.post(
            f"/requests/{second}/approve",
            json={"location_ids": ["A-A1-1"], "required_quantity": 10},
            headers=HEADERS,
        )

        assert response.status_code == status.HTTP_409_CONFLICT
        detail = response.json()["detail"]
        assert detail["code"] == "insufficient_capacity"
        assert detail["details"]["available"] == 5
        assert (await client.get("/locations/A-A1-1")).json()["occupied_count"] == 95

    @pytest.mark.asyncio
    async def test_unknown_request(self, client: httpx.AsyncClient) -> None:
        response = await client.get(f"/requests/{uuid4()}")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"]["code"] == "request_not_found"

    @pytest.mark.asyncio
    async def test_reject_needs_reason(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            f"/requests/{uuid4()}/reject", json={"reason": ""}, headers=HEADERS
        )

        assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


class TestLoadsAPI:
    """Tests for /loads and the inbound flow end to end."""

    @pytest.mark.asyncio
    async def test_inbound_flow(self, client: httpx.AsyncClient, add_location) -> None:
        await add_location("A-A1-1", capacity=100)
        request_id = await _approved_request(client, quantity=20)

        response = await client.post(
            "/loads",
            json={"request_id": request_id, "direction": "inbound", "planned_quantity": 20},
            headers=HEADERS,
        )
        assert response.status_code == status.HTTP_201_CREATED
        load_id = response.json()["id"]
        assert response.json()["sequence_number"] == 1

        response = await client.post(
            "/loads",
            json={"request_id": request_id, "direction": "inbound", "planned_quantity": 5},
            headers=HEADERS,
        )
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["code"] == "sequential_gate_closed"

        gate = await client.get(f"/requests/{request_id}/load-gate", params={"direction": "inbound"})
        assert gate.json()["can_create_load"] is False

        assert (await client.post(f"/loads/{load_id}/approve", headers=HEADERS)).status_code == 200
        assert (await client.post(f"/loads/{load_id}/depart", headers=HEADERS)).json()[
            "status"
        ] == "in_transit"

        response = await client.post(
            f"/loads/{load_id}/complete-inbound",
            json={
                "location_id": "A-A1-1",
                "actual_quantity": 18,
                "line_items": [{"quantity": 10, "length_ft": 40}, {"quantity": 9}],
            },
            headers=HEADERS,
        )
        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"]["code"] == "quantity_mismatch"

        response = await client.post(
            f"/loads/{load_id}/complete-inbound",
            json={"location_id": "A-A1-1", "actual_quantity": 18},
            headers=HEADERS,
        )
        assert response.status_code == status.HTTP_200_OK
        assert response.json()["delivered_quantity"] == 18

        inventory = (await client.get("/inventory", params={"location_id": "A-A1-1"})).json()
        assert inventory["total_quantity"] == 18

        reconciliation = (await client.get("/inventory/reconciliation")).json()
        assert reconciliation["discrepancies"] == 0
        assert reconciliation["locations"][0]["held_quantity"] == 2

        trail = (await client.get(f"/audit/entities/load/{load_id}")).json()
        assert [entry["action"] for entry in trail] == [
            "CREATE_LOAD",
            "APPROVE_LOAD",
            "MARK_LOAD_IN_TRANSIT",
            "COMPLETE_INBOUND_LOAD",
        ]

    @pytest.mark.asyncio
    async def test_correction_and_rejection(self, client: httpx.AsyncClient, add_location) -> None:
        await add_location("A-A1-1", capacity=100)
        request_id = await _approved_request(client)
        response = await client.post(
            "/loads",
            json={"request_id": request_id, "direction": "inbound", "planned_quantity": 20},
            headers=HEADERS,
        )
        load_id = response.json()["id"]

        response = await client.post(
            f"/loads/{load_id}/corrections",
            json={"issues": ["Carrier name missing"]},
            headers=HEADERS,
        )
        assert response.json()["status"] == "new"
        assert response.json()["correction_issues"] == ["Carrier name missing"]

        response = await client.post(
            f"/loads/{load_id}/reject", json={"reason": "Duplicate booking"}, headers=HEADERS
        )
        assert response.json()["status"] == "rejected"

        response = await client.post(f"/loads/{load_id}/approve", headers=HEADERS)
        assert response.status_code == status.HTTP_409_CONFLICT
        assert response.json()["detail"]["code"] == "invalid_transition"


class TestAuditAPI:
    """Tests for /audit."""

    @pytest.mark.asyncio
    async def test_entries_are_paginated(self, client: httpx.AsyncClient, add_location) -> None:
        await add_location("A-A1-1", capacity=100)
        await _approved_request(client)

        response = await client.get("/audit/entries", params={"page_size": 2})
        body = response.json()
        assert body["total"] == 3
        assert body["total_pages"] == 2
        assert len(body["items"]) == 2

        response = await client.get("/audit/entries", params={"action": "approve_request"})
        assert response.json()["total"] == 1

        counts = (await client.get("/audit/actions")).json()
        assert counts == {"CREATE_REQUEST": 1, "SUBMIT_REQUEST": 1, "APPROVE_REQUEST": 1}
