"""Shared fixtures: a file-backed SQLite database per test and row builders."""

import uuid
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

import pipeyard.models  # noqa: F401  (registers every table on Base.metadata)
from pipeyard.database import Base
from pipeyard.models import (
    AllocationMode,
    InventoryStatus,
    InventoryUnit,
    Load,
    StorageLocation,
    StorageRequest,
)

OPERATOR = "op-1"
JOINT_LENGTH_M = 12.0


def allow_operator(operator_id: str) -> bool:
    """Authorizer used throughout the tests: only OPERATOR may act."""
    return operator_id == OPERATOR


@pytest_asyncio.fixture
async def engine(tmp_path: Any) -> AsyncIterator[AsyncEngine]:
    """SQLite engine whose transactions start with BEGIN IMMEDIATE.

    BEGIN IMMEDIATE takes the write lock up front, so concurrent sessions
    serialize the way row locks serialize them on PostgreSQL.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'pipeyard.db'}")

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def add_location(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[StorageLocation]]:
    """Insert a rack; linear figures default to 12 m per joint."""

    async def _add(
        location_id: str,
        capacity: int = 100,
        occupied: int = 0,
        area: str = "A-A1",
        capacity_linear: float | None = None,
        occupied_linear: float | None = None,
        allocation_mode: AllocationMode = AllocationMode.LINEAR_CAPACITY,
    ) -> StorageLocation:
        location = StorageLocation(
            id=location_id,
            area=area,
            name=location_id,
            capacity=capacity,
            occupied_count=occupied,
            capacity_linear=capacity * JOINT_LENGTH_M if capacity_linear is None else capacity_linear,
            occupied_linear=occupied * JOINT_LENGTH_M if occupied_linear is None else occupied_linear,
            allocation_mode=allocation_mode.value,
        )
        async with session_factory() as session:
            session.add(location)
            await session.commit()
        return location

    return _add


@pytest.fixture
def add_request(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[StorageRequest]]:
    async def _add(
        status: str = "pending",
        required_quantity: int = 20,
        company_id: uuid.UUID | None = None,
        assigned_location_ids: list[str] | None = None,
        reference_id: str | None = None,
    ) -> StorageRequest:
        request = StorageRequest(
            company_id=company_id or uuid.uuid4(),
            reference_id=reference_id or f"REF-{uuid.uuid4().hex[:6].upper()}",
            status=status,
            required_quantity=required_quantity,
            avg_joint_length_m=JOINT_LENGTH_M,
            assigned_location_ids=assigned_location_ids or [],
        )
        async with session_factory() as session:
            session.add(request)
            await session.commit()
        return request

    return _add


@pytest.fixture
def add_load(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Load]]:
    async def _add(
        request_id: uuid.UUID,
        status: str = "new",
        direction: str = "inbound",
        sequence_number: int = 1,
        planned_quantity: int = 50,
    ) -> Load:
        load = Load(
            request_id=request_id,
            direction=direction,
            sequence_number=sequence_number,
            status=status,
            planned_quantity=planned_quantity,
        )
        async with session_factory() as session:
            session.add(load)
            await session.commit()
        return load

    return _add


@pytest.fixture
def add_unit(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[InventoryUnit]]:
    """Insert an in-storage unit; the rack's occupancy must already include it."""

    async def _add(
        request: StorageRequest,
        location_id: str,
        origin_load_id: uuid.UUID,
        quantity: int,
        company_id: uuid.UUID | None = None,
        status: str = InventoryStatus.IN_STORAGE.value,
    ) -> InventoryUnit:
        unit = InventoryUnit(
            company_id=company_id or request.company_id,
            request_id=request.id,
            location_id=location_id,
            origin_load_id=origin_load_id,
            quantity=quantity,
            length_m=JOINT_LENGTH_M,
            status=status,
        )
        async with session_factory() as session:
            session.add(unit)
            await session.commit()
        return unit

    return _add


@pytest.fixture
def fetch(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[type, Any], Awaitable[Any]]:
    """Read a row back through a fresh session."""

    async def _fetch(model: type, key: Any) -> Any:
        async with session_factory() as session:
            return await session.get(model, key)

    return _fetch


@pytest.fixture
def scalars(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[[Any], Awaitable[list[Any]]]:
    """Run a SELECT through a fresh session and return its scalars."""

    async def _scalars(statement: Any) -> list[Any]:
        async with session_factory() as session:
            return list((await session.execute(statement)).scalars().all())

    return _scalars


@pytest.fixture
def read(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Awaitable[Any]]:
    """Call a query function with a fresh session as its first argument."""

    async def _read(fn: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        async with session_factory() as session:
            return await fn(session, *args, **kwargs)

    return _read
