"""Shared test fixtures."""

from collections.abc import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from src.main import app
from src.p2p_common.database import get_db_session
from src.p2p_common.fixed_point import WAD
from src.p2p_pool.infrastructure.simulated_pool import (
    SimulatedLendingPool,
    SimulatedPriceOracle,
)
from src.p2p_positions.application.service import (
    PositionsApplicationService,
    get_positions_service,
)
from src.p2p_positions.engine.positions_manager import PositionsManager

COLLATERAL_FACTOR = 75 * 10**16
CLOSE_FACTOR = 5 * 10**17
LIQUIDATION_INCENTIVE = 108 * 10**16


@pytest.fixture
def pool() -> SimulatedLendingPool:
    pool = SimulatedLendingPool()
    pool.list_market("cDAI")
    pool.list_market("cETH")
    return pool


@pytest.fixture
def oracle() -> SimulatedPriceOracle:
    return SimulatedPriceOracle(prices={"cDAI": WAD, "cETH": WAD})


@pytest.fixture
def manager(pool: SimulatedLendingPool, oracle: SimulatedPriceOracle) -> PositionsManager:
    """Two markets at 75% collateral factor, prices at 1.0, all indexes at 1.0."""
    manager = PositionsManager(
        pool,
        oracle,
        default_max_steps=100,
        max_sorted_users=20,
        close_factor=CLOSE_FACTOR,
        liquidation_incentive=LIQUIDATION_INCENTIVE,
    )
    manager.create_market("cDAI", collateral_factor=COLLATERAL_FACTOR)
    manager.create_market("cETH", collateral_factor=COLLATERAL_FACTOR)
    return manager


@pytest.fixture
def db_session() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
async def client(
    manager: PositionsManager, db_session: AsyncMock
) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client bound to a fresh manager and a mocked DB session."""
    service = PositionsApplicationService(manager)

    async def _db() -> AsyncGenerator[AsyncMock, None]:
        yield db_session

    app.dependency_overrides[get_positions_service] = lambda: service
    app.dependency_overrides[get_db_session] = _db
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
