"""PositionsApplicationService — serialises actions and flushes the event outbox.

The manager is synchronous and owns the in-memory ledger. This layer adds a
single asyncio.Lock (liquidation touches two markets, so per-market locks are
not enough) and persists the events each action produced. Each action and its
flush run in one manager transaction: if the commit fails the action is
undone as well, so the ledger never holds state the outbox did not record.
Reads take the same lock so they never observe an action waiting on its
commit.
"""
import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.p2p_common.errors import InternalError
from src.p2p_common.fixed_point import WAD
from src.p2p_pool.infrastructure.simulated_pool import (
    SimulatedLendingPool,
    SimulatedPriceOracle,
)
from src.p2p_positions.application.schemas import (
    ActionResponse,
    BorrowRequest,
    LiquidateRequest,
    LiquidationResponse,
    LiquidityResponse,
    MarketResponse,
    PositionOut,
    RepayRequest,
    SupplyRequest,
    UserPositionResponse,
    WithdrawRequest,
)
from src.p2p_positions.engine.positions_manager import PositionsManager
from src.p2p_positions.infrastructure.event_writer import write_p2p_events

logger = logging.getLogger(__name__)

# Third-party cash seeded into each bootstrap market of the simulated pool
_BOOTSTRAP_LIQUIDITY = 1_000_000 * WAD


class PositionsApplicationService:
    def __init__(self, manager: PositionsManager) -> None:
        self._manager = manager
        self._lock = asyncio.Lock()

    @property
    def manager(self) -> PositionsManager:
        return self._manager

    # --- actions ---

    async def supply(self, market_id: str, req: SupplyRequest, db: AsyncSession) -> ActionResponse:
        async with self._lock:
            with self._manager.transaction("supply"):
                self._manager.supply(market_id, req.user_id, req.amount, req.max_steps)
                await self._flush_events(db)
            return self._action_response("SUPPLY", market_id, req.user_id, req.amount)

    async def borrow(self, market_id: str, req: BorrowRequest, db: AsyncSession) -> ActionResponse:
        async with self._lock:
            with self._manager.transaction("borrow"):
                self._manager.borrow(market_id, req.user_id, req.amount, req.max_steps)
                await self._flush_events(db)
            return self._action_response("BORROW", market_id, req.user_id, req.amount)

    async def withdraw(
        self, market_id: str, req: WithdrawRequest, db: AsyncSession
    ) -> ActionResponse:
        async with self._lock:
            with self._manager.transaction("withdraw"):
                withdrawn = self._manager.withdraw(
                    market_id, req.user_id, req.receiver or req.user_id, req.amount, req.max_steps
                )
                await self._flush_events(db)
            return self._action_response("WITHDRAW", market_id, req.user_id, withdrawn)

    async def repay(self, market_id: str, req: RepayRequest, db: AsyncSession) -> ActionResponse:
        async with self._lock:
            with self._manager.transaction("repay"):
                repaid = self._manager.repay(market_id, req.user_id, req.amount, req.max_steps)
                await self._flush_events(db)
            return self._action_response("REPAY", market_id, req.user_id, repaid)

    async def liquidate(self, req: LiquidateRequest, db: AsyncSession) -> LiquidationResponse:
        async with self._lock:
            with self._manager.transaction("liquidate"):
                seized = self._manager.liquidate(
                    req.borrowed_market_id,
                    req.collateral_market_id,
                    req.liquidator,
                    req.borrower,
                    req.amount,
                )
                await self._flush_events(db)
            return LiquidationResponse(
                borrowed_market_id=req.borrowed_market_id,
                collateral_market_id=req.collateral_market_id,
                liquidator=req.liquidator,
                borrower=req.borrower,
                amount_repaid=req.amount,
                amount_seized=seized,
            )

    # --- reads ---

    async def get_market(self, market_id: str) -> MarketResponse:
        async with self._lock:
            book = self._manager.ledger.peek_book(market_id)
            sizes = {
                "suppliers_on_pool": len(book.suppliers_on_pool),
                "suppliers_in_p2p": len(book.suppliers_in_p2p),
                "borrowers_on_pool": len(book.borrowers_on_pool),
                "borrowers_in_p2p": len(book.borrowers_in_p2p),
            }
            return MarketResponse.from_domain(self._manager.get_market(market_id), sizes)

    async def get_user_position(self, market_id: str, user_id: str) -> UserPositionResponse:
        async with self._lock:
            return self._position_view(market_id, user_id)

    async def get_user_liquidity(self, user_id: str) -> LiquidityResponse:
        async with self._lock:
            states = self._manager.get_user_balance_states(user_id)
            return LiquidityResponse.from_domain(
                user_id, self._manager.get_entered_markets(user_id), states
            )

    # --- internals ---

    def _position_view(self, market_id: str, user_id: str) -> UserPositionResponse:
        supply, borrow = self._manager.get_position(market_id, user_id)
        return UserPositionResponse(
            market_id=market_id,
            user_id=user_id,
            supply=PositionOut.from_domain(supply),
            borrow=PositionOut.from_domain(borrow),
            supply_balance=self._manager.get_user_supply_balance(market_id, user_id),
            borrow_balance=self._manager.get_user_borrow_balance(market_id, user_id),
        )

    def _action_response(
        self, action: str, market_id: str, user_id: str, amount: int
    ) -> ActionResponse:
        return ActionResponse(
            action=action,
            amount=amount,
            position=self._position_view(market_id, user_id),
        )

    async def _flush_events(self, db: AsyncSession) -> None:
        events = self._manager.pending_events()
        if not events:
            return
        try:
            await write_p2p_events(events, db)
            await db.commit()
        except Exception as exc:
            logger.error("Failed to persist %d p2p events: %s", len(events), exc)
            await db.rollback()
            raise InternalError("Failed to persist p2p events") from exc
        self._manager.ack_events(len(events))


def build_default_service() -> PositionsApplicationService:
    """Manager wired to the simulated pool and oracle, with bootstrap markets listed."""
    pool = SimulatedLendingPool()
    oracle = SimulatedPriceOracle()
    manager = PositionsManager(pool, oracle)
    for market_id in settings.BOOTSTRAP_MARKETS:
        pool.list_market(market_id)
        pool.add_liquidity(market_id, _BOOTSTRAP_LIQUIDITY)
        oracle.set_price(market_id, WAD)
        manager.create_market(market_id)
    return PositionsApplicationService(manager)


_service: PositionsApplicationService | None = None


def get_positions_service() -> PositionsApplicationService:
    global _service  # noqa: PLW0603
    if _service is None:
        _service = build_default_service()
    return _service
