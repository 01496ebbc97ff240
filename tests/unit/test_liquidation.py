import pytest

from src.p2p_common.enums import P2PEventType
from src.p2p_common.errors import (
    AmountAboveWhatAllowedToRepayError,
    DebtValueNotAboveMaxError,
    OracleFailedError,
    ToSeizeAboveCollateralError,
    UserNotMemberOfMarketError,
)
from src.p2p_common.fixed_point import WAD
from src.p2p_pool.infrastructure.simulated_pool import (
    SimulatedLendingPool,
    SimulatedPriceOracle,
)
from src.p2p_positions.engine.positions_manager import PositionsManager


def _unhealthy_borrower(
    manager: PositionsManager,
    pool: SimulatedLendingPool,
    oracle: SimulatedPriceOracle,
    collateral_price: int = 6 * 10**17,
) -> None:
    """bob: 200 ETH collateral, 100 DAI debt; ETH then drops to `collateral_price`."""
    pool.add_liquidity("cDAI", 1_000 * WAD)
    manager.supply("cETH", "bob", 200 * WAD)
    manager.borrow("cDAI", "bob", 100 * WAD)
    oracle.set_price("cETH", collateral_price)


class TestLiquidate:
    def test_close_factor_caps_repaid_amount(
        self,
        manager: PositionsManager,
        pool: SimulatedLendingPool,
        oracle: SimulatedPriceOracle,
    ) -> None:
        _unhealthy_borrower(manager, pool, oracle)
        assert manager.is_liquidatable("bob")

        with pytest.raises(AmountAboveWhatAllowedToRepayError):
            manager.liquidate("cDAI", "cETH", "liquidator", "bob", 60 * WAD)
        assert manager.get_user_borrow_balance("cDAI", "bob") == 100 * WAD

        seized = manager.liquidate("cDAI", "cETH", "liquidator", "bob", 50 * WAD)

        # 50 * 1.0 * 1.08 / 0.6
        assert seized == 90 * WAD
        assert manager.get_user_borrow_balance("cDAI", "bob") == 50 * WAD
        assert manager.get_user_supply_balance("cETH", "bob") == 110 * WAD
        assert pool.calls[-1] == ("redeem", "cETH", 90 * WAD)
        liquidated = manager.pending_events()[-1]
        assert liquidated.event_type is P2PEventType.LIQUIDATED
        assert liquidated.payload["amount_seized"] == 90 * WAD
        assert liquidated.payload["liquidator"] == "liquidator"

    def test_healthy_borrower_rejected(
        self, manager: PositionsManager, pool: SimulatedLendingPool, oracle: SimulatedPriceOracle
    ) -> None:
        _unhealthy_borrower(manager, pool, oracle, collateral_price=WAD)
        with pytest.raises(DebtValueNotAboveMaxError):
            manager.liquidate("cDAI", "cETH", "liquidator", "bob", 10 * WAD)

    def test_seize_above_collateral_rolls_back_repay(
        self, manager: PositionsManager, pool: SimulatedLendingPool, oracle: SimulatedPriceOracle
    ) -> None:
        _unhealthy_borrower(manager, pool, oracle, collateral_price=2 * 10**17)
        events_before = len(manager.pending_events())

        with pytest.raises(ToSeizeAboveCollateralError):
            manager.liquidate("cDAI", "cETH", "liquidator", "bob", 50 * WAD)

        assert manager.get_position("cDAI", "bob")[1].on_pool == 100 * WAD
        assert pool.borrow_balance_current("cDAI") == 100 * WAD
        assert len(manager.pending_events()) == events_before

    def test_missing_price_rejected(
        self, manager: PositionsManager, pool: SimulatedLendingPool, oracle: SimulatedPriceOracle
    ) -> None:
        _unhealthy_borrower(manager, pool, oracle, collateral_price=0)
        with pytest.raises(OracleFailedError):
            manager.liquidate("cDAI", "cETH", "liquidator", "bob", 10 * WAD)

    def test_borrower_must_be_member_of_both_markets(
        self, manager: PositionsManager, pool: SimulatedLendingPool, oracle: SimulatedPriceOracle
    ) -> None:
        pool.add_liquidity("cDAI", 1_000 * WAD)
        manager.supply("cDAI", "bob", 200 * WAD)
        with pytest.raises(UserNotMemberOfMarketError):
            manager.liquidate("cDAI", "cETH", "liquidator", "bob", 10 * WAD)

    def test_liquidation_of_p2p_debt_uses_no_matching_budget(
        self, manager: PositionsManager, pool: SimulatedLendingPool, oracle: SimulatedPriceOracle
    ) -> None:
        manager.supply("cDAI", "alice", 1_000 * WAD)
        manager.supply("cETH", "bob", 200 * WAD)
        manager.borrow("cDAI", "bob", 100 * WAD)
        oracle.set_price("cETH", 6 * 10**17)

        manager.liquidate("cDAI", "cETH", "liquidator", "bob", 50 * WAD)

        # no budget to demote alice: the shortfall becomes a supply delta
        market = manager.get_market("cDAI")
        assert market.p2p_supply_delta == 50 * WAD
        assert manager.get_position("cDAI", "alice")[0].in_p2p == 100 * WAD
