import pytest

from src.p2p_common.enums import P2PEventType
from src.p2p_common.errors import UserNotMemberOfMarketError
from src.p2p_common.fixed_point import WAD
from src.p2p_pool.infrastructure.simulated_pool import SimulatedLendingPool
from src.p2p_positions.engine.positions_manager import PositionsManager


def _direct_match(manager: PositionsManager) -> None:
    manager.supply("cDAI", "alice", 100 * WAD)
    manager.supply("cETH", "bob", 200 * WAD)
    manager.borrow("cDAI", "bob", 50 * WAD)


class TestSoftRepay:
    def test_partial_repay_of_pool_debt(
        self, manager: PositionsManager, pool: SimulatedLendingPool
    ) -> None:
        pool.add_liquidity("cDAI", 1_000 * WAD)
        manager.supply("cETH", "bob", 200 * WAD)
        manager.borrow("cDAI", "bob", 50 * WAD)

        assert manager.repay("cDAI", "bob", 20 * WAD) == 20 * WAD
        assert manager.get_position("cDAI", "bob")[1].on_pool == 30 * WAD
        assert pool.borrow_balance_current("cDAI") == 30 * WAD
        assert pool.calls[-1] == ("repay", "cDAI", 20 * WAD)

    def test_repay_capped_at_debt_and_leaves_market(
        self, manager: PositionsManager, pool: SimulatedLendingPool
    ) -> None:
        pool.add_liquidity("cDAI", 1_000 * WAD)
        manager.supply("cETH", "bob", 200 * WAD)
        manager.borrow("cDAI", "bob", 50 * WAD)

        assert manager.repay("cDAI", "bob", 1_000 * WAD) == 50 * WAD
        assert manager.get_position("cDAI", "bob")[1].is_empty
        assert manager.get_entered_markets("bob") == ["cETH"]
        assert pool.borrow_balance_current("cDAI") == 0

    def test_non_member_rejected(self, manager: PositionsManager) -> None:
        with pytest.raises(UserNotMemberOfMarketError):
            manager.repay("cDAI", "ghost", WAD)


class TestP2PRepay:
    def test_breaking_repay_with_zero_budget_creates_supply_delta(
        self, manager: PositionsManager, pool: SimulatedLendingPool
    ) -> None:
        _direct_match(manager)

        manager.repay("cDAI", "bob", 50 * WAD, max_steps=0)

        market = manager.get_market("cDAI")
        assert market.p2p_supply_delta == 50 * WAD
        assert market.p2p_supply_amount == 50 * WAD
        assert market.p2p_borrow_amount == 0
        assert manager.get_position("cDAI", "alice")[0].in_p2p == 50 * WAD
        assert pool.calls[-1] == ("mint", "cDAI", 50 * WAD)

    def test_breaking_repay_demotes_p2p_suppliers(self, manager: PositionsManager) -> None:
        _direct_match(manager)

        manager.repay("cDAI", "bob", 50 * WAD)

        alice = manager.get_position("cDAI", "alice")[0]
        assert (alice.on_pool, alice.in_p2p) == (100 * WAD, 0)
        market = manager.get_market("cDAI")
        assert market.p2p_supply_delta == 0
        assert market.p2p_supply_amount == 0
        assert market.p2p_borrow_amount == 0

    def test_leaving_borrower_replaced_by_pool_borrower(
        self, manager: PositionsManager, pool: SimulatedLendingPool
    ) -> None:
        pool.add_liquidity("cDAI", 1_000 * WAD)
        manager.supply("cETH", "carol", 200 * WAD)
        manager.borrow("cDAI", "carol", 30 * WAD)
        manager.supply("cDAI", "alice", 100 * WAD, max_steps=0)
        manager.supply("cETH", "bob", 200 * WAD)
        manager.borrow("cDAI", "bob", 50 * WAD)

        manager.repay("cDAI", "bob", 50 * WAD)

        carol = manager.get_position("cDAI", "carol")[1]
        alice = manager.get_position("cDAI", "alice")[0]
        assert (carol.on_pool, carol.in_p2p) == (0, 30 * WAD)
        assert (alice.on_pool, alice.in_p2p) == (70 * WAD, 30 * WAD)
        market = manager.get_market("cDAI")
        assert market.p2p_supply_amount == 30 * WAD
        assert market.p2p_borrow_amount == 30 * WAD
        assert market.p2p_supply_delta == 0

    def test_repay_consumes_borrow_delta(
        self, manager: PositionsManager, pool: SimulatedLendingPool
    ) -> None:
        pool.add_liquidity("cDAI", 1_000 * WAD)
        manager.supply("cDAI", "alice", 100 * WAD)
        manager.supply("cETH", "dave", 1_000 * WAD)
        manager.borrow("cDAI", "dave", 100 * WAD)
        manager.withdraw("cDAI", "alice", "alice", 100 * WAD, max_steps=0)
        assert manager.get_market("cDAI").p2p_borrow_delta == 100 * WAD

        manager.repay("cDAI", "dave", 40 * WAD)

        market = manager.get_market("cDAI")
        assert market.p2p_borrow_delta == 60 * WAD
        assert market.p2p_borrow_amount == 60 * WAD
        assert manager.get_position("cDAI", "dave")[1].in_p2p == 60 * WAD
        assert pool.calls[-1] == ("repay", "cDAI", 40 * WAD)

    def test_fee_is_skimmed_to_treasury(self, manager: PositionsManager) -> None:
        _direct_match(manager)
        # P2P borrowers owe 10% more than P2P suppliers are owed
        manager.get_market("cDAI").p2p_borrow_index = 11 * 10**17
        assert manager.get_user_borrow_balance("cDAI", "bob") == 55 * WAD

        repaid = manager.repay("cDAI", "bob", 20 * WAD)

        assert repaid == 20 * WAD
        market = manager.get_market("cDAI")
        assert market.treasury_balance == 5 * WAD
        assert market.p2p_supply_amount == 35 * WAD
        alice = manager.get_position("cDAI", "alice")[0]
        assert (alice.on_pool, alice.in_p2p) == (65 * WAD, 35 * WAD)
        types = [e.event_type for e in manager.pending_events()]
        assert types[-1] is P2PEventType.REPAID

    def test_borrow_delta_untouched_when_p2p_disabled(
        self, manager: PositionsManager, pool: SimulatedLendingPool
    ) -> None:
        pool.add_liquidity("cDAI", 1_000 * WAD)
        manager.supply("cDAI", "alice", 100 * WAD)
        manager.supply("cETH", "dave", 1_000 * WAD)
        manager.borrow("cDAI", "dave", 100 * WAD)
        manager.withdraw("cDAI", "alice", "alice", 100 * WAD, max_steps=0)
        manager.get_market("cDAI").no_p2p = True

        manager.repay("cDAI", "dave", 40 * WAD)

        market = manager.get_market("cDAI")
        assert market.p2p_borrow_delta == 100 * WAD
        assert market.p2p_supply_delta == 40 * WAD
        assert manager.get_position("cDAI", "dave")[1].in_p2p == 60 * WAD
        assert pool.calls[-1] == ("mint", "cDAI", 40 * WAD)
