"""In-memory lending pool and oracle for the dev server and tests.

Tracks only the overlay's own account on the pool: its share balance, its
scaled debt, and the pool's free cash per market. Error codes mimic the
pool's convention (0 = success).
"""
import copy
import logging
from dataclasses import dataclass, field

from src.p2p_common.fixed_point import WAD, div, mul

logger = logging.getLogger(__name__)

NO_ERROR = 0
INSUFFICIENT_CASH = 14
INSUFFICIENT_SHARES = 9
REPAY_EXCEEDS_DEBT = 13
ZERO_REDEEM = 11
INJECTED_FAILURE = 99


@dataclass
class _PoolMarket:
    exchange_rate: int = WAD
    borrow_index: int = WAD
    cash: int = 0
    shares: int = 0        # overlay's pool shares
    scaled_debt: int = 0   # overlay's debt / borrow_index


@dataclass
class SimulatedLendingPool:
    markets: dict[str, _PoolMarket] = field(default_factory=dict)
    # operation names ("mint", "redeem", "borrow", "repay") forced to fail
    failing_operations: set[str] = field(default_factory=set)
    calls: list[tuple[str, str, int]] = field(default_factory=list)

    def _market(self, market_id: str) -> _PoolMarket:
        return self.markets.setdefault(market_id, _PoolMarket())

    # --- test / bootstrap controls ---

    def list_market(self, market_id: str) -> None:
        self._market(market_id)

    def add_liquidity(self, market_id: str, amount: int) -> None:
        """Cash supplied to the pool by third parties."""
        self._market(market_id).cash += amount

    def set_exchange_rate(self, market_id: str, rate: int) -> None:
        self._market(market_id).exchange_rate = rate

    def set_borrow_index(self, market_id: str, index: int) -> None:
        self._market(market_id).borrow_index = index

    # --- LendingPoolProtocol ---

    def exchange_rate(self, market_id: str) -> int:
        return self._market(market_id).exchange_rate

    def borrow_index(self, market_id: str) -> int:
        return self._market(market_id).borrow_index

    def mint(self, market_id: str, amount: int) -> int:
        if "mint" in self.failing_operations:
            return INJECTED_FAILURE
        m = self._market(market_id)
        m.shares += div(amount, m.exchange_rate)
        m.cash += amount
        self.calls.append(("mint", market_id, amount))
        return NO_ERROR

    def redeem_underlying(self, market_id: str, amount: int) -> int:
        if "redeem" in self.failing_operations:
            return INJECTED_FAILURE
        m = self._market(market_id)
        shares = div(amount, m.exchange_rate)
        if shares == 0:
            return ZERO_REDEEM
        if shares > m.shares:
            return INSUFFICIENT_SHARES
        if amount > m.cash:
            return INSUFFICIENT_CASH
        m.shares -= shares
        m.cash -= amount
        self.calls.append(("redeem", market_id, amount))
        return NO_ERROR

    def borrow(self, market_id: str, amount: int) -> int:
        if "borrow" in self.failing_operations:
            return INJECTED_FAILURE
        m = self._market(market_id)
        if amount > m.cash:
            return INSUFFICIENT_CASH
        m.scaled_debt += div(amount, m.borrow_index)
        m.cash -= amount
        self.calls.append(("borrow", market_id, amount))
        return NO_ERROR

    def repay_borrow(self, market_id: str, amount: int) -> int:
        if "repay" in self.failing_operations:
            return INJECTED_FAILURE
        m = self._market(market_id)
        if amount > self.borrow_balance_current(market_id):
            return REPAY_EXCEEDS_DEBT
        m.scaled_debt -= min(m.scaled_debt, div(amount, m.borrow_index))
        m.cash += amount
        self.calls.append(("repay", market_id, amount))
        return NO_ERROR

    def borrow_balance_current(self, market_id: str) -> int:
        m = self._market(market_id)
        return mul(m.scaled_debt, m.borrow_index)

    def balance_of_underlying(self, market_id: str) -> int:
        m = self._market(market_id)
        return min(mul(m.shares, m.exchange_rate), m.cash)

    def snapshot(self) -> tuple[dict[str, _PoolMarket], int]:
        """Per-market rows plus the length of the call log; O(listed markets)."""
        return {market_id: copy.copy(m) for market_id, m in self.markets.items()}, len(self.calls)

    def restore(self, snapshot: tuple[dict[str, _PoolMarket], int]) -> None:
        markets, calls_mark = snapshot
        self.markets = markets
        del self.calls[calls_mark:]
        logger.debug("Simulated pool restored to snapshot")


@dataclass
class SimulatedPriceOracle:
    prices: dict[str, int] = field(default_factory=dict)

    def set_price(self, market_id: str, price: int) -> None:
        self.prices[market_id] = price

    def get_underlying_price(self, market_id: str) -> int:
        return self.prices.get(market_id, 0)
