"""Collaborator Protocols — the underlying pool and the price oracle.

PositionsManager depends only on these; tests and the dev server inject the
simulated implementations from p2p_pool.infrastructure.

Pool primitives follow the pool's own convention: they return an int error
code, 0 meaning success. The manager turns any non-zero code into a fatal
PoolCallFailedError.
"""

from typing import Any, Protocol


class LendingPoolProtocol(Protocol):
    def exchange_rate(self, market_id: str) -> int:
        """Pool supply index (pool share -> underlying), WAD, non-decreasing."""
        ...

    def borrow_index(self, market_id: str) -> int:
        """Pool borrow index, WAD, non-decreasing."""
        ...

    def mint(self, market_id: str, amount: int) -> int: ...

    def redeem_underlying(self, market_id: str, amount: int) -> int: ...

    def borrow(self, market_id: str, amount: int) -> int: ...

    def repay_borrow(self, market_id: str, amount: int) -> int: ...

    def borrow_balance_current(self, market_id: str) -> int:
        """Debt the overlay itself owes the pool, in underlying."""
        ...

    def balance_of_underlying(self, market_id: str) -> int:
        """Underlying the overlay can redeem from the pool right now."""
        ...

    def snapshot(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


class PriceOracleProtocol(Protocol):
    def get_underlying_price(self, market_id: str) -> int:
        """WAD price of one underlying unit; 0 means no price available."""
        ...
