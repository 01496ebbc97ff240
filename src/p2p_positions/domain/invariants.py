"""Market invariant verification after each action. Raises AssertionError if violated."""
import logging
from collections.abc import Iterable

from src.p2p_common.enums import Side
from src.p2p_market.domain.ledger import MarketBook

logger = logging.getLogger(__name__)


def verify_market_invariants(book: MarketBook, user_ids: Iterable[str] | None = None) -> None:
    """Non-negativity of every delta, amount and balance; registries mirror balances.

    With `user_ids` only those accounts are checked, which is what an action
    passes (the accounts it touched). None scans every account in the book.
    """
    market = book.market
    for name in ("p2p_supply_delta", "p2p_borrow_delta", "p2p_supply_amount", "p2p_borrow_amount"):
        value = getattr(market, name)
        assert value >= 0, f"{name} negative on {market.market_id}: {value}"

    for side in (Side.SUPPLY, Side.BORROW):
        balances = book.balances(side)
        on_pool_list = book.on_pool_list(side)
        in_p2p_list = book.in_p2p_list(side)
        for user_id in balances if user_ids is None else user_ids:
            balance = book.peek_balance(side, user_id)
            assert balance.on_pool >= 0 and balance.in_p2p >= 0, (
                f"{side.value} balance negative for {user_id} on {market.market_id}: {balance}"
            )
            assert on_pool_list.get_value_of(user_id) == balance.on_pool, (
                f"{side.value} on-pool list out of sync for {user_id} on {market.market_id}"
            )
            assert in_p2p_list.get_value_of(user_id) == balance.in_p2p, (
                f"{side.value} in-P2P list out of sync for {user_id} on {market.market_id}"
            )

    logger.debug(
        "Invariants OK: market=%s, supply_delta=%d, borrow_delta=%d",
        market.market_id, market.p2p_supply_delta, market.p2p_borrow_delta,
    )
