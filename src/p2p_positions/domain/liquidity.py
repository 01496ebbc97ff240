"""Health computation across every market a user has entered.

Values are in oracle units: balance in underlying times WAD price. The
hypothetical variant applies a pending borrow or withdraw on one market so
the same routine answers borrow, withdraw and liquidation checks.
"""
from collections.abc import Mapping
from dataclasses import dataclass

from src.p2p_common.enums import Side
from src.p2p_common.errors import OracleFailedError
from src.p2p_common.fixed_point import mul, safe_sub
from src.p2p_market.domain.ledger import MarketLedger
from src.p2p_market.domain.models import Market
from src.p2p_pool.domain.protocols import PriceOracleProtocol


@dataclass
class BalanceStates:
    collateral_value: int = 0
    debt_value: int = 0
    max_debt_value: int = 0

    @property
    def is_liquidatable(self) -> bool:
        return self.debt_value > self.max_debt_value


def get_user_hypothetical_balance_states(
    ledger: MarketLedger,
    oracle: PriceOracleProtocol,
    user_id: str,
    modified_market_id: str | None = None,
    withdrawn_amount: int = 0,
    borrowed_amount: int = 0,
    markets: Mapping[str, Market] | None = None,
) -> BalanceStates:
    """`markets` optionally maps market ids to fresher copies of their rows;
    balances are then valued at those indexes instead of the cached ones."""
    states = BalanceStates()
    for market_id in ledger.entered_markets(user_id):
        book = ledger.peek_book(market_id)
        market = markets.get(market_id) if markets else None
        price = oracle.get_underlying_price(market_id)
        if price == 0:
            raise OracleFailedError(market_id)
        collateral_factor = book.market.collateral_factor

        collateral_value = mul(book.balance_in_underlying(Side.SUPPLY, user_id, market), price)
        states.collateral_value += collateral_value
        states.debt_value += mul(book.balance_in_underlying(Side.BORROW, user_id, market), price)
        states.max_debt_value += mul(collateral_value, collateral_factor)

        if market_id == modified_market_id:
            states.debt_value += mul(borrowed_amount, price)
            states.max_debt_value = safe_sub(
                states.max_debt_value,
                mul(mul(withdrawn_amount, price), collateral_factor),
            )
    return states
