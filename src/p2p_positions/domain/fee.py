"""Protocol fee skimmed on repay — the P2P spread accrued between indexes."""

from src.p2p_common.fixed_point import mul, safe_sub
from src.p2p_market.domain.models import Market


def calc_p2p_fee(market: Market) -> int:
    """Return what P2P borrowers owe beyond what P2P suppliers are owed.

    fee = (BA*BI - BD*PBI) - (SA*SI - SD*PSI), saturating at zero, where
    deltas are valued at the pool indexes read at the start of the action.
    """
    owed_by_borrowers = safe_sub(
        mul(market.p2p_borrow_amount, market.p2p_borrow_index),
        mul(market.p2p_borrow_delta, market.last_pool_borrow_index),
    )
    owed_to_suppliers = safe_sub(
        mul(market.p2p_supply_amount, market.p2p_supply_index),
        mul(market.p2p_supply_delta, market.last_pool_supply_index),
    )
    return safe_sub(owed_by_borrowers, owed_to_suppliers)
