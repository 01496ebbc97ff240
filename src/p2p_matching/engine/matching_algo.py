"""Head-first matching of pool positions against P2P volume, bounded by a step budget."""
import logging

from src.p2p_common.enums import Side
from src.p2p_common.fixed_point import div, mul
from src.p2p_market.domain.ledger import MarketBook
from src.p2p_matching.domain.models import MatchResult, PositionUpdate

logger = logging.getLogger(__name__)


def match_accounts(
    book: MarketBook, side: Side, amount: int, max_steps: int, max_sorted_users: int
) -> MatchResult:
    """Promote `side` accounts resting on the pool to P2P, largest first.

    Moves at most `amount` underlying and touches at most `max_steps`
    accounts. Never raises on exhaustion; a partial result is normal.
    """
    result = MatchResult(side=side)
    if max_steps == 0:
        return result

    market = book.market
    pool_index = market.pool_index(side)
    p2p_index = market.p2p_index(side)
    on_pool = book.on_pool_list(side)

    while result.amount < amount and result.steps < max_steps:
        user_id = on_pool.get_head()
        if user_id is None:
            break
        balance = book.balance_of(side, user_id)
        in_underlying = mul(balance.on_pool, pool_index)
        max_to_match = amount - result.amount

        if in_underlying <= max_to_match:
            balance.in_p2p += div(in_underlying, p2p_index)
            balance.on_pool = 0
            result.amount += in_underlying
        else:
            balance.on_pool -= div(max_to_match, pool_index)
            balance.in_p2p += div(max_to_match, p2p_index)
            result.amount = amount

        book.update_account_in_ds(side, user_id, max_sorted_users)
        result.steps += 1
        result.updates.append(PositionUpdate(user_id, balance.on_pool, balance.in_p2p))

    logger.debug(
        "match %s market=%s requested=%d matched=%d steps=%d",
        side.value, book.market_id, amount, result.amount, result.steps,
    )
    return result


def unmatch_accounts(
    book: MarketBook, side: Side, amount: int, max_steps: int, max_sorted_users: int
) -> MatchResult:
    """Demote `side` accounts from P2P back to the pool, largest P2P balance first.

    Returns the underlying actually moved; the caller turns any shortfall
    into a delta.
    """
    result = MatchResult(side=side)
    if max_steps == 0:
        return result

    market = book.market
    pool_index = market.pool_index(side)
    p2p_index = market.p2p_index(side)
    in_p2p = book.in_p2p_list(side)
    remaining = amount

    while remaining > 0 and result.steps < max_steps:
        user_id = in_p2p.get_head()
        if user_id is None:
            break
        balance = book.balance_of(side, user_id)
        in_underlying = mul(balance.in_p2p, p2p_index)

        if in_underlying <= remaining:
            balance.on_pool += div(in_underlying, pool_index)
            balance.in_p2p = 0
            remaining -= in_underlying
        else:
            balance.on_pool += div(remaining, pool_index)
            balance.in_p2p -= div(remaining, p2p_index)
            remaining = 0

        book.update_account_in_ds(side, user_id, max_sorted_users)
        result.steps += 1
        result.updates.append(PositionUpdate(user_id, balance.on_pool, balance.in_p2p))

    result.amount = amount - remaining
    logger.debug(
        "unmatch %s market=%s requested=%d unmatched=%d steps=%d",
        side.value, book.market_id, amount, result.amount, result.steps,
    )
    return result
