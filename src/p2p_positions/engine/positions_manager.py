"""PositionsManager — stateful orchestrator for supply, borrow, withdraw, repay and liquidate.

Every action follows the same order: refresh indexes, match deltas, match
counterparties within the step budget, book the P2P part, then send only
the unmatched remainder to the pool. Actions are atomic: any exception
restores the ledger, the pool and the pending event list. Rollback and the
post-action invariant check only visit what the action touched, so per-action
work stays bounded by the step budget rather than the number of users.
"""
import copy
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

from config.settings import settings
from src.p2p_common.enums import P2PEventType, Side
from src.p2p_common.errors import (
    AddressIsZeroError,
    AmountAboveWhatAllowedToRepayError,
    AmountIsZeroError,
    BorrowOnPoolFailedError,
    DebtValueNotAboveMaxError,
    MintOnPoolFailedError,
    OracleFailedError,
    ReentrancyError,
    RedeemOnPoolFailedError,
    RepayOnPoolFailedError,
    ToSeizeAboveCollateralError,
    UnauthorisedWithdrawError,
    UserNotMemberOfMarketError,
    WithdrawTooSmallError,
)
from src.p2p_common.fixed_point import div, mul, safe_sub
from src.p2p_market.domain.ledger import MarketBook, MarketLedger
from src.p2p_market.domain.models import Market, PositionBalance
from src.p2p_matching.domain.models import MatchResult
from src.p2p_matching.engine.matching_algo import match_accounts, unmatch_accounts
from src.p2p_pool.domain.protocols import LendingPoolProtocol, PriceOracleProtocol
from src.p2p_positions.domain.events import P2PEvent
from src.p2p_positions.domain.fee import calc_p2p_fee
from src.p2p_positions.domain.invariants import verify_market_invariants
from src.p2p_positions.domain.liquidity import (
    BalanceStates,
    get_user_hypothetical_balance_states,
)

logger = logging.getLogger(__name__)

# (market, new_pool_supply_index, new_pool_borrow_index) -> None; grows P2P indexes
P2PIndexUpdater = Callable[[Market, int, int], None]


class PositionsManager:
    def __init__(
        self,
        pool: LendingPoolProtocol,
        oracle: PriceOracleProtocol,
        ledger: MarketLedger | None = None,
        *,
        p2p_index_updater: P2PIndexUpdater | None = None,
        default_max_steps: int | None = None,
        max_sorted_users: int | None = None,
        close_factor: int | None = None,
        liquidation_incentive: int | None = None,
    ) -> None:
        self._pool = pool
        self._oracle = oracle
        self._ledger = ledger or MarketLedger()
        self._p2p_index_updater = p2p_index_updater
        self._default_max_steps = (
            settings.DEFAULT_MAX_STEPS_FOR_MATCHING if default_max_steps is None else default_max_steps
        )
        self._max_sorted_users = (
            settings.MAX_SORTED_USERS if max_sorted_users is None else max_sorted_users
        )
        self._close_factor = settings.CLOSE_FACTOR if close_factor is None else close_factor
        self._liquidation_incentive = (
            settings.LIQUIDATION_INCENTIVE if liquidation_incentive is None else liquidation_incentive
        )
        self._pending_events: list[P2PEvent] = []
        self._entered = False
        # market_id -> accounts whose balances the running action changed
        self._touched: dict[str, set[str]] = {}

    @property
    def ledger(self) -> MarketLedger:
        return self._ledger

    def create_market(
        self, market_id: str, collateral_factor: int | None = None, no_p2p: bool = False
    ) -> Market:
        """Register a market row; listing policy itself belongs to governance."""
        if not market_id:
            raise ValueError("market_id must not be empty")
        market = Market(
            market_id=market_id,
            collateral_factor=(
                settings.DEFAULT_COLLATERAL_FACTOR if collateral_factor is None else collateral_factor
            ),
            last_pool_supply_index=self._pool.exchange_rate(market_id),
            last_pool_borrow_index=self._pool.borrow_index(market_id),
            no_p2p=no_p2p,
        )
        self._ledger.create_market(market)
        logger.info("Market created: %s (no_p2p=%s)", market_id, no_p2p)
        return market

    # ------------------------------------------------------------------
    # Event outbox
    # ------------------------------------------------------------------

    def pending_events(self) -> list[P2PEvent]:
        return list(self._pending_events)

    def ack_events(self, count: int) -> None:
        """Drop the first `count` pending events once they are persisted."""
        del self._pending_events[:count]

    # ------------------------------------------------------------------
    # Reads: valued at the pool's current indexes, never mutate the ledger
    # ------------------------------------------------------------------

    def get_market(self, market_id: str) -> Market:
        return self._ledger.peek_book(market_id).market

    def get_position(self, market_id: str, user_id: str) -> tuple[PositionBalance, PositionBalance]:
        """(supply, borrow) balance records, unscaled."""
        book = self._ledger.peek_book(market_id)
        return book.peek_balance(Side.SUPPLY, user_id), book.peek_balance(Side.BORROW, user_id)

    def get_user_supply_balance(self, market_id: str, user_id: str) -> int:
        book = self._ledger.peek_book(market_id)
        return book.balance_in_underlying(Side.SUPPLY, user_id, self._preview_market(book.market))

    def get_user_borrow_balance(self, market_id: str, user_id: str) -> int:
        book = self._ledger.peek_book(market_id)
        return book.balance_in_underlying(Side.BORROW, user_id, self._preview_market(book.market))

    def get_entered_markets(self, user_id: str) -> list[str]:
        return self._ledger.entered_markets(user_id)

    def get_user_balance_states(self, user_id: str) -> BalanceStates:
        previews = {
            market_id: self._preview_market(self._ledger.peek_book(market_id).market)
            for market_id in self._ledger.entered_markets(user_id)
        }
        return get_user_hypothetical_balance_states(
            self._ledger, self._oracle, user_id, markets=previews
        )

    def is_liquidatable(self, user_id: str) -> bool:
        return self.get_user_balance_states(user_id).is_liquidatable

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def supply(
        self, market_id: str, on_behalf: str, amount: int, max_steps: int | None = None
    ) -> None:
        _check_action(on_behalf, amount)
        max_steps = self._resolve_steps(max_steps)
        with self._atomic("supply"):
            book = self._ledger.get_book(market_id)
            market = book.market
            self._update_indexes(book)
            self._ledger.enter_market_if_needed(market_id, on_behalf)

            remaining = amount
            to_repay = 0

            if not market.no_p2p:
                # Match the P2P borrow delta first
                if market.p2p_borrow_delta > 0:
                    pool_borrow_index = market.last_pool_borrow_index
                    delta_in_underlying = mul(market.p2p_borrow_delta, pool_borrow_index)
                    if delta_in_underlying > remaining:
                        to_repay += remaining
                        market.p2p_borrow_delta -= div(remaining, pool_borrow_index)
                        remaining = 0
                    else:
                        to_repay += delta_in_underlying
                        market.p2p_borrow_delta = 0
                        remaining -= delta_in_underlying
                    self._emit_delta(market, Side.BORROW)

                # Promote pool borrowers
                if remaining > 0 and book.borrowers_on_pool.get_head() is not None:
                    matched = self._match(book, Side.BORROW, remaining, max_steps).amount
                    to_repay += matched
                    remaining -= matched
                    market.p2p_borrow_amount += div(matched, market.p2p_borrow_index)

            balance = book.balance_of(Side.SUPPLY, on_behalf)
            self._touch(market_id, on_behalf)
            if to_repay > 0:
                to_add_in_p2p = div(to_repay, market.p2p_supply_index)
                market.p2p_supply_amount += to_add_in_p2p
                balance.in_p2p += to_add_in_p2p
                self._repay_to_pool(market_id, to_repay)
                self._emit_amounts(market)

            if remaining > 0:
                balance.on_pool += div(remaining, market.last_pool_supply_index)
                self._supply_to_pool(market_id, remaining)

            book.update_account_in_ds(Side.SUPPLY, on_behalf, self._max_sorted_users)
            self._emit(
                P2PEventType.SUPPLIED, market_id,
                user_id=on_behalf, amount=amount,
                on_pool=balance.on_pool, in_p2p=balance.in_p2p,
            )
            self._verify(book)
            logger.info(
                "supply market=%s user=%s amount=%d p2p=%d pool=%d",
                market_id, on_behalf, amount, to_repay, remaining,
            )

    def borrow(
        self, market_id: str, borrower: str, amount: int, max_steps: int | None = None
    ) -> None:
        _check_action(borrower, amount)
        max_steps = self._resolve_steps(max_steps)
        with self._atomic("borrow"):
            book = self._ledger.get_book(market_id)
            market = book.market
            self._update_indexes(book)
            self._ledger.enter_market_if_needed(market_id, borrower)
            self._refresh_user_markets(borrower, skip=market_id)

            states = get_user_hypothetical_balance_states(
                self._ledger, self._oracle, borrower, market_id, borrowed_amount=amount
            )
            if states.debt_value > states.max_debt_value:
                raise DebtValueNotAboveMaxError(
                    borrower,
                    f"Borrow of {amount} would put debt value of {borrower} above max debt value",
                )

            remaining = amount
            to_withdraw = 0
            pool_supply_index = market.last_pool_supply_index

            if not market.no_p2p:
                # Match the P2P supply delta first
                if market.p2p_supply_delta > 0:
                    delta_in_underlying = mul(market.p2p_supply_delta, pool_supply_index)
                    if delta_in_underlying > remaining:
                        to_withdraw += remaining
                        market.p2p_supply_delta -= div(remaining, pool_supply_index)
                        remaining = 0
                    else:
                        to_withdraw += delta_in_underlying
                        market.p2p_supply_delta = 0
                        remaining -= delta_in_underlying
                    self._emit_delta(market, Side.SUPPLY)

                # Promote pool suppliers
                if remaining > 0 and book.suppliers_on_pool.get_head() is not None:
                    matched = self._match(book, Side.SUPPLY, remaining, max_steps).amount
                    to_withdraw += matched
                    remaining -= matched
                    market.p2p_supply_amount += div(matched, market.p2p_supply_index)

            balance = book.balance_of(Side.BORROW, borrower)
            self._touch(market_id, borrower)
            if to_withdraw > 0:
                to_add_in_p2p = div(to_withdraw, market.p2p_borrow_index)
                market.p2p_borrow_amount += to_add_in_p2p
                balance.in_p2p += to_add_in_p2p
                self._emit_amounts(market)
                # The pool rejects a redemption worth zero shares
                if div(to_withdraw, pool_supply_index) > 0:
                    self._withdraw_from_pool(market_id, to_withdraw)

            if remaining > 0:
                balance.on_pool += div(remaining, market.last_pool_borrow_index)
                self._borrow_from_pool(market_id, remaining)

            book.update_account_in_ds(Side.BORROW, borrower, self._max_sorted_users)
            self._emit(
                P2PEventType.BORROWED, market_id,
                user_id=borrower, amount=amount,
                on_pool=balance.on_pool, in_p2p=balance.in_p2p,
            )
            self._verify(book)
            logger.info(
                "borrow market=%s user=%s amount=%d p2p=%d pool=%d",
                market_id, borrower, amount, to_withdraw, remaining,
            )

    def withdraw(
        self,
        market_id: str,
        supplier: str,
        receiver: str,
        amount: int,
        max_steps: int | None = None,
    ) -> int:
        """Withdraw up to `amount` of the supplier's balance; returns the amount withdrawn."""
        _check_action(supplier, amount)
        if not receiver:
            raise AddressIsZeroError()
        max_steps = self._resolve_steps(max_steps)
        with self._atomic("withdraw"):
            book = self._ledger.get_book(market_id)
            if not self._ledger.is_member(market_id, supplier):
                raise UserNotMemberOfMarketError(supplier, market_id)
            self._update_indexes(book)
            self._refresh_user_markets(supplier, skip=market_id)

            to_withdraw = min(book.balance_in_underlying(Side.SUPPLY, supplier), amount)
            states = get_user_hypothetical_balance_states(
                self._ledger, self._oracle, supplier, market_id, withdrawn_amount=to_withdraw
            )
            if states.debt_value > states.max_debt_value:
                raise UnauthorisedWithdrawError(supplier, to_withdraw)

            self._withdraw_logic(book, supplier, receiver, to_withdraw, max_steps)
            self._verify(book)
            return to_withdraw

    def repay(
        self, market_id: str, on_behalf: str, amount: int, max_steps: int | None = None
    ) -> int:
        """Repay up to `amount` of the borrower's debt; returns the amount repaid."""
        _check_action(on_behalf, amount)
        max_steps = self._resolve_steps(max_steps)
        with self._atomic("repay"):
            book = self._ledger.get_book(market_id)
            if not self._ledger.is_member(market_id, on_behalf):
                raise UserNotMemberOfMarketError(on_behalf, market_id)
            self._update_indexes(book)

            to_repay = min(book.balance_in_underlying(Side.BORROW, on_behalf), amount)
            self._repay_logic(book, on_behalf, to_repay, max_steps)
            self._verify(book)
            return to_repay

    def liquidate(
        self,
        borrowed_market_id: str,
        collateral_market_id: str,
        liquidator: str,
        borrower: str,
        amount: int,
    ) -> int:
        """Repay part of an unhealthy borrower's debt and seize collateral; returns the amount seized."""
        _check_action(borrower, amount)
        if not liquidator:
            raise AddressIsZeroError()
        with self._atomic("liquidate"):
            borrowed_book = self._ledger.get_book(borrowed_market_id)
            collateral_book = self._ledger.get_book(collateral_market_id)
            for market_id in (borrowed_market_id, collateral_market_id):
                if not self._ledger.is_member(market_id, borrower):
                    raise UserNotMemberOfMarketError(borrower, market_id)
            self._refresh_user_markets(borrower)

            states = get_user_hypothetical_balance_states(self._ledger, self._oracle, borrower)
            if not states.is_liquidatable:
                raise DebtValueNotAboveMaxError(borrower)

            borrow_balance = borrowed_book.balance_in_underlying(Side.BORROW, borrower)
            max_repayable = mul(borrow_balance, self._close_factor)
            if amount > max_repayable:
                raise AmountAboveWhatAllowedToRepayError(amount, max_repayable)

            self._repay_logic(borrowed_book, borrower, amount, 0)

            borrowed_price = self._oracle.get_underlying_price(borrowed_market_id)
            if borrowed_price == 0:
                raise OracleFailedError(borrowed_market_id)
            collateral_price = self._oracle.get_underlying_price(collateral_market_id)
            if collateral_price == 0:
                raise OracleFailedError(collateral_market_id)

            to_seize = div(
                mul(mul(amount, borrowed_price), self._liquidation_incentive),
                collateral_price,
            )
            collateral_balance = collateral_book.balance_in_underlying(Side.SUPPLY, borrower)
            if to_seize > collateral_balance:
                raise ToSeizeAboveCollateralError(to_seize, collateral_balance)

            self._withdraw_logic(collateral_book, borrower, liquidator, to_seize, 0)

            self._emit(
                P2PEventType.LIQUIDATED, borrowed_market_id,
                liquidator=liquidator, borrower=borrower, amount_repaid=amount,
                collateral_market_id=collateral_market_id, amount_seized=to_seize,
            )
            self._verify(borrowed_book)
            self._verify(collateral_book)
            logger.info(
                "liquidate borrower=%s liquidator=%s repaid=%d on %s seized=%d on %s",
                borrower, liquidator, amount, borrowed_market_id, to_seize, collateral_market_id,
            )
            return to_seize

    # ------------------------------------------------------------------
    # Shared withdraw / repay paths (also used by liquidation)
    # ------------------------------------------------------------------

    def _withdraw_logic(
        self, book: MarketBook, supplier: str, receiver: str, amount: int, max_steps: int
    ) -> None:
        market = book.market
        market_id = market.market_id
        pool_supply_index = market.last_pool_supply_index
        if div(amount, pool_supply_index) == 0:
            raise WithdrawTooSmallError(amount)

        remaining = amount
        to_withdraw = 0
        withdrawable = self._pool.balance_of_underlying(market_id)
        balance = book.balance_of(Side.SUPPLY, supplier)
        self._touch(market_id, supplier)

        # Soft withdraw: take from the supplier's own pool position
        if balance.on_pool > 0:
            to_withdraw = min(mul(balance.on_pool, pool_supply_index), remaining, withdrawable)
            remaining -= to_withdraw
            balance.on_pool -= min(balance.on_pool, div(to_withdraw, pool_supply_index))

            if remaining == 0:
                book.update_account_in_ds(Side.SUPPLY, supplier, self._max_sorted_users)
                if div(to_withdraw, pool_supply_index) > 0:
                    self._withdraw_from_pool(market_id, to_withdraw)
                self._after_withdraw(book, supplier, receiver, amount)
                return

        p2p_supply_index = market.p2p_supply_index
        balance.in_p2p -= min(balance.in_p2p, div(remaining, p2p_supply_index))
        book.update_account_in_ds(Side.SUPPLY, supplier, self._max_sorted_users)

        # Transfer withdraw: the P2P supply delta is already on the pool
        if remaining > 0 and not market.no_p2p and market.p2p_supply_delta > 0:
            delta_in_underlying = mul(market.p2p_supply_delta, pool_supply_index)
            available = withdrawable - to_withdraw
            if delta_in_underlying > remaining or delta_in_underlying > available:
                matched_delta = min(remaining, available)
                market.p2p_supply_delta = safe_sub(
                    market.p2p_supply_delta, div(matched_delta, pool_supply_index)
                )
                market.p2p_supply_amount = safe_sub(
                    market.p2p_supply_amount, div(matched_delta, p2p_supply_index)
                )
                to_withdraw += matched_delta
                remaining -= matched_delta
            else:
                market.p2p_supply_delta = 0
                market.p2p_supply_amount = safe_sub(
                    market.p2p_supply_amount, div(delta_in_underlying, p2p_supply_index)
                )
                to_withdraw += delta_in_underlying
                remaining -= delta_in_underlying
            self._emit_delta(market, Side.SUPPLY)
            self._emit_amounts(market)

        # Promote pool suppliers to replace the leaving one
        if (
            remaining > 0
            and not market.no_p2p
            and book.suppliers_on_pool.get_head() is not None
        ):
            result = self._match(
                book, Side.SUPPLY, min(remaining, withdrawable - to_withdraw), max_steps // 2
            )
            max_steps = safe_sub(max_steps, result.steps)
            remaining -= result.amount
            to_withdraw += result.amount

        if div(to_withdraw, pool_supply_index) > 0:
            self._withdraw_from_pool(market_id, to_withdraw)

        # Hard withdraw: demote P2P borrowers, the rest becomes borrow delta
        if remaining > 0:
            unmatched = self._unmatch(book, Side.BORROW, remaining, max_steps).amount
            if unmatched < remaining:
                market.p2p_borrow_delta += div(remaining - unmatched, market.last_pool_borrow_index)
                self._emit_delta(market, Side.BORROW)
            market.p2p_supply_amount = safe_sub(
                market.p2p_supply_amount, div(remaining, p2p_supply_index)
            )
            market.p2p_borrow_amount = safe_sub(
                market.p2p_borrow_amount, div(unmatched, market.p2p_borrow_index)
            )
            self._emit_amounts(market)
            self._borrow_from_pool(market_id, remaining)

        self._after_withdraw(book, supplier, receiver, amount)

    def _after_withdraw(self, book: MarketBook, supplier: str, receiver: str, amount: int) -> None:
        balance = book.peek_balance(Side.SUPPLY, supplier)
        self._emit(
            P2PEventType.WITHDRAWN, book.market_id,
            user_id=supplier, receiver=receiver, amount=amount,
            on_pool=balance.on_pool, in_p2p=balance.in_p2p,
        )
        self._ledger.leave_market_if_needed(book.market_id, supplier)
        logger.info(
            "withdraw market=%s user=%s receiver=%s amount=%d",
            book.market_id, supplier, receiver, amount,
        )

    def _repay_logic(self, book: MarketBook, user_id: str, amount: int, max_steps: int) -> None:
        market = book.market
        market_id = market.market_id
        pool_borrow_index = market.last_pool_borrow_index

        remaining = amount
        to_repay = 0
        balance = book.balance_of(Side.BORROW, user_id)
        self._touch(market_id, user_id)

        # Soft repay: pay down the borrower's own pool debt
        if balance.on_pool > 0:
            on_pool_in_underlying = mul(balance.on_pool, pool_borrow_index)
            if on_pool_in_underlying > remaining:
                balance.on_pool -= min(balance.on_pool, div(remaining, pool_borrow_index))
                to_repay = remaining
                remaining = 0
            else:
                balance.on_pool = 0
                to_repay = on_pool_in_underlying
                remaining -= on_pool_in_underlying

            if remaining == 0:
                book.update_account_in_ds(Side.BORROW, user_id, self._max_sorted_users)
                self._repay_to_pool(market_id, to_repay)
                self._after_repay(book, user_id, amount)
                return

        p2p_borrow_index = market.p2p_borrow_index
        p2p_supply_index = market.p2p_supply_index
        balance.in_p2p -= min(balance.in_p2p, div(remaining, p2p_borrow_index))
        book.update_account_in_ds(Side.BORROW, user_id, self._max_sorted_users)

        # Fee is skimmed before delta and peer matching
        if remaining > 0:
            fee = calc_p2p_fee(market)
            if fee > 0:
                fee_repaid = min(fee, remaining)
                remaining -= fee_repaid
                market.p2p_borrow_amount = safe_sub(
                    market.p2p_borrow_amount, div(fee_repaid, p2p_borrow_index)
                )
                market.treasury_balance += fee_repaid
                self._emit_amounts(market)

        # Transfer repay: the P2P borrow delta is already owed to the pool
        if remaining > 0 and not market.no_p2p and market.p2p_borrow_delta > 0:
            delta_in_underlying = mul(market.p2p_borrow_delta, pool_borrow_index)
            if delta_in_underlying > remaining:
                market.p2p_borrow_delta -= div(remaining, pool_borrow_index)
                market.p2p_borrow_amount = safe_sub(
                    market.p2p_borrow_amount, div(remaining, p2p_borrow_index)
                )
                to_repay += remaining
                remaining = 0
            else:
                market.p2p_borrow_delta = 0
                market.p2p_borrow_amount = safe_sub(
                    market.p2p_borrow_amount, div(delta_in_underlying, p2p_borrow_index)
                )
                to_repay += delta_in_underlying
                remaining -= delta_in_underlying
            self._emit_delta(market, Side.BORROW)
            self._emit_amounts(market)

        # Promote pool borrowers to replace the leaving one
        if (
            remaining > 0
            and not market.no_p2p
            and book.borrowers_on_pool.get_head() is not None
        ):
            result = self._match(book, Side.BORROW, remaining, max_steps // 2)
            max_steps = safe_sub(max_steps, result.steps)
            remaining -= result.amount
            to_repay += result.amount

        self._repay_to_pool(market_id, to_repay)

        # Breaking repay: demote P2P suppliers, the rest becomes supply delta
        if remaining > 0:
            unmatched = self._unmatch(book, Side.SUPPLY, remaining, max_steps).amount
            if unmatched < remaining:
                market.p2p_supply_delta += div(remaining - unmatched, market.last_pool_supply_index)
                self._emit_delta(market, Side.SUPPLY)
            market.p2p_supply_amount = safe_sub(
                market.p2p_supply_amount, div(unmatched, p2p_supply_index)
            )
            market.p2p_borrow_amount = safe_sub(
                market.p2p_borrow_amount, div(remaining, p2p_borrow_index)
            )
            self._emit_amounts(market)
            self._supply_to_pool(market_id, remaining)

        self._after_repay(book, user_id, amount)

    def _after_repay(self, book: MarketBook, user_id: str, amount: int) -> None:
        balance = book.peek_balance(Side.BORROW, user_id)
        self._emit(
            P2PEventType.REPAID, book.market_id,
            user_id=user_id, amount=amount,
            on_pool=balance.on_pool, in_p2p=balance.in_p2p,
        )
        self._ledger.leave_market_if_needed(book.market_id, user_id)
        logger.info("repay market=%s user=%s amount=%d", book.market_id, user_id, amount)

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def _match(self, book: MarketBook, side: Side, amount: int, max_steps: int) -> MatchResult:
        result = match_accounts(book, side, amount, max_steps, self._max_sorted_users)
        self._touch(book.market_id, *(update.user_id for update in result.updates))
        self._emit_position_updates(book.market_id, result)
        return result

    def _unmatch(self, book: MarketBook, side: Side, amount: int, max_steps: int) -> MatchResult:
        result = unmatch_accounts(book, side, amount, max_steps, self._max_sorted_users)
        self._touch(book.market_id, *(update.user_id for update in result.updates))
        self._emit_position_updates(book.market_id, result)
        return result

    # ------------------------------------------------------------------
    # Indexes
    # ------------------------------------------------------------------

    def _update_indexes(self, book: MarketBook) -> None:
        self._apply_pool_indexes(book.market)

    def _preview_market(self, market: Market) -> Market:
        """Copy of the row valued at the pool's current indexes; the row itself is untouched."""
        preview = copy.copy(market)
        self._apply_pool_indexes(preview)
        return preview

    def _apply_pool_indexes(self, market: Market) -> None:
        pool_supply_index = self._pool.exchange_rate(market.market_id)
        pool_borrow_index = self._pool.borrow_index(market.market_id)
        if self._p2p_index_updater is not None:
            self._p2p_index_updater(market, pool_supply_index, pool_borrow_index)
        market.last_pool_supply_index = pool_supply_index
        market.last_pool_borrow_index = pool_borrow_index

    def _refresh_user_markets(self, user_id: str, skip: str | None = None) -> None:
        for market_id in self._ledger.entered_markets(user_id):
            if market_id != skip:
                self._update_indexes(self._ledger.get_book(market_id))

    # ------------------------------------------------------------------
    # Pool calls: every failure is fatal for the action
    # ------------------------------------------------------------------

    def _supply_to_pool(self, market_id: str, amount: int) -> None:
        error = self._pool.mint(market_id, amount)
        if error != 0:
            raise MintOnPoolFailedError(market_id, error)

    def _withdraw_from_pool(self, market_id: str, amount: int) -> None:
        amount = min(self._pool.balance_of_underlying(market_id), amount)
        error = self._pool.redeem_underlying(market_id, amount)
        if error != 0:
            raise RedeemOnPoolFailedError(market_id, error)

    def _borrow_from_pool(self, market_id: str, amount: int) -> None:
        error = self._pool.borrow(market_id, amount)
        if error != 0:
            raise BorrowOnPoolFailedError(market_id, error)

    def _repay_to_pool(self, market_id: str, amount: int) -> None:
        # Repay only what the overlay owes; any surplus stays with the protocol
        amount = min(amount, self._pool.borrow_balance_current(market_id))
        if amount > 0:
            error = self._pool.repay_borrow(market_id, amount)
            if error != 0:
                raise RepayOnPoolFailedError(market_id, error)

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def _emit(self, event_type: P2PEventType, market_id: str, **payload: Any) -> None:
        self._pending_events.append(P2PEvent(event_type, market_id, payload))

    def _emit_delta(self, market: Market, side: Side) -> None:
        if side is Side.SUPPLY:
            self._emit(
                P2PEventType.P2P_SUPPLY_DELTA_UPDATED, market.market_id,
                p2p_supply_delta=market.p2p_supply_delta,
            )
        else:
            self._emit(
                P2PEventType.P2P_BORROW_DELTA_UPDATED, market.market_id,
                p2p_borrow_delta=market.p2p_borrow_delta,
            )

    def _emit_amounts(self, market: Market) -> None:
        self._emit(
            P2PEventType.P2P_AMOUNTS_UPDATED, market.market_id,
            p2p_supply_amount=market.p2p_supply_amount,
            p2p_borrow_amount=market.p2p_borrow_amount,
        )

    def _emit_position_updates(self, market_id: str, result: MatchResult) -> None:
        event_type = (
            P2PEventType.SUPPLIER_POSITION_UPDATED
            if result.side is Side.SUPPLY
            else P2PEventType.BORROWER_POSITION_UPDATED
        )
        for update in result.updates:
            self._emit(
                event_type, market_id,
                user_id=update.user_id, on_pool=update.on_pool, in_p2p=update.in_p2p,
            )

    # ------------------------------------------------------------------
    # Atomicity
    # ------------------------------------------------------------------

    def _resolve_steps(self, max_steps: int | None) -> int:
        if max_steps is None:
            return self._default_max_steps
        if max_steps < 0:
            raise ValueError(f"max_steps must be >= 0, got {max_steps}")
        return max_steps

    def _touch(self, market_id: str, *user_ids: str) -> None:
        self._touched.setdefault(market_id, set()).update(user_ids)

    def _verify(self, book: MarketBook) -> None:
        verify_market_invariants(book, self._touched.get(book.market_id, ()))

    @contextmanager
    def transaction(self, label: str) -> Iterator[None]:
        """All-or-nothing scope over the ledger, the pool and the pending events.

        Scopes nest, so a caller can wrap an action together with its own
        follow-up work (persisting the events) and have a failure in either
        undo both.
        """
        mark = self._ledger.begin()
        pool_snapshot = self._pool.snapshot()
        events_mark = len(self._pending_events)
        completed = False
        try:
            yield
            completed = True
        finally:
            if completed:
                self._ledger.commit()
            else:
                self._ledger.rollback(mark)
                self._pool.restore(pool_snapshot)
                del self._pending_events[events_mark:]
                logger.warning("%s aborted; ledger and pool restored", label)

    @contextmanager
    def _atomic(self, action: str) -> Iterator[None]:
        """Reentrancy guard plus all-or-nothing rollback around one action."""
        if self._entered:
            raise ReentrancyError(action)
        self._entered = True
        self._touched = {}
        try:
            with self.transaction(action):
                yield
        finally:
            self._entered = False


def _check_action(user_id: str, amount: int) -> None:
    if not user_id:
        raise AddressIsZeroError()
    if amount < 0:
        raise ValueError(f"amount must be >= 0, got {amount}")
    if amount == 0:
        raise AmountIsZeroError()
