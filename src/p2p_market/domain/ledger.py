"""MarketLedger — the single owned registry of markets, balances and sorted lists.

One MarketBook per market holds the Market row, both balance maps and the
four sorted account lists. The ledger is mutated in place by the action
currently running in PositionsManager. All-or-nothing semantics come from a
shared undo journal: within a begin()/commit() scope every market row,
balance record, registry node and membership the action touches records how
to put it back, so a rollback costs what the action touched and nothing more.
"""
import copy
from dataclasses import dataclass, field
from functools import partial

from src.p2p_common.enums import Side
from src.p2p_common.errors import MarketAlreadyCreatedError, MarketNotCreatedError
from src.p2p_common.fixed_point import mul
from src.p2p_common.journal import UndoJournal
from src.p2p_market.domain.models import Market, PositionBalance
from src.p2p_matching.engine.sorted_list import SortedAccountList


def _reset_balance(balance: PositionBalance, on_pool: int, in_p2p: int) -> None:
    balance.on_pool = on_pool
    balance.in_p2p = in_p2p


def _reset_market(market: Market, saved: Market) -> None:
    vars(market).update(vars(saved))


@dataclass
class MarketBook:
    market: Market
    supply_balances: dict[str, PositionBalance] = field(default_factory=dict)
    borrow_balances: dict[str, PositionBalance] = field(default_factory=dict)
    suppliers_on_pool: SortedAccountList = field(default_factory=SortedAccountList)
    suppliers_in_p2p: SortedAccountList = field(default_factory=SortedAccountList)
    borrowers_on_pool: SortedAccountList = field(default_factory=SortedAccountList)
    borrowers_in_p2p: SortedAccountList = field(default_factory=SortedAccountList)
    journal: UndoJournal = field(default_factory=UndoJournal, repr=False, compare=False)

    def __post_init__(self) -> None:
        for sorted_list in (
            self.suppliers_on_pool,
            self.suppliers_in_p2p,
            self.borrowers_on_pool,
            self.borrowers_in_p2p,
        ):
            sorted_list.journal = self.journal

    @property
    def market_id(self) -> str:
        return self.market.market_id

    def balances(self, side: Side) -> dict[str, PositionBalance]:
        return self.supply_balances if side is Side.SUPPLY else self.borrow_balances

    def balance_of(self, side: Side, user_id: str) -> PositionBalance:
        """Return the mutable balance record, creating an empty one if absent.

        Callers mutate the record in place, so its current values are
        journaled on every access.
        """
        balances = self.balances(side)
        balance = balances.get(user_id)
        if balance is None:
            balance = balances[user_id] = PositionBalance()
            self.journal.record(partial(balances.pop, user_id, None))
        else:
            self.journal.record(partial(_reset_balance, balance, balance.on_pool, balance.in_p2p))
        return balance

    def peek_balance(self, side: Side, user_id: str) -> PositionBalance:
        """Read-only view; does not create a record."""
        return self.balances(side).get(user_id) or PositionBalance()

    def on_pool_list(self, side: Side) -> SortedAccountList:
        return self.suppliers_on_pool if side is Side.SUPPLY else self.borrowers_on_pool

    def in_p2p_list(self, side: Side) -> SortedAccountList:
        return self.suppliers_in_p2p if side is Side.SUPPLY else self.borrowers_in_p2p

    def update_account_in_ds(self, side: Side, user_id: str, max_sorted_users: int) -> None:
        """Reposition `user_id` in both sorted lists of `side` after a balance change."""
        balance = self.peek_balance(side, user_id)
        for sorted_list, value in (
            (self.on_pool_list(side), balance.on_pool),
            (self.in_p2p_list(side), balance.in_p2p),
        ):
            former = sorted_list.get_value_of(user_id)
            if value == former:
                continue
            if former > 0:
                sorted_list.remove(user_id)
            if value > 0:
                sorted_list.insert_sorted(user_id, value, max_sorted_users)

    def balance_in_underlying(
        self, side: Side, user_id: str, market: Market | None = None
    ) -> int:
        """on_pool * pool index + in_p2p * P2P index.

        Uses the indexes cached on the market row unless `market` supplies a
        fresher view of the same row.
        """
        market = market or self.market
        balance = self.peek_balance(side, user_id)
        return mul(balance.in_p2p, market.p2p_index(side)) + mul(
            balance.on_pool, market.pool_index(side)
        )

    def is_user_empty(self, user_id: str) -> bool:
        return (
            self.peek_balance(Side.SUPPLY, user_id).is_empty
            and self.peek_balance(Side.BORROW, user_id).is_empty
        )


class MarketLedger:
    def __init__(self) -> None:
        self._books: dict[str, MarketBook] = {}
        self._entered_markets: dict[str, list[str]] = {}
        self._journal = UndoJournal()

    def create_market(self, market: Market) -> MarketBook:
        if market.market_id in self._books:
            raise MarketAlreadyCreatedError(market.market_id)
        book = MarketBook(market=market, journal=self._journal)
        self._books[market.market_id] = book
        return book

    def get_book(self, market_id: str) -> MarketBook:
        """Return the book; inside a scope its market row is journaled first."""
        book = self._books.get(market_id)
        if book is None:
            raise MarketNotCreatedError(market_id)
        if self._journal.active:
            self._journal.record(partial(_reset_market, book.market, copy.copy(book.market)))
        return book

    def peek_book(self, market_id: str) -> MarketBook:
        """Read-only access; never journals."""
        book = self._books.get(market_id)
        if book is None:
            raise MarketNotCreatedError(market_id)
        return book

    def market_ids(self) -> list[str]:
        return list(self._books)

    # --- membership ---

    def entered_markets(self, user_id: str) -> list[str]:
        return list(self._entered_markets.get(user_id, ()))

    def is_member(self, market_id: str, user_id: str) -> bool:
        return market_id in self._entered_markets.get(user_id, ())

    def enter_market_if_needed(self, market_id: str, user_id: str) -> None:
        markets = self._entered_markets.get(user_id)
        if markets is None:
            markets = self._entered_markets[user_id] = []
            self._journal.record(partial(self._entered_markets.pop, user_id, None))
        if market_id not in markets:
            markets.append(market_id)
            self._journal.record(markets.pop)

    def leave_market_if_needed(self, market_id: str, user_id: str) -> None:
        if not self.is_member(market_id, user_id):
            return
        if not self.peek_book(market_id).is_user_empty(user_id):
            return
        markets = self._entered_markets[user_id]
        position = markets.index(market_id)
        del markets[position]
        self._journal.record(partial(markets.insert, position, market_id))
        if not markets:
            del self._entered_markets[user_id]
            self._journal.record(partial(self._entered_markets.__setitem__, user_id, markets))

    # --- atomicity ---

    def begin(self) -> int:
        """Open an all-or-nothing scope; returns the mark for rollback()."""
        return self._journal.begin()

    def commit(self) -> None:
        self._journal.commit()

    def rollback(self, mark: int) -> None:
        """Undo every journaled change made since `mark`, newest first."""
        self._journal.rollback(mark)
