"""Account registry sorted by descending balance.

Nodes live in a dict keyed by account id (the arena); prev/next hold ids,
not object references. When a journal is attached, every insert and remove
records its exact inverse so an aborted action puts the links back as they
were.
"""
from collections.abc import Iterator
from dataclasses import dataclass, field

from src.p2p_common.journal import UndoJournal


@dataclass
class _Node:
    value: int
    prev: str | None = None
    next: str | None = None


@dataclass
class SortedAccountList:
    head: str | None = None
    tail: str | None = None
    _nodes: dict[str, _Node] = field(default_factory=dict)
    journal: UndoJournal | None = field(default=None, repr=False, compare=False)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, account: object) -> bool:
        return account in self._nodes

    def __iter__(self) -> Iterator[tuple[str, int]]:
        current = self.head
        while current is not None:
            node = self._nodes[current]
            yield current, node.value
            current = node.next

    def get_value_of(self, account: str) -> int:
        node = self._nodes.get(account)
        return node.value if node is not None else 0

    def get_head(self) -> str | None:
        return self.head

    def get_tail(self) -> str | None:
        return self.tail

    def get_next(self, account: str) -> str | None:
        node = self._nodes.get(account)
        return node.next if node is not None else None

    def get_prev(self, account: str) -> str | None:
        node = self._nodes.get(account)
        return node.prev if node is not None else None

    def insert_sorted(self, account: str, value: int, max_iterations: int) -> None:
        """Insert walking from the head past every value >= `value`.

        The walk stops after `max_iterations` nodes; if the node reached is
        not smaller than `value` the account goes to the tail, which may
        break strict ordering. O(1) plus the bounded walk.
        """
        if not account:
            raise ValueError("Account id must not be empty")
        if value == 0:
            raise ValueError(f"Cannot insert {account} with zero value")
        if account in self._nodes:
            raise ValueError(f"Account already inserted: {account}")

        iterations = 0
        nxt = self.head
        while (
            iterations < max_iterations
            and nxt is not None
            and nxt != self.tail
            and self._nodes[nxt].value >= value
        ):
            nxt = self._nodes[nxt].next
            iterations += 1

        if nxt is not None and self._nodes[nxt].value < value:
            # Insert before `nxt`
            before = self._nodes[nxt]
            self._nodes[account] = _Node(value=value, prev=before.prev, next=nxt)
            if before.prev is None:
                self.head = account
            else:
                self._nodes[before.prev].next = account
            before.prev = account
        elif self.head is None:
            self._nodes[account] = _Node(value=value)
            self.head = account
            self.tail = account
        else:
            # New tail
            assert self.tail is not None
            self._nodes[account] = _Node(value=value, prev=self.tail)
            self._nodes[self.tail].next = account
            self.tail = account

        if self.journal is not None:
            self.journal.record(lambda: self._unlink(account))

    def remove(self, account: str) -> None:
        """Unlink `account`. O(1)."""
        if account not in self._nodes:
            raise ValueError(f"Account does not exist: {account}")
        node = self._unlink(account)
        if self.journal is not None:
            self.journal.record(lambda: self._relink(account, node))

    def _unlink(self, account: str) -> _Node:
        node = self._nodes.pop(account)
        if node.prev is None:
            self.head = node.next
        else:
            self._nodes[node.prev].next = node.next

        if node.next is None:
            self.tail = node.prev
        else:
            self._nodes[node.next].prev = node.prev
        return node

    def _relink(self, account: str, node: _Node) -> None:
        # Only valid while node.prev and node.next are still adjacent
        self._nodes[account] = node
        if node.prev is None:
            self.head = account
        else:
            self._nodes[node.prev].next = account

        if node.next is None:
            self.tail = account
        else:
            self._nodes[node.next].prev = account
