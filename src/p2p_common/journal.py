"""Undo journal for in-memory state mutated by one action.

Mutators record an undo callable just before they change something; a
rollback replays the callables newest first. Scopes nest: an inner commit
keeps its entries so the outer scope can still undo them, and the journal
empties once the outermost scope ends. Outside any scope recording is a no-op.
"""
from collections.abc import Callable

Undo = Callable[[], object]


class UndoJournal:
    def __init__(self) -> None:
        self._entries: list[Undo] = []
        self._depth = 0

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def active(self) -> bool:
        return self._depth > 0

    def record(self, undo: Undo) -> None:
        if self._depth:
            self._entries.append(undo)

    def begin(self) -> int:
        """Open a scope; returns the mark to roll back to."""
        self._depth += 1
        return len(self._entries)

    def commit(self) -> None:
        assert self._depth > 0, "commit outside a journal scope"
        self._depth -= 1
        if self._depth == 0:
            self._entries.clear()

    def rollback(self, mark: int) -> None:
        assert self._depth > 0, "rollback outside a journal scope"
        while len(self._entries) > mark:
            self._entries.pop()()
        self._depth -= 1
        if self._depth == 0:
            self._entries.clear()
