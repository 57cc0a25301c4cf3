"""Symbol universe reconciliation.

Decides which remotely listed symbols have never been persisted (and so need
a full backfill), and holds the in-memory universe that periodic cadences
read from.
"""

import asyncio
from collections.abc import Iterable


def filter_by_quote(symbols: Iterable[str], quote: str) -> list[str]:
    """Keep symbols ending with the quote suffix, in the order received."""
    return [s for s in symbols if s.endswith(quote)]


def diff(remote: Iterable[str], persisted: Iterable[str]) -> list[str]:
    """Return symbols present in ``remote`` but absent from ``persisted``.

    Exact string equality. Output follows first appearance in ``remote`` and
    contains no duplicates; callers must not rely on any particular order.
    """
    known = set(persisted)
    new: list[str] = []
    for symbol in remote:
        if symbol not in known:
            new.append(symbol)
            known.add(symbol)
    return new


class SymbolUniverse:
    """Shared, swappable set of currently tracked symbols.

    Only the cadence that refreshes the universe writes to it. Readers take
    a snapshot at the start of an invocation and work on that immutable tuple
    for the rest of the run, so a concurrent replace never changes a batch
    midway.
    """

    def __init__(self, symbols: Iterable[str] = ()) -> None:
        self._symbols: tuple[str, ...] = tuple(symbols)
        self._lock = asyncio.Lock()

    def snapshot(self) -> tuple[str, ...]:
        return self._symbols

    async def replace(self, symbols: Iterable[str]) -> list[str]:
        """Swap in a new universe wholesale.

        Returns the symbols that were not in the previous universe.
        """
        new_symbols = tuple(symbols)
        async with self._lock:
            added = diff(new_symbols, self._symbols)
            self._symbols = new_symbols
        return added

    def __len__(self) -> int:
        return len(self._symbols)
