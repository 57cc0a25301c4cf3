"""Tests for symbol set reconciliation and the shared symbol universe."""

import asyncio

import pytest

from klinefeed.data.reconciler import SymbolUniverse, diff, filter_by_quote


class TestDiff:
    """Set-difference semantics of diff()."""

    def test_new_listing_detected(self) -> None:
        assert diff(["BTCUSDT", "ETHUSDT"], ["BTCUSDT"]) == ["ETHUSDT"]

    def test_identical_sets_yield_nothing(self) -> None:
        symbols = ["BTCUSDT", "ETHUSDT", "SOLUSDT"]
        assert diff(symbols, symbols) == []

    def test_empty_persisted_yields_everything(self) -> None:
        symbols = ["BTCUSDT", "ETHUSDT", "SOLUSDT"]
        assert diff(symbols, []) == symbols

    def test_order_independent(self) -> None:
        remote = ["SOLUSDT", "BTCUSDT", "ETHUSDT", "XRPUSDT"]
        persisted = ["XRPUSDT", "BTCUSDT"]
        forward = set(diff(remote, persisted))
        backward = set(diff(list(reversed(remote)), list(reversed(persisted))))
        assert forward == backward == {"SOLUSDT", "ETHUSDT"}

    def test_persisted_only_symbols_ignored(self) -> None:
        # Delisted symbols still in the table never show up as new
        assert diff(["BTCUSDT"], ["BTCUSDT", "LUNAUSDT"]) == []

    def test_exact_string_equality(self) -> None:
        assert diff(["btcusdt", "BTCUSDT"], ["BTCUSDT"]) == ["btcusdt"]

    def test_duplicates_collapsed(self) -> None:
        assert diff(["ETHUSDT", "ETHUSDT"], []) == ["ETHUSDT"]

    def test_accepts_any_iterable(self) -> None:
        assert diff(iter(("A", "B")), {"A"}) == ["B"]


class TestFilterByQuote:
    def test_usdt_suffix(self) -> None:
        assert filter_by_quote(["BTCUSDT", "ETHBTC", "ETHUSDT"], "USDT") == [
            "BTCUSDT",
            "ETHUSDT",
        ]

    def test_preserves_received_order(self) -> None:
        assert filter_by_quote(["ZUSDT", "AUSDT"], "USDT") == ["ZUSDT", "AUSDT"]

    def test_suffix_not_substring(self) -> None:
        assert filter_by_quote(["USDTBTC", "BTCUSDC"], "USDT") == []


class TestSymbolUniverse:
    """Tests for the shared swappable symbol snapshot."""

    def test_initial_snapshot(self) -> None:
        universe = SymbolUniverse(["BTCUSDT"])
        assert universe.snapshot() == ("BTCUSDT",)
        assert len(universe) == 1

    @pytest.mark.asyncio
    async def test_replace_returns_added(self) -> None:
        universe = SymbolUniverse(["BTCUSDT", "ETHUSDT"])
        added = await universe.replace(["BTCUSDT", "SOLUSDT"])
        assert added == ["SOLUSDT"]
        # Replaced wholesale, not merged
        assert universe.snapshot() == ("BTCUSDT", "SOLUSDT")

    @pytest.mark.asyncio
    async def test_snapshot_unaffected_by_later_replace(self) -> None:
        universe = SymbolUniverse(["BTCUSDT"])
        snapshot = universe.snapshot()
        await universe.replace(["ETHUSDT"])
        assert snapshot == ("BTCUSDT",)
        assert universe.snapshot() == ("ETHUSDT",)

    @pytest.mark.asyncio
    async def test_concurrent_replace_leaves_one_complete_universe(self) -> None:
        universe = SymbolUniverse()
        await asyncio.gather(
            universe.replace(["A1", "A2"]),
            universe.replace(["B1", "B2"]),
        )
        assert universe.snapshot() in {("A1", "A2"), ("B1", "B2")}
