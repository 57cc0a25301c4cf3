"""Kline persistence layer.

Provides the candle model and decoder, SQLite database management, the
typed upsert/prune store, and symbol universe reconciliation.
"""

from klinefeed.data.database import KlineDatabase
from klinefeed.data.models import Candle, Decoded, decode_candle
from klinefeed.data.reconciler import SymbolUniverse, diff, filter_by_quote
from klinefeed.data.store import KlineStore

__all__ = [
    "Candle",
    "Decoded",
    "KlineDatabase",
    "KlineStore",
    "SymbolUniverse",
    "decode_candle",
    "diff",
    "filter_by_quote",
]
