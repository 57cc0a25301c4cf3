"""Candle model and decoding of Binance positional kline rows.

All price and volume values use Decimal. Never use float for prices or
quantities: the store keeps NUMERIC(32, 8) semantics and floats would
drift before quantization.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation, localcontext
from typing import Any, Generic, TypeVar

T = TypeVar("T")

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Binance kline row layout:
# [ openTime, open, high, low, close, volume, closeTime, quoteAssetVolume,
#   numberOfTrades, takerBuyBaseAssetVolume, takerBuyQuoteAssetVolume, ignore ]
KLINE_ROW_MIN_FIELDS = 11


@dataclass
class Candle:
    """One fixed-width time bucket of trading activity.

    The (symbol, timeframe, market type) triple is not part of the candle
    itself; it is supplied by the caller at write time.
    """

    open_time: datetime
    open: Decimal
    high: Decimal
    low: Decimal
    close: Decimal
    volume: Decimal
    close_time: datetime
    quote_volume: Decimal
    trade_count: int
    taker_buy_base_volume: Decimal
    taker_buy_quote_volume: Decimal

    @property
    def open_time_ms(self) -> int:
        return datetime_to_ms(self.open_time)

    @property
    def close_time_ms(self) -> int:
        return datetime_to_ms(self.close_time)


@dataclass
class Decoded(Generic[T]):
    """A decoded value plus the recoverable problems met while decoding it."""

    value: T
    warnings: list[str] = field(default_factory=list)


def ms_to_datetime(ms: int) -> datetime:
    """Convert epoch milliseconds to a UTC-aware datetime."""
    return EPOCH + timedelta(milliseconds=ms)


def datetime_to_ms(dt: datetime) -> int:
    """Convert a datetime to epoch milliseconds (naive values are taken as UTC)."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    delta = dt - EPOCH
    return (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000


def _parse_decimal(raw: Any) -> Decimal:
    if isinstance(raw, bool) or not isinstance(raw, (str, int, float)):
        raise ValueError(f"expected decimal string, got {type(raw).__name__}")
    value = Decimal(str(raw))
    if not value.is_finite():
        raise ValueError(f"non-finite decimal {raw!r}")
    return value


def _parse_int(raw: Any) -> int:
    if isinstance(raw, bool):
        raise ValueError("expected integer, got bool")
    if isinstance(raw, int):
        return raw
    if isinstance(raw, float) and raw.is_integer():
        return int(raw)
    if isinstance(raw, str):
        return int(raw)
    raise ValueError(f"expected integer, got {raw!r}")


def round_significant(value: Decimal, digits: int) -> Decimal:
    """Round ``value`` to ``digits`` significant digits."""
    with localcontext() as ctx:
        ctx.prec = digits
        return +value


def decode_candle(row: Sequence[Any], volume_digits: int | None = None) -> Decoded[Candle | None]:
    """Decode one positional kline row into a Candle.

    Each field is decoded on its own. A field that cannot be parsed adds a
    warning and is left at its zero value (Decimal 0, 0, or the epoch), so a
    single bad field never discards the candle. Rows that are not sequences
    or are shorter than 11 entries cannot be decoded positionally and yield
    ``value=None``.

    Args:
        row: Positional row as returned by /fapi/v1/klines.
        volume_digits: Significant digits kept for the volume field. None keeps
            the exact wire value.
    """
    if isinstance(row, (str, bytes)) or not isinstance(row, Sequence):
        return Decoded(None, [f"kline row is not an array: {row!r}"])
    if len(row) < KLINE_ROW_MIN_FIELDS:
        return Decoded(
            None,
            [f"kline row has {len(row)} fields, expected at least {KLINE_ROW_MIN_FIELDS}"],
        )

    warnings: list[str] = []

    def decimal_at(index: int, name: str) -> Decimal:
        try:
            return _parse_decimal(row[index])
        except (InvalidOperation, ValueError) as e:
            warnings.append(f"{name}: cannot parse {row[index]!r} ({e})")
            return Decimal("0")

    def instant_at(index: int, name: str) -> datetime:
        try:
            return ms_to_datetime(_parse_int(row[index]))
        except (ValueError, OverflowError, OSError) as e:
            warnings.append(f"{name}: cannot parse {row[index]!r} ({e})")
            return EPOCH

    def int_at(index: int, name: str) -> int:
        try:
            return _parse_int(row[index])
        except ValueError as e:
            warnings.append(f"{name}: cannot parse {row[index]!r} ({e})")
            return 0

    volume = decimal_at(5, "volume")
    if volume_digits is not None:
        volume = round_significant(volume, volume_digits)

    candle = Candle(
        open_time=instant_at(0, "open_time"),
        open=decimal_at(1, "open"),
        high=decimal_at(2, "high"),
        low=decimal_at(3, "low"),
        close=decimal_at(4, "close"),
        volume=volume,
        close_time=instant_at(6, "close_time"),
        quote_volume=decimal_at(7, "quote_volume"),
        trade_count=int_at(8, "trade_count"),
        taker_buy_base_volume=decimal_at(9, "taker_buy_base_volume"),
        taker_buy_quote_volume=decimal_at(10, "taker_buy_quote_volume"),
    )
    return Decoded(candle, warnings)
