"""Tests for candle decoding from Binance positional kline rows.

Tests verify:
- Well-formed rows decode losslessly (decimals keep their wire digits)
- Epoch-millis fields become UTC instants
- A single malformed field is zeroed while every other field is populated
- Rows that are too short or not arrays are rejected with a warning
- Volume significant-digit rounding is explicit and opt-in
"""

from datetime import datetime, timezone
from decimal import Decimal

import pytest

from conftest import BASE_OPEN_MS, HOUR_MS, kline_row
from klinefeed.data.models import (
    EPOCH,
    datetime_to_ms,
    decode_candle,
    ms_to_datetime,
    round_significant,
)


class TestDecodeWellFormed:
    """Tests for rows with 11+ well-formed fields."""

    def test_all_fields_populated(self) -> None:
        decoded = decode_candle(kline_row())
        candle = decoded.value

        assert decoded.warnings == []
        assert candle is not None
        assert candle.open_time == datetime(2024, 1, 1, tzinfo=timezone.utc)
        assert candle.open == Decimal("42000.10")
        assert candle.high == Decimal("42100.00")
        assert candle.low == Decimal("41900.50")
        assert candle.close == Decimal("42050.25")
        assert candle.volume == Decimal("1234.567")
        assert candle.close_time_ms == BASE_OPEN_MS + HOUR_MS - 1
        assert candle.quote_volume == Decimal("51890123.45678900")
        assert candle.trade_count == 5321
        assert candle.taker_buy_base_volume == Decimal("600.123")
        assert candle.taker_buy_quote_volume == Decimal("25200000.5")

    def test_decimal_fields_reproduce_wire_strings(self) -> None:
        row = kline_row(open_="0.00001234", volume="98765432.12345678")
        candle = decode_candle(row).value
        assert candle is not None

        assert str(candle.open) == "0.00001234"
        assert str(candle.volume) == "98765432.12345678"
        assert str(candle.quote_volume) == row[7]

    def test_instants_round_trip_to_epoch_millis(self) -> None:
        row = kline_row()
        candle = decode_candle(row).value
        assert candle is not None

        assert candle.open_time_ms == row[0]
        assert candle.close_time_ms == row[6]
        assert candle.open_time < candle.close_time

    def test_eleven_field_row_without_ignore_column(self) -> None:
        decoded = decode_candle(kline_row()[:11])
        assert decoded.value is not None
        assert decoded.warnings == []

    def test_string_encoded_trade_count_accepted(self) -> None:
        row = kline_row()
        row[8] = "17"
        candle = decode_candle(row).value
        assert candle is not None
        assert candle.trade_count == 17


class TestDecodePartialFailure:
    """A bad field never discards the whole candle."""

    @pytest.mark.parametrize(
        "index,attr",
        [
            (1, "open"),
            (2, "high"),
            (3, "low"),
            (4, "close"),
            (5, "volume"),
            (7, "quote_volume"),
            (9, "taker_buy_base_volume"),
            (10, "taker_buy_quote_volume"),
        ],
    )
    def test_malformed_decimal_field_is_zeroed(self, index: int, attr: str) -> None:
        good = decode_candle(kline_row()).value
        row = kline_row()
        row[index] = "not-a-number"

        decoded = decode_candle(row)
        candle = decoded.value

        assert candle is not None
        assert getattr(candle, attr) == Decimal("0")
        assert len(decoded.warnings) == 1
        assert attr in decoded.warnings[0]
        # Every other field matches the well-formed decode
        for other in (
            "open_time", "open", "high", "low", "close", "volume", "close_time",
            "quote_volume", "trade_count", "taker_buy_base_volume", "taker_buy_quote_volume",
        ):
            if other != attr:
                assert getattr(candle, other) == getattr(good, other)

    def test_malformed_trade_count_is_zeroed(self) -> None:
        row = kline_row()
        row[8] = "many"
        decoded = decode_candle(row)
        assert decoded.value is not None
        assert decoded.value.trade_count == 0
        assert decoded.value.close == Decimal("42050.25")
        assert len(decoded.warnings) == 1

    def test_malformed_open_time_falls_back_to_epoch(self) -> None:
        row = kline_row()
        row[0] = None
        decoded = decode_candle(row)
        assert decoded.value is not None
        assert decoded.value.open_time == EPOCH
        assert decoded.value.open == Decimal("42000.10")

    def test_non_finite_value_is_zeroed(self) -> None:
        row = kline_row()
        row[2] = "NaN"
        decoded = decode_candle(row)
        assert decoded.value is not None
        assert decoded.value.high == Decimal("0")
        assert decoded.warnings

    def test_multiple_bad_fields_each_warn(self) -> None:
        row = kline_row()
        row[1] = ""
        row[10] = {"bad": True}
        decoded = decode_candle(row)
        assert decoded.value is not None
        assert len(decoded.warnings) == 2


class TestDecodeRejectedRows:
    """Rows that cannot be decoded positionally at all."""

    def test_short_row_rejected(self) -> None:
        decoded = decode_candle(kline_row()[:6])
        assert decoded.value is None
        assert "6 fields" in decoded.warnings[0]

    @pytest.mark.parametrize("row", ["1704067200000,42000", {"open": "1"}, None, 5])
    def test_non_array_rejected(self, row) -> None:
        decoded = decode_candle(row)
        assert decoded.value is None
        assert len(decoded.warnings) == 1


class TestVolumePrecision:
    """Explicit volume precision parameter."""

    def test_default_keeps_wire_value(self) -> None:
        candle = decode_candle(kline_row(volume="123456.789012")).value
        assert candle is not None
        assert candle.volume == Decimal("123456.789012")

    def test_seven_significant_digits(self) -> None:
        candle = decode_candle(kline_row(volume="123456.789012"), volume_digits=7).value
        assert candle is not None
        assert candle.volume == Decimal("123456.8")
        # Other decimal fields are not affected
        assert candle.quote_volume == Decimal("51890123.45678900")

    def test_round_significant(self) -> None:
        assert round_significant(Decimal("0.000123456"), 3) == Decimal("0.000123")


class TestTimeConversion:
    def test_ms_datetime_round_trip(self) -> None:
        assert datetime_to_ms(ms_to_datetime(BASE_OPEN_MS + 999)) == BASE_OPEN_MS + 999

    def test_naive_datetime_treated_as_utc(self) -> None:
        assert datetime_to_ms(datetime(2024, 1, 1)) == BASE_OPEN_MS
