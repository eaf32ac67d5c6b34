"""
Tests for parsing helpers and token amount arithmetic.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest

from token_metrics.aggregators import aggregate_weekly_payments
from token_metrics.models import TransferEvent
from token_metrics.utils import (
    ZERO_ADDRESS,
    decode_amount_from_input,
    format_number,
    is_mint_or_burn,
    is_valid_ethereum_address,
    is_valid_method_selector,
    method_selector,
    normalize_address,
    parse_big_int,
    parse_moralis_holders,
    parse_moralis_transactions,
    parse_moralis_transfers,
    parse_timestamp,
    scale_token_amount,
    to_decimal,
    to_utc_date,
    week_start_date,
)

A = "0x" + "a" * 40
B = "0x" + "b" * 40


# ============================================================
# AMOUNTS
# ============================================================

class TestScaleTokenAmount:

    def test_fractional_value_is_exact(self):
        result = scale_token_amount(1500000000000000000)

        assert result == Decimal("1.5")
        assert str(result) == "1.5"

    def test_whole_value_has_no_fraction(self):
        assert str(scale_token_amount(2 * 10 ** 18)) == "2"

    def test_smallest_unit(self):
        assert scale_token_amount(1) == Decimal("0.000000000000000001")

    def test_uint256_max_keeps_every_digit(self):
        result = scale_token_amount(2 ** 256 - 1)

        assert str(result) == (
            "115792089237316195423570985008687907853269984665640564039457"
            ".584007913129639935")

    def test_zero_decimals(self):
        assert scale_token_amount(42, 0) == Decimal(42)

    def test_six_decimals(self):
        assert scale_token_amount(1234567, 6) == Decimal("1.234567")

    def test_negative_arguments_rejected(self):
        with pytest.raises(ValueError):
            scale_token_amount(1, -1)
        with pytest.raises(ValueError):
            scale_token_amount(-1)


class TestParseBigInt:

    @pytest.mark.parametrize("value,expected", [
        ("1500000000000000000", 1500000000000000000),
        ("0x10", 16),
        ("0XFF", 255),
        (7, 7),
        (" 12 ", 12),
    ])
    def test_valid(self, value, expected):
        assert parse_big_int(value) == expected

    @pytest.mark.parametrize("value", [None, "", "abc", "-5", "1.5", True, -3])
    def test_invalid(self, value):
        assert parse_big_int(value) is None


class TestDecodeAmountFromInput:

    def test_transfer_call_data(self):
        data = "0xa9059cbb" + B[2:].rjust(64, "0") + format(2500000000000000000, "x").rjust(64, "0")

        assert decode_amount_from_input(data) == Decimal("2.5")

    def test_without_0x_prefix(self):
        data = "a9059cbb" + B[2:].rjust(64, "0") + format(10 ** 18, "x").rjust(64, "0")

        assert decode_amount_from_input(data) == Decimal(1)

    @pytest.mark.parametrize("data", [None, "", "0xa9059cbb", "0xa9059cbb" + "0" * 100])
    def test_too_short(self, data):
        assert decode_amount_from_input(data) is None

    def test_not_hex(self):
        assert decode_amount_from_input("0xa9059cbb" + "z" * 128) is None


def test_to_decimal():
    assert to_decimal("1.25") == Decimal("1.25")
    assert to_decimal(3) == Decimal(3)
    assert to_decimal(Decimal("2")) == Decimal(2)
    assert to_decimal("abc") is None
    assert to_decimal(None) is None
    assert to_decimal("NaN") is None
    assert to_decimal(True) is None


# ============================================================
# TIME
# ============================================================

class TestTime:

    def test_naive_datetime_is_utc(self):
        assert to_utc_date(datetime(2024, 1, 1, 23, 59)) == date(2024, 1, 1)

    def test_aware_datetime_is_converted(self):
        tokyo = timezone(timedelta(hours=9))
        assert to_utc_date(datetime(2024, 1, 2, 3, 0, tzinfo=tokyo)) == date(2024, 1, 1)

    def test_iso_string_with_z(self):
        assert to_utc_date("2024-03-10T23:15:00.000Z") == date(2024, 3, 10)

    def test_unix_seconds(self):
        assert to_utc_date(1704067200) == date(2024, 1, 1)
        assert to_utc_date("1704067200") == date(2024, 1, 1)

    def test_unparseable(self):
        assert to_utc_date("yesterday") is None
        assert to_utc_date(None) is None
        assert parse_timestamp(object()) is None

    @pytest.mark.parametrize("day,expected", [
        (date(2024, 1, 1), date(2024, 1, 1)),
        (date(2024, 1, 3), date(2024, 1, 1)),
        (date(2024, 1, 7), date(2024, 1, 1)),
        (date(2024, 1, 8), date(2024, 1, 8)),
        (date(2024, 3, 1), date(2024, 2, 26)),
    ])
    def test_week_start_is_monday(self, day, expected):
        assert week_start_date(day) == expected


# ============================================================
# ADDRESSES AND SELECTORS
# ============================================================

class TestAddresses:

    def test_normalize(self):
        assert normalize_address("0xABCDEF" + "0" * 34) == "0xabcdef" + "0" * 34
        assert normalize_address("a" * 40) == A
        assert normalize_address(None) == ""

    def test_valid_address(self):
        assert is_valid_ethereum_address(A)
        assert not is_valid_ethereum_address("0x1234")
        assert not is_valid_ethereum_address("")

    def test_mint_or_burn(self):
        mint = TransferEvent(datetime(2024, 1, 1), ZERO_ADDRESS, A, Decimal(1))
        plain = TransferEvent(datetime(2024, 1, 1), A, B, Decimal(1))

        assert is_mint_or_burn(mint)
        assert not is_mint_or_burn(plain)

    def test_method_selector_from_signature(self):
        assert method_selector("transfer(address,uint256)") == "0xa9059cbb"
        assert method_selector("transfer(address, uint256)") == "0xa9059cbb"

    def test_valid_method_selector(self):
        assert is_valid_method_selector("0xa9059cbb")
        assert not is_valid_method_selector("a9059cbb")
        assert not is_valid_method_selector("0xa9059c")
        assert not is_valid_method_selector("")


# ============================================================
# PROVIDER RECORDS
# ============================================================

class TestParseMoralisTransfers:

    def test_value_decimal_is_used(self):
        transfers = parse_moralis_transfers([{
            "transaction_hash": "0x1",
            "block_timestamp": "2024-01-01T10:00:00.000Z",
            "from_address": A.upper().replace("0X", "0x"),
            "to_address": B,
            "value": "1500000000000000000",
            "value_decimal": "1.5",
        }])

        assert len(transfers) == 1
        assert transfers[0].from_address == A
        assert transfers[0].value_decimal == Decimal("1.5")
        assert transfers[0].timestamp == datetime(2024, 1, 1, 10, tzinfo=timezone.utc)

    def test_raw_value_scaled_by_token_decimals(self):
        transfers = parse_moralis_transfers([{
            "block_timestamp": "2024-01-01T10:00:00Z",
            "from_address": A,
            "to_address": B,
            "value": "2500000",
            "token_decimals": "6",
        }])

        assert transfers[0].value_decimal == Decimal("2.5")

    def test_malformed_records_are_skipped(self):
        transfers = parse_moralis_transfers([
            {"block_timestamp": "2024-01-01T10:00:00Z", "from_address": A},
            {"block_timestamp": "garbage", "from_address": A, "to_address": B, "value_decimal": "1"},
            {"block_timestamp": "2024-01-01T10:00:00Z", "from_address": A, "to_address": B, "value": "x"},
            "not a dict",
            {"block_timestamp": "2024-01-01T10:00:00Z", "from_address": A, "to_address": B, "value_decimal": "1"},
        ])

        assert len(transfers) == 1

    def test_empty(self):
        assert parse_moralis_transfers([]) == []


class TestParseMoralisTransactions:

    def test_logs_are_decoded(self):
        transactions = parse_moralis_transactions([{
            "hash": "0xabc",
            "block_timestamp": "2024-01-03T12:00:00.000Z",
            "input": "0xa9059cbb",
            "logs": [
                {"data": "0x", "decoded_event": {"params": [
                    {"name": "from", "value": A},
                    {"name": "to", "value": B},
                    {"name": "value", "value": "1000"},
                ]}},
                {"data": "0x", "decoded_event": None},
            ],
        }])

        tx = transactions[0]
        assert tx.tx_hash == "0xabc"
        assert tx.logs[0].decoded_params == [A, B, "1000"]
        assert tx.logs[1].decoded_params == []

    def test_missing_logs_is_none(self):
        transactions = parse_moralis_transactions([{
            "blockTimestamp": "2024-01-03T12:00:00Z",
            "input": "0xa9059cbb",
        }])

        assert transactions[0].logs is None

    def test_malformed_decoded_event_yields_empty_params(self):
        transactions = parse_moralis_transactions([
            {"block_timestamp": "2024-01-03T12:00:00Z", "input": "0xa9059cbb",
             "logs": [{"decoded_event": "Transfer"}, {"decoded_event": {"params": "oops"}}]},
            {"block_timestamp": "2024-01-04T12:00:00Z", "input": "0xa9059cbb", "logs": []},
        ])

        assert len(transactions) == 2
        assert [log.decoded_params for log in transactions[0].logs] == [[], []]

    def test_undecoded_logs_still_yield_call_data_amount(self):
        data = "0xa9059cbb" + B[2:].rjust(64, "0") + format(1500000000000000000, "x").rjust(64, "0")
        transactions = parse_moralis_transactions([{
            "hash": "0xdef",
            "block_timestamp": "2024-01-03T12:00:00.000Z",
            "input": data,
            "logs": [{"data": "0x", "decoded_event": None}],
        }])

        rows = aggregate_weekly_payments(transactions, "0xa9059cbb")

        assert rows[0].week_start_date == date(2024, 1, 1)
        assert rows[0].total_payments_amount == Decimal("1.5")

    def test_bad_timestamp_skipped(self):
        assert parse_moralis_transactions([{"block_timestamp": "?", "input": "0x"}]) == []


def test_parse_moralis_holders():
    holders = parse_moralis_holders([
        {
            "owner_address": A,
            "balance": "2500000000000000000",
            "balance_formatted": "2.5",
            "percentage_relative_to_total_supply": 12.5,
        },
        {"owner_address": B, "balance": "1"},
    ])

    assert holders[0].address == A
    assert holders[0].balance_formatted == "2.5"
    assert holders[0].percentage_of_supply == Decimal("12.5")
    assert holders[1].balance_formatted is None
    assert holders[1].percentage_of_supply is None
    assert holders[1].balance_raw == "1"


def test_format_number():
    assert format_number(Decimal(0)) == "0"
    assert format_number(Decimal("1500")) == "1.50K"
    assert format_number(Decimal("2500000")) == "2.50M"
    assert format_number(3_000_000_000) == "3.00B"
    assert format_number(Decimal("12.5")) == "12.50"
