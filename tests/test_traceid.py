import re

import pytest

from tempokit.traceid import (
    equal_hex_string_trace_ids,
    hex_string_to_trace_id,
    pad_trace_id_to_16_bytes,
    token_for,
    token_for_trace_id,
    trace_id_to_hex_string,
)


@pytest.mark.parametrize(
    "trace_id, expected",
    [
        ("12", bytes(15) + b"\x12"),
        ("1234567890abcdef", bytes(8) + bytes.fromhex("1234567890abcdef")),
        (
            "1234567890abcdef1234567890abcdef",
            bytes.fromhex("1234567890abcdef1234567890abcdef"),
        ),
        ("234567890abcdef", bytes(8) + bytes.fromhex("0234567890abcdef")),
    ],
)
def test_hex_string_to_trace_id(trace_id, expected):
    assert hex_string_to_trace_id(trace_id) == expected


def test_hex_string_to_trace_id_too_long():
    with pytest.raises(ValueError, match="trace IDs can't be larger than 128 bits"):
        hex_string_to_trace_id("121234567890abcdef1234567890abcdef")


def test_hex_string_to_trace_id_invalid_character():
    message = (
        "trace IDs can only contain hex characters: "
        "invalid character ' ' at position 17"
    )
    with pytest.raises(ValueError, match=re.escape(message)):
        hex_string_to_trace_id("1234567890abcdef ")


@pytest.mark.parametrize(
    "byte_id, expected",
    [
        (bytes(15) + b"\x12", "12"),
        (bytes(8) + bytes.fromhex("1234567890abcdef"), "1234567890abcdef"),
        (
            bytes.fromhex("1234567890abcdef1234567890abcdef"),
            "1234567890abcdef1234567890abcdef",
        ),
        (bytes(14) + b"\x12\xa0", "12a0"),
    ],
)
def test_trace_id_to_hex_string(byte_id, expected):
    assert trace_id_to_hex_string(byte_id) == expected


def test_equal_hex_string_trace_ids():
    a = "82f6471b46d25e23418a0a99d4c2cda"
    b = "082f6471b46d25e23418a0a99d4c2cda"
    assert equal_hex_string_trace_ids(a, b) is True


def test_equal_hex_string_trace_ids_differs():
    assert equal_hex_string_trace_ids("12", "13") is False


def test_equal_hex_string_trace_ids_propagates_error():
    with pytest.raises(ValueError):
        equal_hex_string_trace_ids("zz", "12")


@pytest.mark.parametrize(
    "tid, expected",
    [
        (b"\x01\x02", bytes(14) + b"\x01\x02"),
        (b"\x01\x02" * 8, b"\x01\x02" * 8),
        (b"\x05\x05" + b"\x01\x02" * 8, b"\x01\x02" * 8),
    ],
)
def test_pad_trace_id_to_16_bytes(tid, expected):
    assert pad_trace_id_to_16_bytes(tid) == expected


def test_round_trip_hex():
    trace_id = "1234567890abcdef1234567890abcdef"
    assert trace_id_to_hex_string(hex_string_to_trace_id(trace_id)) == trace_id


def test_token_for_trace_id_known_values():
    assert token_for_trace_id(b"") == 0x811C9DC5
    assert token_for_trace_id(b"a") == 0x050C5D7E


def test_token_for_matches_concatenation():
    trace_id = bytes.fromhex("1234567890abcdef1234567890abcdef")
    assert token_for("tenant", trace_id) == token_for_trace_id(b"tenant" + trace_id)
    assert token_for("tenant", trace_id) != token_for("other", trace_id)