"""Trace ID conversion helpers and ring token hashing."""

from __future__ import annotations

_HEX_CHARS = frozenset("0123456789abcdefABCDEF")
_TRACE_ID_SIZE = 16

_FNV32_OFFSET_BASIS = 0x811C9DC5
_FNV32_PRIME = 0x01000193
_MASK32 = 0xFFFFFFFF


def hex_string_to_trace_id(trace_id: str) -> bytes:
    """Parse a hex trace ID into 16 bytes, left-padding with zeros.

    Raises ValueError for non-hex characters or IDs longer than 128 bits.
    """
    for pos, char in enumerate(trace_id, start=1):
        if char not in _HEX_CHARS:
            raise ValueError(
                "trace IDs can only contain hex characters: "
                f"invalid character '{char}' at position {pos}"
            )

    if len(trace_id) % 2 == 1:
        trace_id = "0" + trace_id

    raw = bytes.fromhex(trace_id)
    if len(raw) > _TRACE_ID_SIZE:
        raise ValueError("trace IDs can't be larger than 128 bits")
    return raw.rjust(_TRACE_ID_SIZE, b"\x00")


def trace_id_to_hex_string(byte_id: bytes) -> str:
    """Render a trace ID as lower-case hex without leading zeros."""
    return bytes(byte_id).hex().lstrip("0")


def equal_hex_string_trace_ids(a: str, b: str) -> bool:
    """Compare two hex trace IDs after padding them to 16 bytes."""
    return hex_string_to_trace_id(a) == hex_string_to_trace_id(b)


def pad_trace_id_to_16_bytes(trace_id: bytes) -> bytes:
    """Left-pad to 16 bytes, or keep the 16 least significant bytes."""
    trace_id = bytes(trace_id)
    if len(trace_id) >= _TRACE_ID_SIZE:
        return trace_id[-_TRACE_ID_SIZE:]
    return trace_id.rjust(_TRACE_ID_SIZE, b"\x00")


def _fnv1_32(*chunks: bytes) -> int:
    value = _FNV32_OFFSET_BASIS
    for chunk in chunks:
        for byte in chunk:
            value = (value * _FNV32_PRIME) & _MASK32
            value ^= byte
    return value


def token_for(user_id: str, b: bytes) -> int:
    """Token used to locate ingesters on the ring for a user and key."""
    return _fnv1_32(user_id.encode("utf-8"), bytes(b))


def token_for_trace_id(b: bytes) -> int:
    """Hashed value of a trace ID."""
    return _fnv1_32(bytes(b))