"""
Writer — inverse of the reader primitives.

Encoders always pick the shortest valid form so that re-encoding a decoded
value reproduces the original bytes.
"""

from __future__ import annotations

from anchorcodec._wire.spec import (
    COMPACT_SIZE_U16, COMPACT_SIZE_U32, COMPACT_SIZE_U64,
    MAX_DIRECT_PUSH, OP_PUSHDATA1, OP_PUSHDATA2, OP_PUSHDATA4,
)
from anchorcodec.errors import PayloadTooLargeError


def encode_compact_size(n: int) -> bytes:
    """Encode a non-negative integer as a Bitcoin compact-size."""
    if n < 0:
        raise ValueError(f"Compact-size cannot encode negative value {n}")
    if n < COMPACT_SIZE_U16:
        return bytes([n])
    if n <= 0xFFFF:
        return bytes([COMPACT_SIZE_U16]) + n.to_bytes(2, "little")
    if n <= 0xFFFFFFFF:
        return bytes([COMPACT_SIZE_U32]) + n.to_bytes(4, "little")
    if n <= 0xFFFFFFFFFFFFFFFF:
        return bytes([COMPACT_SIZE_U64]) + n.to_bytes(8, "little")
    raise ValueError(f"Compact-size cannot encode {n} (exceeds uint64)")


def encode_push_length(length: int, max_length: int = 0xFFFFFFFF) -> bytes:
    """Encode the opcode + length field announcing a push of `length` bytes.

    Raises PayloadTooLargeError when length exceeds max_length.
    """
    if length < 0:
        raise ValueError(f"Push length cannot be negative: {length}")
    if length > max_length:
        raise PayloadTooLargeError(
            f"Push of {length} bytes exceeds maximum {max_length}"
        )
    if length <= MAX_DIRECT_PUSH:
        return bytes([length])
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length])
    if length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little")
    return bytes([OP_PUSHDATA4]) + length.to_bytes(4, "little")


def encode_push(data: bytes, max_length: int = 0xFFFFFFFF) -> bytes:
    """Encode data as a single minimal script push."""
    return encode_push_length(len(data), max_length) + bytes(data)
