"""
Reader — primitive decoders over an in-memory byte buffer.

Every reader takes the buffer and a start offset and returns the decoded
value together with the offset just past it, so callers can chain reads
without slicing. Reads that would run past the end of the buffer raise
TruncatedInputError carrying the offset where the read started.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator

from anchorcodec._wire.spec import (
    COMPACT_SIZE_U16, COMPACT_SIZE_U32, COMPACT_SIZE_U64,
    MAX_DIRECT_PUSH, OPCODE_NAMES, PUSHDATA_WIDTHS, is_push_opcode,
)
from anchorcodec.errors import InvalidPushOpcodeError, TruncatedInputError


def read_bytes(buf: bytes, pos: int, n: int) -> tuple[bytes, int]:
    """Read exactly n bytes starting at pos."""
    end = pos + n
    if pos < 0 or n < 0 or end > len(buf):
        raise TruncatedInputError(
            f"Need {n} bytes at offset {pos}, only {max(len(buf) - pos, 0)} available",
            offset=pos,
        )
    return bytes(buf[pos:end]), end


def read_uint(buf: bytes, pos: int, width: int) -> tuple[int, int]:
    """Read an unsigned little-endian integer of the given byte width."""
    raw, end = read_bytes(buf, pos, width)
    return int.from_bytes(raw, "little"), end


def read_compact_size(buf: bytes, pos: int) -> tuple[int, int]:
    """Decode a Bitcoin compact-size integer.

    Returns (value, new_pos). Consumes 1, 3, 5 or 9 bytes depending on the
    prefix byte.
    """
    prefix, after = read_uint(buf, pos, 1)
    if prefix < COMPACT_SIZE_U16:
        return prefix, after
    width = {COMPACT_SIZE_U16: 2, COMPACT_SIZE_U32: 4, COMPACT_SIZE_U64: 8}[prefix]
    try:
        return read_uint(buf, after, width)
    except TruncatedInputError as e:
        raise TruncatedInputError(
            f"Compact-size at offset {pos} needs {width} more bytes", offset=pos,
        ) from e


def read_push_length(
    buf: bytes, pos: int, strict: bool = True,
) -> tuple[int, int] | None:
    """Decode the length announced by a push opcode at pos.

    Returns (length, new_pos) where new_pos points at the first data byte.
    Opcodes 0x01-0x4b are direct lengths, 0x00 is an empty push and
    OP_PUSHDATA1/2/4 carry a 1/2/4-byte little-endian length.

    Any other opcode raises InvalidPushOpcodeError in strict mode; in lax
    mode it returns None and consumes nothing.
    """
    opcode, after = read_uint(buf, pos, 1)
    if not is_push_opcode(opcode):
        if strict:
            raise InvalidPushOpcodeError(
                f"Opcode 0x{opcode:02x} at offset {pos} is not a data push"
            )
        return None
    if opcode <= MAX_DIRECT_PUSH:  # includes OP_0, the empty push
        return opcode, after
    return read_uint(buf, after, PUSHDATA_WIDTHS[opcode])


@dataclass(frozen=True)
class ScriptToken:
    """One script element: a data push or a bare opcode.

    start/end are byte offsets of the whole element (opcode, length field
    and data) inside the script it was read from.
    """

    opcode: int
    data: bytes | None
    start: int
    end: int

    @property
    def is_push(self) -> bool:
        return self.data is not None

    @property
    def data_start(self) -> int:
        """Offset of the first data byte (== end for bare opcodes)."""
        return self.end - len(self.data or b"")

    def __str__(self) -> str:
        if self.data is None:
            return OPCODE_NAMES.get(self.opcode, f"OP_0x{self.opcode:02x}")
        if not self.data:
            return "OP_0"
        return f"<{self.data.hex()}>"


def iter_script(script: bytes) -> Iterator[ScriptToken]:
    """Tokenize a script into pushes and bare opcodes.

    A push whose declared length runs past the end of the script raises
    TruncatedInputError.
    """
    pos = 0
    while pos < len(script):
        start = pos
        pushed = read_push_length(script, pos, strict=False)
        if pushed is None:
            yield ScriptToken(script[pos], None, start, pos + 1)
            pos += 1
            continue
        length, data_pos = pushed
        data, pos = read_bytes(script, data_pos, length)
        yield ScriptToken(script[start], data, start, pos)


def tokenize(script: bytes) -> list[ScriptToken] | None:
    """Tokenize a whole script, or None when a push overruns it."""
    try:
        return list(iter_script(script))
    except TruncatedInputError:
        return None


class ByteReader:
    """Sequential cursor over a buffer; the walker's only source of bytes.

    Usage:
        reader = ByteReader(raw)
        version = reader.uint(4)
        count = reader.compact_size()
    """

    def __init__(self, buf: bytes, pos: int = 0) -> None:
        self.buf = buf
        self.pos = pos

    @property
    def remaining(self) -> int:
        return len(self.buf) - self.pos

    def peek(self, n: int) -> bytes:
        return bytes(self.buf[self.pos:self.pos + n])

    def read(self, n: int) -> bytes:
        data, self.pos = read_bytes(self.buf, self.pos, n)
        return data

    def uint(self, width: int) -> int:
        value, self.pos = read_uint(self.buf, self.pos, width)
        return value

    def compact_size(self) -> int:
        value, self.pos = read_compact_size(self.buf, self.pos)
        return value
