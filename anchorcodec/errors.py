"""
Error types raised by the codec, carriers and transaction walker.

Every error derives from ValueError: all of them describe malformed or
oversized input, never an internal fault.
"""

from __future__ import annotations


class AnchorCodecError(ValueError):
    """Base class for all codec errors."""


class MalformedHexError(AnchorCodecError):
    """Input is not valid hex or has odd length."""


class TruncatedInputError(AnchorCodecError):
    """Buffer ends before a required field."""

    def __init__(self, message: str, offset: int | None = None) -> None:
        super().__init__(message)
        self.offset = offset


class TruncatedTransactionError(TruncatedInputError):
    """Raw transaction ends before a required field."""


class BadMagicError(AnchorCodecError):
    """Expected ANCHOR magic bytes absent at a payload boundary."""


class InvalidPushOpcodeError(AnchorCodecError):
    """Opcode is not a data push where strict decoding was requested."""


class TooManyAnchorsError(AnchorCodecError):
    """More than 255 anchor references requested at encode time."""


class PayloadTooLargeError(AnchorCodecError):
    """Payload exceeds the capacity of the requested carrier."""


class ContentTypeTooLongError(AnchorCodecError):
    """Inscription content type does not fit a single stack element."""
