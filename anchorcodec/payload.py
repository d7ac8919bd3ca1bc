"""
Payload codec — the ANCHOR message envelope, independent of carrier.

Layout:
    A1 1C 00 01     magic (4 bytes, "v1")
    <kind>          message type (1 byte)
    <count>         number of anchor references (1 byte)
    <anchor>*count  8-byte txid prefix + 1-byte vout each
    <body>          opaque, runs to the end of the carrier data

The body has no length prefix. The codec does not interpret kind-specific
body grammars; it only carries them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Sequence

from anchorcodec import (
    ANCHOR_HEADER_SIZE, ANCHOR_MAGIC, ANCHOR_REF_SIZE, MAX_ANCHORS, TXID_PREFIX_SIZE,
)
from anchorcodec.errors import BadMagicError, TooManyAnchorsError, TruncatedInputError

# Kind names as shown by ANCHOR explorers; anything else is "Custom (n)"
KIND_NAMES = {
    0: "Generic",
    1: "Text",
    2: "State",
    3: "Vote",
    4: "Image",
    5: "GeoMarker",
    10: "DNS",
    11: "Proof",
    20: "Token",
}

KIND_GENERIC = 0
KIND_TEXT = 1
KIND_STATE = 2
KIND_VOTE = 3
KIND_IMAGE = 4


def kind_name(kind: int) -> str:
    return KIND_NAMES.get(kind, f"Custom ({kind})")


def txid_to_prefix(txid_hex: str) -> bytes:
    """First 8 bytes of a txid in internal byte order.

    Txids are displayed byte-reversed, so the prefix comes from the *end*
    of the display string.
    """
    try:
        raw = bytes.fromhex(txid_hex)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Invalid txid: {txid_hex!r}") from e
    if len(raw) != 32:
        raise ValueError(f"Invalid txid: expected 32 bytes, got {len(raw)}")
    return raw[::-1][:TXID_PREFIX_SIZE]


@dataclass(frozen=True)
class AnchorRef:
    """Compact back-reference to a prior message's transaction output."""

    txid_prefix: bytes
    vout: int

    def __post_init__(self) -> None:
        if not isinstance(self.txid_prefix, (bytes, bytearray)) or \
                len(self.txid_prefix) != TXID_PREFIX_SIZE:
            raise ValueError(
                f"txid_prefix must be {TXID_PREFIX_SIZE} bytes, got {self.txid_prefix!r}"
            )
        if not 0 <= self.vout <= 0xFF:
            raise ValueError(f"vout must be in 0..255, got {self.vout}")
        object.__setattr__(self, "txid_prefix", bytes(self.txid_prefix))

    @classmethod
    def from_txid(cls, txid_hex: str, vout: int) -> AnchorRef:
        """Build a reference from a display-order txid."""
        return cls(txid_to_prefix(txid_hex), vout)

    def matches_txid(self, txid_hex: str) -> bool:
        """True if txid_hex could be the referenced transaction.

        Only 8 bytes are compared, so several txids may match; resolving
        the ambiguity is the indexer's job.
        """
        try:
            return txid_to_prefix(txid_hex) == self.txid_prefix
        except ValueError:
            return False

    def to_bytes(self) -> bytes:
        return self.txid_prefix + bytes([self.vout])

    def to_dict(self) -> dict[str, Any]:
        return {"txid_prefix": self.txid_prefix.hex(), "vout": self.vout}


@dataclass(frozen=True)
class AnchorPayload:
    """A decoded ANCHOR message (without blockchain context)."""

    kind: int
    anchors: tuple[AnchorRef, ...] = field(default_factory=tuple)
    body: bytes = b""

    def __post_init__(self) -> None:
        object.__setattr__(self, "anchors", tuple(self.anchors))
        object.__setattr__(self, "body", bytes(self.body))

    @property
    def kind_name(self) -> str:
        return kind_name(self.kind)

    @property
    def is_root(self) -> bool:
        return not self.anchors

    @property
    def canonical_parent(self) -> AnchorRef | None:
        return self.anchors[0] if self.anchors else None

    def body_text(self) -> str | None:
        """Body decoded as UTF-8, or None if it is not valid UTF-8."""
        try:
            return self.body.decode("utf-8")
        except UnicodeDecodeError:
            return None

    def encode(self) -> bytes:
        return encode_payload(self.kind, self.anchors, self.body)

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "kind_name": self.kind_name,
            "anchors": [a.to_dict() for a in self.anchors],
            "body": self.body.hex(),
            "body_text": self.body_text(),
        }


def encode_payload(kind: int, anchors: Sequence[AnchorRef], body: bytes) -> bytes:
    """Serialize an ANCHOR message. Pure concatenation, no body length."""
    if not 0 <= kind <= 0xFF:
        raise ValueError(f"kind must be in 0..255, got {kind}")
    if len(anchors) > MAX_ANCHORS:
        raise TooManyAnchorsError(
            f"Too many anchors: {len(anchors)} (max {MAX_ANCHORS})"
        )
    parts = [ANCHOR_MAGIC, bytes([kind, len(anchors)])]
    parts.extend(anchor.to_bytes() for anchor in anchors)
    parts.append(bytes(body))
    return b"".join(parts)


def decode_payload(buf: bytes) -> AnchorPayload:
    """Parse an ANCHOR message.

    Raises BadMagicError if buf does not start with the magic and
    TruncatedInputError if the declared anchors do not fit.
    """
    buf = bytes(buf)
    if buf[:len(ANCHOR_MAGIC)] != ANCHOR_MAGIC:
        raise BadMagicError(
            f"Bad magic: expected {ANCHOR_MAGIC.hex()}, got {buf[:len(ANCHOR_MAGIC)].hex()!r}"
        )
    if len(buf) < ANCHOR_HEADER_SIZE:
        raise TruncatedInputError(
            f"Payload too short: {len(buf)} bytes (minimum {ANCHOR_HEADER_SIZE})",
            offset=len(buf),
        )

    kind = buf[4]
    count = buf[5]
    body_start = ANCHOR_HEADER_SIZE + count * ANCHOR_REF_SIZE
    if len(buf) < body_start:
        raise TruncatedInputError(
            f"Not enough bytes for {count} anchors: need {body_start}, got {len(buf)}",
            offset=len(buf),
        )

    anchors = []
    for offset in range(ANCHOR_HEADER_SIZE, body_start, ANCHOR_REF_SIZE):
        anchors.append(AnchorRef(
            buf[offset:offset + TXID_PREFIX_SIZE],
            buf[offset + TXID_PREFIX_SIZE],
        ))

    return AnchorPayload(kind=kind, anchors=tuple(anchors), body=buf[body_start:])


def is_anchor_payload(buf: bytes) -> bool:
    """Cheap check: does buf start with the ANCHOR magic?"""
    return bytes(buf[:len(ANCHOR_MAGIC)]) == ANCHOR_MAGIC


def text_message(text: str, anchors: Sequence[AnchorRef] = ()) -> bytes:
    """Encode a kind=Text message with a UTF-8 body."""
    return encode_payload(KIND_TEXT, anchors, text.encode("utf-8"))
