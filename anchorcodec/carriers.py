"""
Carriers — wrap an encoded ANCHOR payload into the bytes of one of the five
Bitcoin embedding mechanisms, and extract it back out.

Carrier layouts:
    op_return      OP_RETURN <push payload>                          (output script)
    inscription    OP_FALSE OP_IF <"anchor"> OP_1 <content-type>
                   OP_0 <payload chunks...> OP_ENDIF OP_TRUE         (witness script)
    stamps         OP_1 <33-byte chunk>... OP_1 OP_CHECKMULTISIG     (output script)
    taproot_annex  0x50 <payload>                                    (last witness item)
    witness_data   <push chunk> OP_DROP ... OP_TRUE, or a raw item   (witness item)

Extractors are structural: they accept only the exact grammar above and
require the ANCHOR magic at the first payload byte. They return None rather
than raising when the bytes are not a match.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass

from anchorcodec import (
    ANCHOR_HEADER_SIZE, ANCHOR_MAGIC, ANCHOR_REF_SIZE, INSCRIPTION_DEFAULT_CONTENT_TYPE,
    INSCRIPTION_PROTOCOL_ID, MAX_OP_RETURN_PUSH, MAX_SCRIPT_ELEMENT_SIZE,
    STAMPS_CHUNK_SIZE,
)
from anchorcodec._wire.reader import ScriptToken, tokenize
from anchorcodec._wire.spec import (
    ANNEX_TAG, OP_1, OP_CHECKMULTISIG, OP_DROP, OP_ENDIF, OP_FALSE, OP_IF,
    OP_RETURN, OP_TRUE,
)
from anchorcodec._wire.writer import encode_push
from anchorcodec.errors import ContentTypeTooLongError, PayloadTooLargeError
from anchorcodec.payload import KIND_GENERIC, KIND_IMAGE, KIND_STATE, KIND_TEXT, KIND_VOTE

# Inscriptions made with the ord protocol id are read too, never written
_ORD_PROTOCOL_ID = b"ord"

# OP_1..OP_16, the key-count opcode closing a stamps multisig
_OP_16 = 0x60


class CarrierKind(str, enum.Enum):
    OP_RETURN = "op_return"
    INSCRIPTION = "inscription"
    STAMPS = "stamps"
    TAPROOT_ANNEX = "taproot_annex"
    WITNESS_DATA = "witness_data"
    NONE = "none"

    def __str__(self) -> str:
        return self.value


class CarrierLocation(str, enum.Enum):
    OUTPUT = "output"
    WITNESS = "witness"


@dataclass(frozen=True)
class CarrierInfo:
    """Static properties of a carrier."""

    kind: CarrierKind
    location: CarrierLocation
    max_size: int
    prunable: bool
    utxo_impact: bool
    witness_discount: bool


CARRIER_INFO = {
    CarrierKind.OP_RETURN: CarrierInfo(
        CarrierKind.OP_RETURN, CarrierLocation.OUTPUT, MAX_OP_RETURN_PUSH,
        prunable=True, utxo_impact=False, witness_discount=False,
    ),
    CarrierKind.INSCRIPTION: CarrierInfo(
        CarrierKind.INSCRIPTION, CarrierLocation.WITNESS, 4_000_000,
        prunable=True, utxo_impact=False, witness_discount=True,
    ),
    CarrierKind.STAMPS: CarrierInfo(
        CarrierKind.STAMPS, CarrierLocation.OUTPUT, 8_000,
        prunable=False, utxo_impact=True, witness_discount=False,
    ),
    CarrierKind.TAPROOT_ANNEX: CarrierInfo(
        CarrierKind.TAPROOT_ANNEX, CarrierLocation.WITNESS, 10_000,
        prunable=True, utxo_impact=False, witness_discount=True,
    ),
    CarrierKind.WITNESS_DATA: CarrierInfo(
        CarrierKind.WITNESS_DATA, CarrierLocation.WITNESS, 4_000_000,
        prunable=True, utxo_impact=False, witness_discount=True,
    ),
}

_CONTENT_TYPES = {
    KIND_GENERIC: b"application/octet-stream",
    KIND_TEXT: b"text/plain;charset=utf-8",
    KIND_STATE: b"application/json",
    KIND_VOTE: b"application/json",
    KIND_IMAGE: b"image/png",
}


def content_type_for_kind(kind: int) -> bytes:
    """Default inscription content type for a message kind."""
    return _CONTENT_TYPES.get(kind, INSCRIPTION_DEFAULT_CONTENT_TYPE)


@dataclass(frozen=True)
class PayloadLocation:
    """Payload bytes found inside a script or witness item.

    start/end delimit the byte range of the script/item that holds the
    payload. When a payload is split over several pushes the range also
    covers the push opcodes between the chunks, so `data` is not always
    equal to `script[start:end]`.
    """

    data: bytes
    start: int
    end: int


@dataclass(frozen=True)
class WitnessEnvelope:
    """An inscription reveal script carrying an ANCHOR payload."""

    script: bytes
    content_type: bytes

    @property
    def tokens(self) -> tuple[ScriptToken, ...]:
        return tuple(tokenize(self.script) or ())

    @property
    def chunks(self) -> tuple[bytes, ...]:
        """Payload pushes in order, each at most 520 bytes."""
        found = _parse_envelope(self.tokens)
        if found is None:
            return ()
        _content_type, body = found
        return tuple(t.data for t in body)

    def to_asm(self) -> str:
        return " ".join(str(t) for t in self.tokens)


def _check_capacity(kind: CarrierKind, payload: bytes) -> None:
    limit = CARRIER_INFO[kind].max_size
    if len(payload) > limit:
        raise PayloadTooLargeError(
            f"Payload of {len(payload)} bytes exceeds {kind} capacity ({limit} bytes)"
        )


def _chunks(data: bytes, size: int) -> list[bytes]:
    return [data[i:i + size] for i in range(0, len(data), size)]


# ---------------------------------------------------------------------------
# Encoders
# ---------------------------------------------------------------------------

def wrap_op_return(payload: bytes) -> bytes:
    """OP_RETURN followed by one minimal push of the payload."""
    _check_capacity(CarrierKind.OP_RETURN, payload)
    return bytes([OP_RETURN]) + encode_push(payload, MAX_OP_RETURN_PUSH)


def wrap_inscription(
    payload: bytes, content_type: bytes | str = INSCRIPTION_DEFAULT_CONTENT_TYPE,
) -> WitnessEnvelope:
    """Build the inscription envelope, chunking the payload into 520-byte pushes."""
    if isinstance(content_type, str):
        content_type = content_type.encode("utf-8")
    if len(content_type) > MAX_SCRIPT_ELEMENT_SIZE:
        raise ContentTypeTooLongError(
            f"Content type is {len(content_type)} bytes (max {MAX_SCRIPT_ELEMENT_SIZE})"
        )
    _check_capacity(CarrierKind.INSCRIPTION, payload)

    parts = [
        bytes([OP_FALSE, OP_IF]),
        encode_push(INSCRIPTION_PROTOCOL_ID),
        bytes([OP_1]),
        encode_push(content_type),
        bytes([OP_FALSE]),  # body tag
    ]
    parts.extend(encode_push(chunk) for chunk in _chunks(payload, MAX_SCRIPT_ELEMENT_SIZE))
    parts.append(bytes([OP_ENDIF, OP_TRUE]))
    return WitnessEnvelope(script=b"".join(parts), content_type=bytes(content_type))


def wrap_stamps(payload: bytes) -> bytes:
    """Bare 1-of-n multisig whose "pubkeys" are 33-byte payload chunks.

    The last chunk is zero-padded on the right.
    """
    if not payload:
        raise ValueError("Stamps carrier needs at least one payload byte")
    _check_capacity(CarrierKind.STAMPS, payload)
    parts = [bytes([OP_1])]
    for chunk in _chunks(payload, STAMPS_CHUNK_SIZE):
        parts.append(encode_push(chunk.ljust(STAMPS_CHUNK_SIZE, b"\x00")))
    parts.append(bytes([OP_1, OP_CHECKMULTISIG]))
    return b"".join(parts)


def wrap_annex(payload: bytes) -> bytes:
    """Annex witness item: 0x50 marker + payload. Must be the last item."""
    _check_capacity(CarrierKind.TAPROOT_ANNEX, payload)
    return bytes([ANNEX_TAG]) + bytes(payload)


def wrap_witness_data(payload: bytes) -> bytes:
    """Tapscript pushing the payload in 520-byte chunks, dropping each, then OP_TRUE."""
    _check_capacity(CarrierKind.WITNESS_DATA, payload)
    parts = []
    for chunk in _chunks(payload, MAX_SCRIPT_ELEMENT_SIZE):
        parts.append(encode_push(chunk) + bytes([OP_DROP]))
    parts.append(bytes([OP_TRUE]))
    return b"".join(parts)


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------

def _join_pushes(pushes: list[ScriptToken]) -> PayloadLocation | None:
    """Concatenate push data; match only if it starts with the magic."""
    if not pushes:
        return None
    data = b"".join(t.data for t in pushes)
    if data[:len(ANCHOR_MAGIC)] != ANCHOR_MAGIC:
        return None
    return PayloadLocation(data, pushes[0].data_start, pushes[-1].end)


def extract_op_return(script: bytes) -> PayloadLocation | None:
    """Payload from `OP_RETURN <push>...`; consecutive pushes are concatenated."""
    if not script or script[0] != OP_RETURN:
        return None
    tokens = tokenize(script[1:])
    if not tokens:
        return None
    pushes = []
    for token in tokens:
        if not token.is_push:
            break
        pushes.append(token)
    found = _join_pushes(pushes)
    if found is None:
        return None
    return PayloadLocation(found.data, found.start + 1, found.end + 1)


def _strip_stamps_padding(data: bytes) -> bytes:
    """Drop zero padding from the last chunk, never cutting into the header
    or the anchor references it declares.
    """
    floor = ANCHOR_HEADER_SIZE
    if len(data) >= ANCHOR_HEADER_SIZE:
        floor += ANCHOR_REF_SIZE * data[ANCHOR_HEADER_SIZE - 1]
    floor = max(len(data) - (STAMPS_CHUNK_SIZE - 1), floor)
    end = len(data)
    while end > floor and data[end - 1] == 0:
        end -= 1
    return data[:end]


def extract_stamps(script: bytes) -> PayloadLocation | None:
    """Payload from `OP_1 <33-byte chunk>... OP_n OP_CHECKMULTISIG`."""
    tokens = tokenize(script)
    if not tokens or len(tokens) < 4:
        return None
    first, count_op, checkmultisig = tokens[0], tokens[-2], tokens[-1]
    if first.is_push or first.opcode != OP_1:
        return None
    if count_op.is_push or not OP_1 <= count_op.opcode <= _OP_16:
        return None
    if checkmultisig.is_push or checkmultisig.opcode != OP_CHECKMULTISIG:
        return None
    chunks = tokens[1:-2]
    if any(not t.is_push or len(t.data) != STAMPS_CHUNK_SIZE for t in chunks):
        return None
    data = b"".join(t.data for t in chunks)
    if data[:len(ANCHOR_MAGIC)] != ANCHOR_MAGIC:
        return None
    return PayloadLocation(_strip_stamps_padding(data), chunks[0].data_start, chunks[-1].end)


def _parse_envelope(
    tokens: tuple[ScriptToken, ...] | list[ScriptToken],
) -> tuple[bytes, list[ScriptToken]] | None:
    """Find `OP_FALSE OP_IF <protocol> fields... OP_0 body... OP_ENDIF`.

    Returns (content_type, body pushes) or None. Tokens before the
    envelope (e.g. `<pubkey> OP_CHECKSIG`) are skipped.
    """
    start = None
    for i in range(len(tokens) - 1):
        if tokens[i].data == b"" and tokens[i + 1].opcode == OP_IF \
                and not tokens[i + 1].is_push:
            start = i + 2
            break
    if start is None or start >= len(tokens):
        return None

    protocol = tokens[start]
    if protocol.data not in (INSCRIPTION_PROTOCOL_ID, _ORD_PROTOCOL_ID):
        return None

    content_type = b""
    i = start + 1
    while True:
        if i >= len(tokens):
            return None
        tag = tokens[i]
        if tag.data == b"":  # body tag
            i += 1
            break
        if not tag.is_push and tag.opcode == OP_ENDIF:
            return None  # envelope without body
        if i + 1 >= len(tokens) or not tokens[i + 1].is_push:
            return None
        if tag.opcode == OP_1 or tag.data == b"\x01":
            content_type = tokens[i + 1].data
        i += 2

    body = []
    for token in tokens[i:]:
        if not token.is_push:
            if token.opcode == OP_ENDIF:
                return content_type, body
            return None
        body.append(token)
    return None  # no OP_ENDIF


def extract_inscription(item: bytes) -> PayloadLocation | None:
    """Payload from the body of an inscription envelope."""
    tokens = tokenize(item)
    if not tokens:
        return None
    found = _parse_envelope(tokens)
    if found is None:
        return None
    _content_type, body = found
    return _join_pushes(body)


def extract_annex(item: bytes) -> PayloadLocation | None:
    """Payload from `0x50 <payload>`."""
    if len(item) < 1 + len(ANCHOR_MAGIC) or item[0] != ANNEX_TAG:
        return None
    if item[1:1 + len(ANCHOR_MAGIC)] != ANCHOR_MAGIC:
        return None
    return PayloadLocation(bytes(item[1:]), 1, len(item))


def extract_witness_data(item: bytes) -> PayloadLocation | None:
    """Payload from a raw witness item or a `<push> OP_DROP ... OP_TRUE` tapscript."""
    if item[:len(ANCHOR_MAGIC)] == ANCHOR_MAGIC:
        return PayloadLocation(bytes(item), 0, len(item))
    tokens = tokenize(item)
    if not tokens or len(tokens) < 3 or len(tokens) % 2 == 0:
        return None
    last = tokens[-1]
    if last.is_push or last.opcode != OP_TRUE:
        return None
    pushes = []
    for push, drop in zip(tokens[0:-1:2], tokens[1:-1:2]):
        if not push.is_push or drop.is_push or drop.opcode != OP_DROP:
            return None
        pushes.append(push)
    return _join_pushes(pushes)


EXTRACTORS = {
    CarrierKind.OP_RETURN: extract_op_return,
    CarrierKind.INSCRIPTION: extract_inscription,
    CarrierKind.STAMPS: extract_stamps,
    CarrierKind.TAPROOT_ANNEX: extract_annex,
    CarrierKind.WITNESS_DATA: extract_witness_data,
}


def extract(kind: CarrierKind, data: bytes) -> PayloadLocation | None:
    """Run the extractor for one carrier kind."""
    extractor = EXTRACTORS.get(kind)
    if extractor is None:
        return None
    return extractor(bytes(data))
