"""
Transaction walker — labels every byte of a raw Bitcoin transaction.

The walker is a strictly sequential state machine over one cursor:

    Version -> SegwitMarker? -> InputCount -> Inputs -> OutputCount ->
    Outputs -> Witnesses? -> Locktime -> Done

Each consumed field becomes one HexSegment, so the segments of a complete
walk are contiguous and concatenate back to the input. Output scripts and
witness items are run through the classifier; when one carries an ANCHOR
payload its segment is split into prefix / payload / suffix and the decoded
message is collected in WalkResult.payloads.

A transaction that ends early still yields every segment read before the
failure, with the error attached to the result instead of raised.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import re
from dataclasses import dataclass
from typing import Any

from anchorcodec._wire.reader import ByteReader
from anchorcodec._wire.spec import (
    LOCKTIME_SIZE, SEGWIT_MARKER, SEQUENCE_SIZE, TXID_SIZE, VALUE_SIZE,
    VERSION_SIZE, VOUT_SIZE,
)
from anchorcodec._wire.writer import encode_compact_size
from anchorcodec.carriers import CarrierKind, CarrierLocation
from anchorcodec.classifier import CarrierContext, detect
from anchorcodec.errors import (
    AnchorCodecError, MalformedHexError, TruncatedInputError,
    TruncatedTransactionError,
)
from anchorcodec.payload import AnchorPayload, decode_payload

log = logging.getLogger(__name__)

# Witness bytes count once, everything else four times (BIP-141)
WITNESS_SCALE_FACTOR = 4

_HEX_RE = re.compile(r"^[0-9a-fA-F]*$")


class SegmentCategory(str, enum.Enum):
    STRUCTURE = "Structure"
    INPUT = "Input"
    OUTPUT = "Output"
    WITNESS = "Witness"
    ANCHOR_PAYLOAD = "AnchorPayload"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class HexSegment:
    """A labeled byte range [start, end) of the raw transaction."""

    start: int
    end: int
    category: SegmentCategory
    label: str

    @property
    def length(self) -> int:
        return self.end - self.start

    def hex(self, raw: bytes) -> str:
        return raw[self.start:self.end].hex()


@dataclass(frozen=True)
class ParsedInput:
    prev_txid: bytes
    prev_vout: int
    script_sig: bytes
    sequence: int
    witness: tuple[bytes, ...] = ()

    @property
    def prev_txid_hex(self) -> str:
        """Previous txid in display (byte-reversed) order."""
        return self.prev_txid[::-1].hex()

    @property
    def is_coinbase(self) -> bool:
        return self.prev_txid == bytes(TXID_SIZE) and self.prev_vout == 0xFFFFFFFF


@dataclass(frozen=True)
class ParsedOutput:
    value_sats: int
    script_pubkey: bytes


def _sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


@dataclass(frozen=True)
class ParsedTransaction:
    version: int
    is_segwit: bool
    inputs: tuple[ParsedInput, ...]
    outputs: tuple[ParsedOutput, ...]
    locktime: int

    def serialize(self, include_witness: bool = True) -> bytes:
        """Re-encode the transaction; without witness this is the txid preimage."""
        with_witness = include_witness and self.is_segwit
        parts = [self.version.to_bytes(VERSION_SIZE, "little")]
        if with_witness:
            parts.append(SEGWIT_MARKER)
        parts.append(encode_compact_size(len(self.inputs)))
        for txin in self.inputs:
            parts.append(txin.prev_txid)
            parts.append(txin.prev_vout.to_bytes(VOUT_SIZE, "little"))
            parts.append(encode_compact_size(len(txin.script_sig)))
            parts.append(txin.script_sig)
            parts.append(txin.sequence.to_bytes(SEQUENCE_SIZE, "little"))
        parts.append(encode_compact_size(len(self.outputs)))
        for txout in self.outputs:
            parts.append(txout.value_sats.to_bytes(VALUE_SIZE, "little"))
            parts.append(encode_compact_size(len(txout.script_pubkey)))
            parts.append(txout.script_pubkey)
        if with_witness:
            for txin in self.inputs:
                parts.append(encode_compact_size(len(txin.witness)))
                for item in txin.witness:
                    parts.append(encode_compact_size(len(item)))
                    parts.append(item)
        parts.append(self.locktime.to_bytes(LOCKTIME_SIZE, "little"))
        return b"".join(parts)

    @property
    def txid(self) -> str:
        return _sha256d(self.serialize(include_witness=False))[::-1].hex()

    @property
    def wtxid(self) -> str:
        return _sha256d(self.serialize(include_witness=True))[::-1].hex()

    @property
    def size(self) -> int:
        return len(self.serialize(include_witness=True))

    @property
    def weight(self) -> int:
        base = len(self.serialize(include_witness=False))
        return base * (WITNESS_SCALE_FACTOR - 1) + self.size

    @property
    def vsize(self) -> int:
        return (self.weight + WITNESS_SCALE_FACTOR - 1) // WITNESS_SCALE_FACTOR

    def to_dict(self) -> dict[str, Any]:
        return {
            "txid": self.txid,
            "wtxid": self.wtxid,
            "version": self.version,
            "segwit": self.is_segwit,
            "size": self.size,
            "vsize": self.vsize,
            "weight": self.weight,
            "locktime": self.locktime,
            "inputs": [
                {
                    "prev_txid": txin.prev_txid_hex,
                    "prev_vout": txin.prev_vout,
                    "script_sig": txin.script_sig.hex(),
                    "sequence": txin.sequence,
                    "witness": [item.hex() for item in txin.witness],
                }
                for txin in self.inputs
            ],
            "outputs": [
                {"value_sats": txout.value_sats, "script_pubkey": txout.script_pubkey.hex()}
                for txout in self.outputs
            ],
        }


@dataclass(frozen=True)
class ExtractedPayload:
    """An ANCHOR message found in the transaction.

    index is the output index for output carriers and the input index for
    witness carriers (item then holds the witness item index). start/end
    are offsets into the raw transaction.
    """

    carrier: CarrierKind
    location: CarrierLocation
    index: int
    start: int
    end: int
    payload: AnchorPayload
    item: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "carrier": self.carrier.value,
            "location": self.location.value,
            "index": self.index,
            "item": self.item,
            "start": self.start,
            "end": self.end,
            "payload": self.payload.to_dict(),
        }


@dataclass(frozen=True)
class WalkResult:
    """Outcome of a walk: segments and payloads, complete or partial."""

    raw: bytes
    segments: tuple[HexSegment, ...] = ()
    payloads: tuple[ExtractedPayload, ...] = ()
    transaction: ParsedTransaction | None = None
    error: AnchorCodecError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "transaction": self.transaction.to_dict() if self.transaction else None,
            "segments": [
                {
                    "start": s.start,
                    "end": s.end,
                    "category": s.category.value,
                    "label": s.label,
                    "hex": s.hex(self.raw),
                }
                for s in self.segments
            ],
            "payloads": [p.to_dict() for p in self.payloads],
            "error": str(self.error) if self.error else None,
        }


def decode_hex(raw_hex: str) -> bytes:
    """Hex string to bytes; surrounding whitespace and upper case are accepted.

    Whitespace inside the string is rejected like any other non-hex character.
    """
    if not isinstance(raw_hex, str):
        raise MalformedHexError(f"Expected a hex string, got {type(raw_hex).__name__}")
    text = raw_hex.strip()
    if len(text) % 2:
        raise MalformedHexError(f"Hex has odd length ({len(text)} chars)")
    if not _HEX_RE.match(text):
        raise MalformedHexError(f"Invalid hex: non-hex character in {text[:16]!r}")
    return bytes.fromhex(text)


class _Walker:
    """Cursor plus the segments and payloads collected so far."""

    def __init__(self, raw: bytes) -> None:
        self.raw = raw
        self.reader = ByteReader(raw)
        self.segments: list[HexSegment] = []
        self.payloads: list[ExtractedPayload] = []

    def _add(self, start: int, end: int, category: SegmentCategory, label: str) -> None:
        if end > start:
            self.segments.append(HexSegment(start, end, category, label))

    def fixed(self, size: int, category: SegmentCategory, label: str) -> bytes:
        start = self.reader.pos
        data = self.reader.read(size)
        self._add(start, self.reader.pos, category, label)
        return data

    def uint(self, size: int, category: SegmentCategory, label: str) -> int:
        return int.from_bytes(self.fixed(size, category, label), "little")

    def compact_size(self, category: SegmentCategory, label: str) -> int:
        """Read a compact-size; `label` may reference the value as {n}."""
        start = self.reader.pos
        value = self.reader.compact_size()
        self._add(start, self.reader.pos, category, label.format(n=value))
        return value

    def carrier(
        self,
        size: int,
        category: SegmentCategory,
        label: str,
        location: CarrierLocation,
        index: int,
        item: int | None = None,
    ) -> bytes:
        """Read a script or witness item and split out any ANCHOR payload."""
        start = self.reader.pos
        data = self.reader.read(size)
        end = self.reader.pos

        kind, found = detect(CarrierContext(location, data))
        payload = None
        if found is not None:
            try:
                payload = decode_payload(found.data)
            except AnchorCodecError as e:
                log.warning("%s: %s carrier matched but payload does not decode: %s",
                            label, kind, e)

        if payload is None:
            self._add(start, end, category, label)
            return data

        payload_start, payload_end = start + found.start, start + found.end
        self._add(start, payload_start, category, label)
        self._add(payload_start, payload_end, SegmentCategory.ANCHOR_PAYLOAD,
                  f"{label.split(':')[0]}: ANCHOR Payload ({kind})")
        self._add(payload_end, end, category, f"{label} (cont.)")
        self.payloads.append(ExtractedPayload(
            carrier=kind,
            location=location,
            index=index,
            start=payload_start,
            end=payload_end,
            payload=payload,
            item=item,
        ))
        log.debug("Found %s payload (kind %d) at %d..%d",
                  kind, payload.kind, payload_start, payload_end)
        return data

    def walk(self) -> ParsedTransaction:
        S, I, O, W = (SegmentCategory.STRUCTURE, SegmentCategory.INPUT,
                      SegmentCategory.OUTPUT, SegmentCategory.WITNESS)

        version = self.uint(VERSION_SIZE, S, "Version")

        is_segwit = self.reader.peek(len(SEGWIT_MARKER)) == SEGWIT_MARKER
        if is_segwit:
            self.fixed(len(SEGWIT_MARKER), S, "SegWit Marker/Flag")

        inputs = []
        n_inputs = self.compact_size(S, "Input Count: {n}")
        for i in range(n_inputs):
            prev_txid = self.fixed(TXID_SIZE, I, f"Input {i}: Previous TXID")
            prev_vout = self.uint(VOUT_SIZE, I, f"Input {i}: Vout")
            script_len = self.compact_size(I, f"Input {i}: Script Length")
            script_sig = self.fixed(script_len, I, f"Input {i}: ScriptSig")
            sequence = self.uint(SEQUENCE_SIZE, I, f"Input {i}: Sequence")
            inputs.append(ParsedInput(prev_txid, prev_vout, script_sig, sequence))

        outputs = []
        n_outputs = self.compact_size(S, "Output Count: {n}")
        for i in range(n_outputs):
            value = self.uint(VALUE_SIZE, O, f"Output {i}: Value")
            script_len = self.compact_size(O, f"Output {i}: Script Length")
            script = self.carrier(script_len, O, f"Output {i}: ScriptPubKey",
                                  CarrierLocation.OUTPUT, i)
            outputs.append(ParsedOutput(value, script))

        if is_segwit:
            for i, txin in enumerate(inputs):
                n_items = self.compact_size(W, f"Witness {i}: Item Count")
                items = []
                for j in range(n_items):
                    item_len = self.compact_size(W, f"Witness {i}.{j}: Length")
                    items.append(self.carrier(item_len, W, f"Witness {i}.{j}: Data",
                                              CarrierLocation.WITNESS, i, j))
                inputs[i] = ParsedInput(txin.prev_txid, txin.prev_vout,
                                        txin.script_sig, txin.sequence, tuple(items))

        locktime = self.uint(LOCKTIME_SIZE, S, "Locktime")

        if self.reader.remaining:
            log.warning("%d trailing bytes after locktime", self.reader.remaining)
            self._add(self.reader.pos, len(self.raw), S, "Trailing Data")
            self.reader.pos = len(self.raw)

        return ParsedTransaction(version, is_segwit, tuple(inputs), tuple(outputs), locktime)


def walk_bytes(raw: bytes) -> WalkResult:
    """Walk an already-decoded transaction."""
    raw = bytes(raw)
    walker = _Walker(raw)
    try:
        tx = walker.walk()
    except TruncatedInputError as e:
        error = TruncatedTransactionError(
            f"Transaction truncated at offset {walker.reader.pos}: {e}",
            offset=walker.reader.pos,
        )
        log.debug("Walk stopped early: %s", error)
        return WalkResult(raw, tuple(walker.segments), tuple(walker.payloads), error=error)
    return WalkResult(raw, tuple(walker.segments), tuple(walker.payloads), transaction=tx)


def walk_transaction(raw_hex: str) -> WalkResult:
    """Walk a raw transaction given as hex.

    Never raises for bad input: malformed hex gives an empty result with
    the error set, truncation gives the segments read so far.
    """
    try:
        raw = decode_hex(raw_hex)
    except MalformedHexError as e:
        return WalkResult(b"", error=e)
    return walk_bytes(raw)


def parse_transaction(raw_hex: str) -> ParsedTransaction:
    """Like walk_transaction but raises on any error and returns only the structure."""
    result = walk_transaction(raw_hex)
    if result.error is not None:
        raise result.error
    return result.transaction


def find_payloads(raw_hex: str) -> tuple[ExtractedPayload, ...]:
    """ANCHOR payloads in a transaction, including those found before a truncation."""
    return walk_transaction(raw_hex).payloads
