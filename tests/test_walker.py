"""
Tests for the transaction walker.

Transactions are assembled byte by byte in this module so the walker is
never checked against its own serializer.
"""

from __future__ import annotations

import hashlib
import logging

import pytest

from anchorcodec import ANCHOR_MAGIC
from anchorcodec._wire import encode_compact_size
from anchorcodec.carriers import (
    CarrierKind,
    CarrierLocation,
    wrap_annex,
    wrap_inscription,
    wrap_op_return,
    wrap_stamps,
    wrap_witness_data,
)
from anchorcodec.errors import (
    MalformedHexError,
    TruncatedInputError,
    TruncatedTransactionError,
)
from anchorcodec.payload import AnchorPayload, AnchorRef, decode_payload, encode_payload
from anchorcodec.walker import (
    SegmentCategory,
    decode_hex,
    find_payloads,
    parse_transaction,
    walk_bytes,
    walk_transaction,
)

HI = bytes.fromhex("a11c000101006869")
REPLY = encode_payload(1, [AnchorRef(b"\x07" * 8, 1)], b"reply")
P2WPKH = bytes.fromhex("0014") + b"\x11" * 20
P2TR = bytes.fromhex("5120") + b"\x22" * 32

GENESIS_TX = (
    "01000000010000000000000000000000000000000000000000000000000000000000000000"
    "ffffffff4d04ffff001d0104455468652054696d65732030332f4a616e2f32303039204368"
    "616e63656c6c6f72206f6e206272696e6b206f66207365636f6e64206261696c6f757420"
    "666f722062616e6b73ffffffff0100f2052a01000000434104678afdb0fe5548271967f1"
    "a67130b7105cd6a828e03909a67962e0ea1f61deb649f6bc3f4cef38c4f35504e51ec112"
    "de5c384df7ba0b8d578a4c702b6bf11d5fac00000000"
)
GENESIS_TXID = "4a5e1e4baab89f3a32518a88c31bc87f618f76673e2cc77ab2127b7afdeda33b"


def _sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def make_input(txid=b"\x11" * 32, vout=0, script_sig=b"", sequence=0xFFFFFFFF) -> bytes:
    return (
        txid
        + vout.to_bytes(4, "little")
        + encode_compact_size(len(script_sig)) + script_sig
        + sequence.to_bytes(4, "little")
    )


def make_output(value: int, script: bytes) -> bytes:
    return value.to_bytes(8, "little") + encode_compact_size(len(script)) + script


def make_witness(items: list[bytes]) -> bytes:
    return encode_compact_size(len(items)) + b"".join(
        encode_compact_size(len(item)) + item for item in items
    )


def make_tx(inputs, outputs, witnesses=None, version=2, locktime=0) -> bytes:
    parts = [version.to_bytes(4, "little")]
    if witnesses is not None:
        parts.append(b"\x00\x01")
    parts.append(encode_compact_size(len(inputs)))
    parts.extend(inputs)
    parts.append(encode_compact_size(len(outputs)))
    parts.extend(outputs)
    if witnesses is not None:
        parts.extend(make_witness(w) for w in witnesses)
    parts.append(locktime.to_bytes(4, "little"))
    return b"".join(parts)


def assert_covers(result):
    """Segments are contiguous and concatenate to the raw bytes."""
    pos = 0
    for seg in result.segments:
        assert seg.start == pos, seg
        assert seg.end > seg.start, seg
        pos = seg.end
    assert b"".join(result.raw[s.start:s.end] for s in result.segments) == result.raw[:pos]


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def legacy_raw():
    """One input, a P2WPKH output and an OP_RETURN output carrying HI."""
    return make_tx(
        [make_input(script_sig=b"\x01\x02")],
        [make_output(1000, P2WPKH), make_output(0, wrap_op_return(HI))],
    )


@pytest.fixture
def segwit_parts():
    inputs = [make_input(), make_input(txid=b"\x22" * 32, vout=1)]
    outputs = [make_output(546, P2TR)]
    witnesses = [
        [b"\x01" * 64, wrap_inscription(HI, "text/plain").script, b"\xc0" + b"\x03" * 32],
        [wrap_witness_data(REPLY), b"\xc0" + b"\x04" * 32, wrap_annex(HI)],
    ]
    return inputs, outputs, witnesses


@pytest.fixture
def segwit_raw(segwit_parts):
    return make_tx(*segwit_parts)


# ---------------------------------------------------------------------------
# TestLegacyWalk
# ---------------------------------------------------------------------------

class TestLegacyWalk:
    """Walking a non-segwit transaction."""

    def test_labels(self, legacy_raw):
        result = walk_transaction(legacy_raw.hex())
        assert result.ok
        assert [s.label for s in result.segments] == [
            "Version",
            "Input Count: 1",
            "Input 0: Previous TXID",
            "Input 0: Vout",
            "Input 0: Script Length",
            "Input 0: ScriptSig",
            "Input 0: Sequence",
            "Output Count: 2",
            "Output 0: Value",
            "Output 0: Script Length",
            "Output 0: ScriptPubKey",
            "Output 1: Value",
            "Output 1: Script Length",
            "Output 1: ScriptPubKey",
            "Output 1: ANCHOR Payload (op_return)",
            "Locktime",
        ]

    def test_coverage(self, legacy_raw):
        result = walk_transaction(legacy_raw.hex())
        assert_covers(result)
        assert result.segments[-1].end == len(legacy_raw)

    def test_categories(self, legacy_raw):
        result = walk_transaction(legacy_raw.hex())
        by_label = {s.label: s.category for s in result.segments}
        assert by_label["Version"] is SegmentCategory.STRUCTURE
        assert by_label["Input 0: Vout"] is SegmentCategory.INPUT
        assert by_label["Output 0: Value"] is SegmentCategory.OUTPUT
        assert by_label["Output 1: ANCHOR Payload (op_return)"] is SegmentCategory.ANCHOR_PAYLOAD

    def test_payload(self, legacy_raw):
        result = walk_transaction(legacy_raw.hex())
        (found,) = result.payloads
        assert found.carrier is CarrierKind.OP_RETURN
        assert found.location is CarrierLocation.OUTPUT
        assert found.index == 1
        assert found.item is None
        assert legacy_raw[found.start:found.end] == HI
        assert found.payload == AnchorPayload(kind=1, anchors=(), body=b"hi")

    def test_op_return_split(self, legacy_raw):
        result = walk_transaction(legacy_raw.hex())
        labels = [s.label for s in result.segments]
        prefix = result.segments[labels.index("Output 1: ScriptPubKey")]
        payload = result.segments[labels.index("Output 1: ANCHOR Payload (op_return)")]
        assert prefix.hex(legacy_raw) == "6a08"
        assert payload.hex(legacy_raw) == "a11c000101006869"
        # payload decodes from offset 2 of the script
        assert decode_payload(bytes.fromhex("6a08a11c000101006869")[2:]).body == b"hi"

    def test_parsed_structure(self, legacy_raw):
        tx = parse_transaction(legacy_raw.hex())
        assert tx.version == 2
        assert not tx.is_segwit
        assert len(tx.inputs) == 1
        assert tx.inputs[0].script_sig == b"\x01\x02"
        assert tx.inputs[0].sequence == 0xFFFFFFFF
        assert tx.inputs[0].witness == ()
        assert [o.value_sats for o in tx.outputs] == [1000, 0]
        assert tx.outputs[1].script_pubkey == wrap_op_return(HI)
        assert tx.locktime == 0

    def test_serialize_roundtrip(self, legacy_raw):
        tx = parse_transaction(legacy_raw.hex())
        assert tx.serialize() == legacy_raw
        assert tx.serialize(include_witness=False) == legacy_raw

    def test_txid(self, legacy_raw):
        tx = parse_transaction(legacy_raw.hex())
        assert tx.txid == _sha256d(legacy_raw)[::-1].hex()
        assert tx.wtxid == tx.txid
        assert tx.size == len(legacy_raw)
        assert tx.weight == 4 * len(legacy_raw)
        assert tx.vsize == len(legacy_raw)

    def test_empty_script_sig_has_no_segment(self):
        raw = make_tx([make_input()], [make_output(1, P2TR)])
        labels = [s.label for s in walk_transaction(raw.hex()).segments]
        assert "Input 0: Script Length" in labels
        assert "Input 0: ScriptSig" not in labels

    def test_find_payloads(self, legacy_raw):
        (found,) = find_payloads(legacy_raw.hex())
        assert found.payload.body_text() == "hi"


# ---------------------------------------------------------------------------
# TestGenesis
# ---------------------------------------------------------------------------

class TestGenesis:
    """The genesis block coinbase as a known real transaction."""

    def test_txid(self):
        tx = parse_transaction(GENESIS_TX)
        assert tx.txid == GENESIS_TXID
        assert tx.version == 1

    def test_coinbase(self):
        tx = parse_transaction(GENESIS_TX)
        assert tx.inputs[0].is_coinbase
        assert tx.inputs[0].prev_txid_hex == "00" * 32
        assert tx.outputs[0].value_sats == 5_000_000_000
        assert b"The Times 03/Jan/2009" in tx.inputs[0].script_sig

    def test_no_payloads(self):
        result = walk_transaction(GENESIS_TX)
        assert result.ok
        assert result.payloads == ()
        assert_covers(result)
        assert result.segments[-1].end == len(GENESIS_TX) // 2


# ---------------------------------------------------------------------------
# TestCompactCounts
# ---------------------------------------------------------------------------

class TestCompactCounts:
    """Counts use full compact-size encoding."""

    def test_260_outputs(self):
        raw = make_tx([make_input()], [make_output(i, b"\x51") for i in range(260)])
        result = walk_transaction(raw.hex())
        assert result.ok
        count = next(s for s in result.segments if s.label.startswith("Output Count"))
        assert count.label == "Output Count: 260"
        assert count.hex(raw) == "fd0401"
        assert len(result.transaction.outputs) == 260
        assert result.transaction.outputs[259].value_sats == 259
        assert_covers(result)

    def test_large_script_length(self):
        script = wrap_op_return(REPLY + b"x" * 300)
        raw = make_tx([make_input()], [make_output(0, script)])
        result = walk_transaction(raw.hex())
        length = next(s for s in result.segments if s.label == "Output 0: Script Length")
        assert length.hex(raw) == "fd" + len(script).to_bytes(2, "little").hex()
        (found,) = result.payloads
        assert found.payload.body == b"reply" + b"x" * 300


# ---------------------------------------------------------------------------
# TestSegwitWalk
# ---------------------------------------------------------------------------

class TestSegwitWalk:
    """Walking a segwit transaction with witness carriers."""

    def test_marker_segment(self, segwit_raw):
        result = walk_transaction(segwit_raw.hex())
        marker = result.segments[1]
        assert marker.label == "SegWit Marker/Flag"
        assert marker.category is SegmentCategory.STRUCTURE
        assert marker.hex(segwit_raw) == "0001"

    def test_coverage(self, segwit_raw):
        result = walk_transaction(segwit_raw.hex())
        assert result.ok
        assert_covers(result)
        assert result.segments[-1].end == len(segwit_raw)
        assert result.segments[-1].label == "Locktime"

    def test_witness_labels(self, segwit_raw):
        labels = [s.label for s in walk_transaction(segwit_raw.hex()).segments]
        assert "Witness 0: Item Count" in labels
        assert "Witness 0.0: Length" in labels
        assert "Witness 0.0: Data" in labels
        assert "Witness 1.2: ANCHOR Payload (taproot_annex)" in labels
        start = labels.index("Witness 0.1: Data")
        assert labels[start:start + 3] == [
            "Witness 0.1: Data",
            "Witness 0.1: ANCHOR Payload (inscription)",
            "Witness 0.1: Data (cont.)",
        ]

    def test_payloads(self, segwit_raw):
        result = walk_transaction(segwit_raw.hex())
        found = [(p.carrier, p.index, p.item) for p in result.payloads]
        assert found == [
            (CarrierKind.INSCRIPTION, 0, 1),
            (CarrierKind.WITNESS_DATA, 1, 0),
            (CarrierKind.TAPROOT_ANNEX, 1, 2),
        ]
        assert all(p.location is CarrierLocation.WITNESS for p in result.payloads)
        assert result.payloads[0].payload.body == b"hi"
        assert result.payloads[1].payload.canonical_parent == AnchorRef(b"\x07" * 8, 1)
        for p in result.payloads:
            assert segwit_raw[p.start:p.end] in (HI, REPLY)

    def test_witness_parsed(self, segwit_parts, segwit_raw):
        _inputs, _outputs, witnesses = segwit_parts
        tx = parse_transaction(segwit_raw.hex())
        assert tx.is_segwit
        assert [list(i.witness) for i in tx.inputs] == witnesses

    def test_txid_excludes_witness(self, segwit_parts, segwit_raw):
        inputs, outputs, witnesses = segwit_parts
        stripped = make_tx(inputs, outputs)
        tx = parse_transaction(segwit_raw.hex())
        assert tx.txid == _sha256d(stripped)[::-1].hex()
        assert tx.wtxid == _sha256d(segwit_raw)[::-1].hex()
        assert tx.serialize() == segwit_raw
        assert tx.serialize(include_witness=False) == stripped

    def test_weight(self, segwit_parts, segwit_raw):
        inputs, outputs, _witnesses = segwit_parts
        base = len(make_tx(inputs, outputs))
        tx = parse_transaction(segwit_raw.hex())
        assert tx.size == len(segwit_raw)
        assert tx.weight == 3 * base + len(segwit_raw)
        assert tx.vsize == -(-tx.weight // 4)
        assert tx.vsize < tx.size

    def test_empty_witness_stack(self):
        raw = make_tx([make_input(), make_input()], [make_output(1, P2TR)],
                      witnesses=[[], [b"\x01" * 64]])
        result = walk_transaction(raw.hex())
        assert result.ok
        assert result.transaction.inputs[0].witness == ()
        assert_covers(result)


# ---------------------------------------------------------------------------
# TestStampsOutput
# ---------------------------------------------------------------------------

class TestStampsOutput:
    """A stamps multisig output inside a transaction."""

    def test_split(self):
        raw = make_tx([make_input()], [make_output(5430, wrap_stamps(HI))])
        result = walk_transaction(raw.hex())
        labels = [s.label for s in result.segments]
        start = labels.index("Output 0: ScriptPubKey")
        assert labels[start:start + 3] == [
            "Output 0: ScriptPubKey",
            "Output 0: ANCHOR Payload (stamps)",
            "Output 0: ScriptPubKey (cont.)",
        ]
        assert result.segments[start].hex(raw) == "5121"
        assert result.segments[start + 1].hex(raw).startswith(HI.hex())
        assert result.segments[start + 2].hex(raw) == "51ae"
        (found,) = result.payloads
        assert found.carrier is CarrierKind.STAMPS
        assert found.payload == decode_payload(HI)
        assert_covers(result)

    def test_reply_with_zero_vout(self):
        parent = AnchorRef(b"\x01" * 7 + b"\x00", 0)
        payload = encode_payload(1, [parent], b"")
        raw = make_tx([make_input()], [make_output(5430, wrap_stamps(payload))])
        (found,) = walk_transaction(raw.hex()).payloads
        assert found.payload.anchors == (parent,)
        assert found.payload.body == b""


# ---------------------------------------------------------------------------
# TestErrors
# ---------------------------------------------------------------------------

class TestErrors:
    """Malformed and truncated input."""

    @pytest.mark.parametrize("bad", ["abc", "zz", "0g", "01 02", "0200  0000", "02\t00", "0200\n0000"])
    def test_malformed_hex(self, bad):
        result = walk_transaction(bad)
        assert isinstance(result.error, MalformedHexError)
        assert result.segments == ()
        assert result.transaction is None

    def test_parse_malformed_raises(self):
        with pytest.raises(MalformedHexError, match="odd length"):
            parse_transaction("abc")

    def test_decode_hex_not_string(self):
        with pytest.raises(MalformedHexError, match="hex string"):
            decode_hex(None)

    def test_whitespace_and_case(self, legacy_raw):
        result = walk_transaction("  " + legacy_raw.hex().upper() + "\n")
        assert result.ok
        assert result.raw == legacy_raw

    def test_inner_whitespace_rejected(self, legacy_raw):
        text = legacy_raw.hex()
        result = walk_transaction(text[:8] + "  " + text[8:])
        assert isinstance(result.error, MalformedHexError)
        assert result.transaction is None

    def test_truncated_locktime(self, legacy_raw):
        result = walk_transaction(legacy_raw[:-2].hex())
        assert isinstance(result.error, TruncatedTransactionError)
        assert isinstance(result.error, TruncatedInputError)
        assert result.error.offset == len(legacy_raw) - 4
        assert result.transaction is None
        assert result.segments[-1].label == "Output 1: ANCHOR Payload (op_return)"
        assert len(result.payloads) == 1
        assert_covers(result)

    def test_truncated_script(self, legacy_raw):
        cut = legacy_raw[:95]
        result = walk_transaction(cut.hex())
        assert isinstance(result.error, TruncatedTransactionError)
        assert result.segments[-1].label == "Output 1: Script Length"
        assert result.payloads == ()

    def test_parse_truncated_raises(self, legacy_raw):
        with pytest.raises(TruncatedTransactionError, match="truncated"):
            parse_transaction(legacy_raw[:10].hex())

    def test_empty_input(self):
        result = walk_transaction("")
        assert isinstance(result.error, TruncatedTransactionError)
        assert result.segments == ()

    def test_trailing_bytes(self, legacy_raw, caplog):
        with caplog.at_level(logging.WARNING, logger="anchorcodec.walker"):
            result = walk_transaction((legacy_raw + b"\xde\xad").hex())
        assert result.ok
        last = result.segments[-1]
        assert last.label == "Trailing Data"
        assert last.category is SegmentCategory.STRUCTURE
        assert last.hex(result.raw) == "dead"
        assert "2 trailing bytes" in caplog.text
        assert_covers(result)

    def test_carrier_with_undecodable_payload(self, caplog):
        bad = ANCHOR_MAGIC + b"\x01\x05"  # declares 5 anchors, has none
        raw = make_tx([make_input()], [make_output(0, wrap_op_return(bad))])
        with caplog.at_level(logging.WARNING, logger="anchorcodec.walker"):
            result = walk_transaction(raw.hex())
        assert result.ok
        assert result.payloads == ()
        labels = [s.label for s in result.segments]
        assert "Output 0: ScriptPubKey" in labels
        assert not any("ANCHOR Payload" in label for label in labels)
        assert "does not decode" in caplog.text
        assert_covers(result)


# ---------------------------------------------------------------------------
# TestToDict
# ---------------------------------------------------------------------------

class TestToDict:
    """JSON-ready output of a walk."""

    def test_walk_result_dict(self, legacy_raw):
        data = walk_bytes(legacy_raw).to_dict()
        assert data["error"] is None
        assert data["segments"][0] == {
            "start": 0,
            "end": 4,
            "category": "Structure",
            "label": "Version",
            "hex": "02000000",
        }
        assert data["payloads"][0]["carrier"] == "op_return"
        assert data["payloads"][0]["payload"]["body_text"] == "hi"
        assert data["transaction"]["outputs"][0]["value_sats"] == 1000

    def test_error_dict(self):
        data = walk_transaction("abc").to_dict()
        assert data["transaction"] is None
        assert data["segments"] == []
        assert "odd length" in data["error"]
