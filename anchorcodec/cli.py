"""
anchor-codec CLI — inspect transactions and encode/decode ANCHOR messages.

Commands:
  anchor-codec inspect - Walk a raw transaction and list segments and payloads
  anchor-codec decode  - Decode a bare ANCHOR payload
  anchor-codec encode  - Build a payload and wrap it in a carrier
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from pathlib import Path

CARRIER_CHOICES = ("op_return", "inscription", "stamps", "taproot_annex", "witness_data", "all")

# Segment hex longer than this is shortened in text output
_HEX_PREVIEW = 64


def _add_rpc_args(parser: argparse.ArgumentParser) -> None:
    """Add common Bitcoin RPC flags to a subparser.

    The RPC password is only read from BITCOIN_RPC_PASS, never from argv.
    """
    parser.add_argument("--rpc-url", help="Bitcoin RPC URL (or set BITCOIN_RPC_URL)")
    parser.add_argument("--rpc-user", help="Bitcoin RPC username (or set BITCOIN_RPC_USER)")


def _get_rpc(args: argparse.Namespace):
    """Build a BitcoinRPC from CLI flags or env vars."""
    from anchorcodec.rpc import BitcoinRPC

    url = getattr(args, "rpc_url", None) or os.environ.get("BITCOIN_RPC_URL", "")
    if not url:
        print(
            "Error: No Bitcoin RPC URL. Use --rpc-url or set BITCOIN_RPC_URL.",
            file=sys.stderr,
        )
        sys.exit(1)
    user = getattr(args, "rpc_user", None) or os.environ.get("BITCOIN_RPC_USER", "")
    password = os.environ.get("BITCOIN_RPC_PASS", "")
    return BitcoinRPC(url, user, password)


def _read_tx_hex(args: argparse.Namespace) -> str:
    """Transaction hex from --txid, a file, a literal argument or stdin."""
    if args.txid:
        from anchorcodec.rpc import BitcoinRPCError

        rpc = _get_rpc(args)
        try:
            return rpc.get_raw_transaction(args.txid)
        except (ValueError, BitcoinRPCError) as e:
            print(f"Error: Could not fetch {args.txid}: {e}", file=sys.stderr)
            sys.exit(1)

    source = args.source
    if source is None or source == "-":
        return sys.stdin.read()
    # os.path.isfile tolerates names too long to be paths, e.g. raw tx hex
    if os.path.isfile(source):
        return Path(source).read_text()
    return source


def _preview(hex_str: str) -> str:
    if len(hex_str) <= _HEX_PREVIEW:
        return hex_str
    return f"{hex_str[:_HEX_PREVIEW - 8]}...({len(hex_str) // 2} bytes)"


def _print_payload(payload) -> None:
    print(f"  kind:    {payload.kind} ({payload.kind_name})")
    if payload.is_root:
        print("  anchors: none (root message)")
    for i, anchor in enumerate(payload.anchors):
        role = "parent" if i == 0 else "ref"
        print(f"  anchor:  {anchor.txid_prefix.hex()}:{anchor.vout} ({role})")
    text = payload.body_text()
    if text is not None and text.isprintable():
        print(f"  body:    {text!r}")
    else:
        print(f"  body:    {payload.body.hex()} ({len(payload.body)} bytes)")


def cmd_inspect(args: argparse.Namespace) -> None:
    """Walk a raw transaction and show every labeled byte range."""
    from anchorcodec.walker import walk_transaction

    result = walk_transaction(_read_tx_hex(args))

    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
        if result.error:
            sys.exit(1)
        return

    tx = result.transaction
    if tx is not None:
        print(f"txid:   {tx.txid}")
        if tx.is_segwit:
            print(f"wtxid:  {tx.wtxid}")
        print(f"size:   {tx.size} bytes  vsize: {tx.vsize}  weight: {tx.weight}")
        print(f"inputs: {len(tx.inputs)}  outputs: {len(tx.outputs)}")
        print()

    for seg in result.segments:
        print(f"  {seg.start:>6}-{seg.end:<6} {seg.category.value:<13} "
              f"{seg.label:<40} {_preview(seg.hex(result.raw))}")

    if result.payloads:
        print(f"\nANCHOR payloads: {len(result.payloads)}")
    for found in result.payloads:
        where = f"output {found.index}" if found.item is None \
            else f"input {found.index} witness item {found.item}"
        print(f"\n{found.carrier.value} in {where} (bytes {found.start}..{found.end})")
        _print_payload(found.payload)

    if result.error:
        print(f"Error: {result.error}", file=sys.stderr)
        sys.exit(1)


def cmd_decode(args: argparse.Namespace) -> None:
    """Decode a bare ANCHOR payload given as hex."""
    from anchorcodec.errors import AnchorCodecError
    from anchorcodec.payload import decode_payload
    from anchorcodec.walker import decode_hex

    try:
        payload = decode_payload(decode_hex(args.payload_hex))
    except AnchorCodecError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps(payload.to_dict(), indent=2))
        return
    print("ANCHOR payload")
    _print_payload(payload)


def _parse_anchor(spec: str):
    """Parse TXID:VOUT into an AnchorRef."""
    from anchorcodec.payload import AnchorRef

    txid, sep, vout = spec.rpartition(":")
    if not sep:
        raise ValueError(f"Anchor must be TXID:VOUT, got {spec!r}")
    try:
        return AnchorRef.from_txid(txid, int(vout))
    except ValueError as e:
        raise ValueError(f"Bad anchor {spec!r}: {e}") from e


def cmd_encode(args: argparse.Namespace) -> None:
    """Encode a message and print the payload plus carrier bytes."""
    from anchorcodec import carriers
    from anchorcodec.payload import encode_payload

    try:
        anchors = [_parse_anchor(a) for a in args.anchor or []]
        if args.body_hex is not None:
            body = bytes.fromhex(args.body_hex)
        else:
            body = (args.text or "").encode("utf-8")
        payload = encode_payload(args.kind, anchors, body)

        wrapped = {}
        wanted = CARRIER_CHOICES[:-1] if args.carrier == "all" else (args.carrier,)
        for name in wanted:
            if name == "op_return":
                wrapped[name] = carriers.wrap_op_return(payload)
            elif name == "inscription":
                content_type = args.content_type or carriers.content_type_for_kind(args.kind)
                wrapped[name] = carriers.wrap_inscription(payload, content_type).script
            elif name == "stamps":
                wrapped[name] = carriers.wrap_stamps(payload)
            elif name == "taproot_annex":
                wrapped[name] = carriers.wrap_annex(payload)
            else:
                wrapped[name] = carriers.wrap_witness_data(payload)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.json:
        print(json.dumps({
            "payload": payload.hex(),
            "carriers": {name: data.hex() for name, data in wrapped.items()},
        }, indent=2))
        return

    print(f"payload: {payload.hex()} ({len(payload)} bytes)")
    for name, data in wrapped.items():
        print(f"{name}: {data.hex()}")


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(
        prog="anchor-codec",
        description="ANCHOR message codec and Bitcoin transaction inspector.",
    )
    from anchorcodec import __version__
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    sub = parser.add_subparsers(dest="command")

    # inspect
    p_inspect = sub.add_parser("inspect", help="Walk a raw transaction")
    p_inspect.add_argument(
        "source", nargs="?",
        help="Raw tx hex, a file containing it, or '-' for stdin (default: stdin)",
    )
    p_inspect.add_argument("--txid", help="Fetch the transaction from a node by txid")
    p_inspect.add_argument("--json", action="store_true", help="JSON output")
    _add_rpc_args(p_inspect)

    # decode
    p_decode = sub.add_parser("decode", help="Decode an ANCHOR payload")
    p_decode.add_argument("payload_hex", help="Payload hex, starting with a11c0001")
    p_decode.add_argument("--json", action="store_true", help="JSON output")

    # encode
    p_encode = sub.add_parser("encode", help="Encode an ANCHOR payload and carrier")
    p_encode.add_argument("--kind", type=int, default=1, help="Message kind 0-255 (default: 1, Text)")
    p_encode.add_argument(
        "--anchor", action="append", metavar="TXID:VOUT",
        help="Back-reference; repeat for several (first is the parent)",
    )
    body = p_encode.add_mutually_exclusive_group()
    body.add_argument("--text", help="UTF-8 body")
    body.add_argument("--body-hex", help="Raw body as hex")
    p_encode.add_argument(
        "--carrier", choices=CARRIER_CHOICES, default="op_return",
        help="Carrier to wrap the payload in (default: op_return)",
    )
    p_encode.add_argument("--content-type", help="Inscription content type (default: by kind)")
    p_encode.add_argument("--json", action="store_true", help="JSON output")

    args = parser.parse_args(argv)

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    if not args.command:
        print("anchor-codec — ANCHOR message codec")
        print()
        print("Usage:")
        print("  anchor-codec inspect <tx-hex | file | ->")
        print("  anchor-codec inspect --txid <txid> --rpc-url ...")
        print("  anchor-codec decode a11c000101006869")
        print("  anchor-codec encode --text hi [--anchor TXID:VOUT] [--carrier all]")
        print()
        print("Run 'anchor-codec <command> --help' for details on any command.")
        sys.exit(0)

    commands = {
        "inspect": cmd_inspect,
        "decode": cmd_decode,
        "encode": cmd_encode,
    }

    commands[args.command](args)


if __name__ == "__main__":
    main()
