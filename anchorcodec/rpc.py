"""
Node RPC adapter — fetch raw transactions from a Bitcoin node for the walker.

Zero external dependencies — uses stdlib urllib.request for Bitcoin JSON-RPC.
"""

from __future__ import annotations

import json
import logging
import os
import re
import urllib.error
import urllib.request
from base64 import b64encode
from typing import Any

from anchorcodec import RPC_DEFAULT_TIMEOUT_SECS

log = logging.getLogger(__name__)

_TXID_RE = re.compile(r"^[0-9a-f]{64}$")


class BitcoinRPCError(Exception):
    """Error communicating with or returned by Bitcoin JSON-RPC."""


class BitcoinRPC:
    """Minimal Bitcoin JSON-RPC client using stdlib urllib.

    Usage:
        rpc = BitcoinRPC.from_env()
        raw_hex = rpc.get_raw_transaction(txid)
    """

    def __init__(
        self,
        url: str,
        user: str = "",
        password: str = "",
        timeout: float = RPC_DEFAULT_TIMEOUT_SECS,
    ) -> None:
        if not url:
            raise ValueError("Bitcoin RPC URL cannot be empty")
        self.url = url
        self.timeout = timeout
        self._user = user
        self._password = password
        self._id_counter = 0

    @classmethod
    def from_env(cls) -> BitcoinRPC:
        """Create RPC client from environment variables.

        Reads:
            BITCOIN_RPC_URL  — e.g. http://127.0.0.1:8332
            BITCOIN_RPC_USER — RPC username
            BITCOIN_RPC_PASS — RPC password
        """
        url = os.environ.get("BITCOIN_RPC_URL", "")
        user = os.environ.get("BITCOIN_RPC_USER", "")
        password = os.environ.get("BITCOIN_RPC_PASS", "")
        if not url:
            raise BitcoinRPCError(
                "BITCOIN_RPC_URL not set. "
                "Set it to your Bitcoin node's RPC endpoint "
                "(e.g. http://127.0.0.1:8332)."
            )
        return cls(url, user, password)

    def call(self, method: str, *params: Any) -> Any:
        """Execute a JSON-RPC call. Returns the 'result' field.

        Raises BitcoinRPCError on transport or RPC-level errors.
        """
        self._id_counter += 1
        payload = json.dumps({
            "jsonrpc": "1.0",
            "id": self._id_counter,
            "method": method,
            "params": list(params),
        }).encode()

        req = urllib.request.Request(
            self.url,
            data=payload,
            headers={"Content-Type": "application/json"},
            method="POST",
        )
        if self._user or self._password:
            creds = b64encode(f"{self._user}:{self._password}".encode()).decode()
            req.add_header("Authorization", f"Basic {creds}")

        log.debug("RPC %s (%d params) -> %s", method, len(params), self.url)
        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                body = json.loads(resp.read().decode())
        except urllib.error.HTTPError as e:
            # Bitcoin Core returns errors as HTTP 500 with JSON body
            try:
                body = json.loads(e.read().decode())
            except ValueError:
                raise BitcoinRPCError(f"HTTP {e.code}: {e.reason}") from e
        except urllib.error.URLError as e:
            raise BitcoinRPCError(f"Connection failed: {e.reason}") from e
        except (OSError, ValueError) as e:
            raise BitcoinRPCError(f"RPC call failed: {e}") from e

        if body.get("error"):
            err = body["error"]
            msg = err.get("message", str(err)) if isinstance(err, dict) else str(err)
            raise BitcoinRPCError(f"RPC error: {msg}")

        return body.get("result")

    def get_raw_transaction(self, txid: str) -> str:
        """Raw transaction hex for txid (needs -txindex for non-wallet txs)."""
        txid = txid.strip().lower() if isinstance(txid, str) else txid
        if not isinstance(txid, str) or not _TXID_RE.match(txid):
            raise ValueError(f"Invalid txid: must be 64 hex chars, got {txid!r}")
        raw_hex = self.call("getrawtransaction", txid, False)
        if not isinstance(raw_hex, str):
            raise BitcoinRPCError(
                f"getrawtransaction returned {type(raw_hex).__name__}, expected hex string"
            )
        return raw_hex
