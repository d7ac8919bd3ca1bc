"""
ANCHOR codec — encode, decode and locate ANCHOR messages in Bitcoin transactions.

Architecture:
    Payload:   magic "A11C0001" (4) + kind (1) + anchor count (1) + 9 bytes/anchor + body
    Carriers:  OP_RETURN, inscription envelope, stamps multisig, taproot annex, witness data
    Walker:    raw tx hex -> labeled byte segments + decoded payloads
"""

__version__ = "0.1.0"

ANCHOR_MAGIC = b"\xa1\x1c\x00\x01"
ANCHOR_MAGIC_HEX = "a11c0001"
ANCHOR_HEADER_SIZE = 6  # magic (4) + kind (1) + anchor count (1)
ANCHOR_REF_SIZE = 9  # txid prefix (8) + vout (1)
TXID_PREFIX_SIZE = 8
MAX_ANCHORS = 255  # count is a single byte

# Script limits
MAX_SCRIPT_ELEMENT_SIZE = 520  # consensus per-item stack element limit
MAX_OP_RETURN_PUSH = 0xFFFF  # largest length OP_PUSHDATA2 can express
STAMPS_CHUNK_SIZE = 33  # compressed pubkey length

# Inscription envelope
INSCRIPTION_PROTOCOL_ID = b"anchor"
INSCRIPTION_DEFAULT_CONTENT_TYPE = b"application/octet-stream"

# Node RPC defaults
RPC_DEFAULT_TIMEOUT_SECS = 30
