"""
Bitcoin wire and script constants used by the ANCHOR codec.

Compact-size integers:
    value < 0xfd        -> 1 byte
    0xfd + uint16 LE    -> 3 bytes
    0xfe + uint32 LE    -> 5 bytes
    0xff + uint64 LE    -> 9 bytes

Script data pushes:
    0x00                -> empty push (OP_0 / OP_FALSE)
    0x01..0x4b          -> direct push of that many bytes
    0x4c <u8>           -> OP_PUSHDATA1
    0x4d <u16 LE>       -> OP_PUSHDATA2
    0x4e <u32 LE>       -> OP_PUSHDATA4
"""

# Compact-size prefixes
COMPACT_SIZE_U16 = 0xFD
COMPACT_SIZE_U32 = 0xFE
COMPACT_SIZE_U64 = 0xFF

# Push opcodes
OP_0 = 0x00
OP_FALSE = OP_0
MAX_DIRECT_PUSH = 0x4B  # 75
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E

# Other opcodes the carriers need
OP_1 = 0x51
OP_TRUE = OP_1
OP_IF = 0x63
OP_ENDIF = 0x68
OP_RETURN = 0x6A
OP_DROP = 0x75
OP_CHECKMULTISIG = 0xAE

# Taproot annex marker (BIP-341)
ANNEX_TAG = 0x50

# Segwit marker + flag following the version field (BIP-144)
SEGWIT_MARKER = b"\x00\x01"

# Fixed transaction field widths
VERSION_SIZE = 4
TXID_SIZE = 32
VOUT_SIZE = 4
SEQUENCE_SIZE = 4
VALUE_SIZE = 8
LOCKTIME_SIZE = 4

# Push length widths keyed by PUSHDATA opcode
PUSHDATA_WIDTHS = {
    OP_PUSHDATA1: 1,
    OP_PUSHDATA2: 2,
    OP_PUSHDATA4: 4,
}

# Readable names for the opcodes carriers emit (used in token listings)
OPCODE_NAMES = {
    OP_0: "OP_0",
    OP_1: "OP_1",
    OP_IF: "OP_IF",
    OP_ENDIF: "OP_ENDIF",
    OP_RETURN: "OP_RETURN",
    OP_DROP: "OP_DROP",
    OP_CHECKMULTISIG: "OP_CHECKMULTISIG",
}


def is_push_opcode(opcode: int) -> bool:
    """True for OP_0, direct pushes and the three PUSHDATA opcodes."""
    return 0 <= opcode <= OP_PUSHDATA4
