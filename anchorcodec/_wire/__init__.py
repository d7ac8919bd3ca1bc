"""
Internal wire primitives — Bitcoin compact-size integers and script pushes.

Used by the payload codec, the carriers and the transaction walker. This is
an internal dependency — not a public API.
"""

from anchorcodec._wire.reader import (
    ByteReader, ScriptToken, iter_script, read_bytes, read_compact_size,
    read_push_length, read_uint, tokenize,
)
from anchorcodec._wire.writer import encode_compact_size, encode_push, encode_push_length
