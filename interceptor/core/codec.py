"""Wire codec for the connector gateway protocol.

Every message on the wire is plain text framed by a length prefix:

    "a " + <8 hex digits: body length> + <body>

Inside bodies, variable-length fields are preceded by fixed-width uppercase
hexadecimal counts (1, 2, 3, 4 or 8 digits depending on the field).

Usage:
    >>> encode_hex_length(26, 3)
    '01A'
    >>> decode_hex_length("01A")
    26
    >>> frame("S123")
    'a 00000004S123'
"""
from __future__ import annotations
from typing import Optional

from .exceptions import CodecError

ENVELOPE_MARKER = "a "
ENVELOPE_LENGTH_WIDTH = 8
ENVELOPE_HEADER_SIZE = len(ENVELOPE_MARKER) + ENVELOPE_LENGTH_WIDTH

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def encode_hex_length(value: int, width: int) -> str:
    """Render a non-negative integer as a zero-padded uppercase hex string.

    Args:
        value: Integer to encode
        width: Exact number of hex digits in the output

    Returns:
        Hex string of exactly ``width`` characters

    Raises:
        CodecError: If value is negative or needs more than ``width`` digits
    """
    if width < 1:
        raise CodecError(f"Invalid hex field width: {width}")
    if value < 0:
        raise CodecError(f"Negative length {value} cannot be encoded")
    if value >= 16 ** width:
        raise CodecError(f"Length {value} does not fit in {width} hex digit(s)")
    return format(value, f"0{width}X")


def decode_hex_length(text: str | bytes) -> int:
    """Parse a fixed-width hex length field.

    Accepts ``bytes`` so record parsers can hand over raw payload slices.

    Raises:
        CodecError: If the field is empty or contains non-hex characters
    """
    if isinstance(text, (bytes, bytearray)):
        text = bytes(text).decode("ascii", errors="replace")
    if not text or any(char not in _HEX_DIGITS for char in text):
        raise CodecError(f"Invalid hex length field: {text!r}")
    return int(text, 16)


def frame(body: str | bytes) -> str | bytes:
    """Wrap a message body in the transport envelope.

    The length counts items of ``body`` as given: characters for ``str``,
    bytes for ``bytes``. The transport frames encoded bytes so the prefix
    always matches what is written to the socket.
    """
    prefix = ENVELOPE_MARKER + encode_hex_length(len(body), ENVELOPE_LENGTH_WIDTH)
    if isinstance(body, (bytes, bytearray)):
        return prefix.encode("ascii") + bytes(body)
    return prefix + body


def encoded_length(value: str, encoding: Optional[str] = None) -> int:
    """Length of ``value`` in characters, or in bytes once encoded when ``encoding`` is given.

    Raises:
        CodecError: If ``value`` cannot be encoded
    """
    if encoding is None:
        return len(value)
    try:
        return len(value.encode(encoding))
    except UnicodeEncodeError as e:
        raise CodecError(f"Value cannot be encoded as {encoding}: {e}") from e


def length_prefixed(value: str, width: int = 3, encoding: Optional[str] = None) -> str:
    """Return ``value`` preceded by its hex length (3 digits unless given).

    With ``encoding`` the length counts encoded bytes, as the receiving side does.
    """
    return encode_hex_length(encoded_length(value, encoding), width) + value
