"""Header layout, outbound message builders and inbound frame accessors.

Header layout (0-based offsets inside a body, after the envelope is stripped):

    [0]       message class ("S" session, "U" confirmation)
    [1:10]    SIID
    [10:16]   sequence id
    [16:21]   data-center id + application id + workstation id
    [21:29]   user field (blanks or "WSUSERID")
    [29]      marker ("T", "L" or blank)
    [30]      encryption type digit
    [31:33]   type / operation code
    [33:]     payload
"""
from __future__ import annotations

import secrets
import string
from dataclasses import dataclass
from typing import Optional

from .codec import decode_hex_length, encode_hex_length, encoded_length, length_prefixed
from .exceptions import ConfigError, CodecError, RecordParseError

SIID_LENGTH = 9
MIN_HEADER_LENGTH = 33
MARKER_OFFSET = 29
TYPE_CODE_SLICE = slice(31, 33)
LAST_CHUNK_OFFSET = 39
CHUNK_ECHO_SLICE = slice(10, 41)
RS_TRAILER_OFFSET = 48
PAYLOAD_OFFSET = 61

KEEPALIVE_MARKER = "KEEPALIVE_MESSAGE"
CONFIRMATION_CODE = "CC"
RECORD_START_CODE = "RS"
CONFIRMATION_USER = "WSUSERID"
BLANK_USER = " " * 8

TRANSACTION_ID = "SEIN"
TRANSACTION_ID_UTF8 = "SEIU"
ACTION_ID = "0000"
ADDINFO_VALUE_LENGTH_SIZE = "4"
PE2_VERSION = "PE2V03"
EXTENDED_BLOCK_MARKER = "PE2EX:"

_SIID_ALPHABET = string.ascii_uppercase + string.digits


def generate_siid() -> str:
    """Generate a fresh 9-character session/transaction identifier."""
    return "".join(secrets.choice(_SIID_ALPHABET) for _ in range(SIID_LENGTH))


@dataclass(frozen=True)
class HeaderIdentity:
    """Fixed-width identification fields stamped into every outbound header."""
    data_center_id: str = "1"
    app_id: str = "PE"
    workstation_id: str = "01"

    def __post_init__(self):
        for field_name, width in (("data_center_id", 1), ("app_id", 2), ("workstation_id", 2)):
            value = getattr(self, field_name)
            if len(value) != width:
                raise ConfigError(f"{field_name} must be exactly {width} character(s), got {value!r}")

    def render(self) -> str:
        return self.data_center_id + self.app_id + self.workstation_id


def _header(message_class: str, siid: str, sequence: str, identity: HeaderIdentity,
            user_field: str, marker: str, encryption_type: str, type_code: str) -> str:
    return (
        message_class + siid + sequence + identity.render() + user_field
        + marker + encryption_type + type_code
    )


def build_session_open(
    siid: str,
    identity: HeaderIdentity,
    encryption_type: str,
    *,
    mscs_name: str,
    mscs_type: str,
    mscs_admin: str,
    app_user: str,
    app_password: Optional[str],
    charset: str = "ISO-8859-1",
    disable_one_phase_aggregation: bool = False,
) -> str:
    """Build step 1 of the handshake: the session-open (RS001) body.

    The extended block carries the connector's own credentials so the agent
    can run one-phase aggregation; it is omitted when that is disabled.
    Every inner length counts bytes in ``charset``, the same unit as the
    envelope and the record parser.
    """
    rs_header = TRANSACTION_ID_UTF8 if charset.strip().upper() == "UTF-8" else TRANSACTION_ID
    rs_header += ACTION_ID
    rs_header += length_prefixed(mscs_name, encoding=charset)
    rs_header += length_prefixed(mscs_type, encoding=charset)
    rs_header += length_prefixed(mscs_admin, encoding=charset)
    rs_header += "000"
    # Hot path: one flag, switched off
    rs_header += "001" + "2"
    rs_header += ADDINFO_VALUE_LENGTH_SIZE
    rs_header += "0000000000" + "000"

    if not disable_one_phase_aggregation:
        rs_header += PE2_VERSION + EXTENDED_BLOCK_MARKER
        rs_header += encode_hex_length(2, 1)
        rs_header += length_prefixed(app_user, encoding=charset)
        rs_header += length_prefixed(app_password, encoding=charset) if app_password else "000"

    header = _header("S", siid, "000001", identity, BLANK_USER, "T", encryption_type, "RS001")
    return header + encode_hex_length(4 + encoded_length(rs_header, charset), 4) + rs_header


def build_init_vector(siid: str, identity: HeaderIdentity, encryption_type: str) -> str:
    """Handshake step 2 (IV)."""
    return _header("S", siid, "000002", identity, BLANK_USER, "T", encryption_type, "IV")


def build_finish(siid: str, identity: HeaderIdentity, encryption_type: str) -> str:
    """Handshake step 3 (FF); the gateway does not answer it."""
    return _header("S", siid, "000003", identity, BLANK_USER, "L", encryption_type, "FF")


def build_record_confirmation(siid: str, identity: HeaderIdentity, encryption_type: str) -> str:
    return _header("U", siid, "000001", identity, CONFIRMATION_USER, "L", encryption_type,
                   CONFIRMATION_CODE)


def build_chunk_confirmation(interception: str) -> str:
    """Echo the triggering frame's header block with a CC suffix.

    The agent holds back its next batch of interceptions until this arrives.
    """
    return interception[CHUNK_ECHO_SLICE] + CONFIRMATION_CODE


def handshake_reply_marker(encryption_type: str, type_code: str) -> str:
    return f"T{encryption_type}{type_code}"


@dataclass(frozen=True)
class InterceptionFrame:
    """Read-only view over a received body with fixed-offset accessors."""
    text: str

    def __len__(self) -> int:
        return len(self.text)

    @property
    def is_keepalive(self) -> bool:
        if KEEPALIVE_MARKER in self.text:
            return True
        return (
            len(self.text) > TYPE_CODE_SLICE.start
            and self.text[MARKER_OFFSET] == "L"
            and self.text[TYPE_CODE_SLICE.start] == "R"
        )

    @property
    def is_short(self) -> bool:
        return len(self.text) < MIN_HEADER_LENGTH

    @property
    def siid(self) -> str:
        return self.text[1:1 + SIID_LENGTH]

    @property
    def sequence(self) -> str:
        return self.text[10:16]

    @property
    def marker(self) -> str:
        return self.text[MARKER_OFFSET]

    @property
    def type_code(self) -> str:
        return self.text[TYPE_CODE_SLICE]

    @property
    def is_record_start(self) -> bool:
        return self.type_code == RECORD_START_CODE

    @property
    def is_chunk_final(self) -> bool:
        return len(self.text) > LAST_CHUNK_OFFSET and self.text[LAST_CHUNK_OFFSET] == "T"

    @property
    def needs_record_confirmation(self) -> bool:
        # "L" (last) and blank markers are final and carry no ack
        return self.marker not in ("L", " ")

    @property
    def payload(self) -> str:
        return self.text[PAYLOAD_OFFSET:]

    def managed_system(self) -> tuple[str, str]:
        """Return (type, name) from an RS frame trailer, upper-cased.

        The trailer carries the name first, then the type, each preceded by
        a 3-hex-digit length.

        Raises:
            RecordParseError: If the trailer is truncated or malformed
        """
        trailer = self.text[RS_TRAILER_OFFSET:]
        try:
            index = 0
            name_length = decode_hex_length(trailer[index:index + 3])
            index += 3
            name = trailer[index:index + name_length]
            index += name_length
            type_length = decode_hex_length(trailer[index:index + 3])
            index += 3
            mscs_type = trailer[index:index + type_length]
            index += type_length
        except CodecError as e:
            raise RecordParseError(f"Malformed RS trailer: {e}", RECORD_START_CODE) from e
        if index > len(trailer):
            raise RecordParseError("Truncated RS trailer", RECORD_START_CODE, len(trailer))
        return mscs_type.upper(), name.upper()
