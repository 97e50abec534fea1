"""Operation record parser for intercepted mainframe changes.

Completion payloads are a stream of length-prefixed fields in the endpoint's
character encoding:

    scalar  = length(3 hex) + value
    addinfo = count(3 hex) + triple*
    triple  = type(2 hex) + kwlen(2 hex) + keyword + vallen(4 hex) + value

Each operation family has its own fixed leading fields. Lengths count bytes
of the encoded payload, so parsing happens on bytes and each value is decoded
on its own.
"""
from __future__ import annotations
from enum import Enum
from typing import Any, Optional

from .codec import decode_hex_length
from .exceptions import CodecError, RecordParseError
from .registry import DEFAULT_COLUMN_SEPARATOR, EndpointConfig

ITEM_DELIMITER = "\x01"
COLUMN_DELIMITER = "\x02"

ATTR_USER_ID = "USER_ID"
ATTR_GROUP_ID = "GROUP_ID"
ATTR_PASSWORD = "password"
ATTR_USER_STATUS = "User_STA"
ATTR_USER_ADMIN = "USER_ADMIN"
ATTR_SUSPENDED = "RU_SUSPENDED"
ATTR_LOCKED = "RU_LOCKED"
ATTR_DISABLED_FLAG = "disabled"
ATTR_LOCKED_FLAG = "locked"

# Account record fixed fields, in wire order
ACCOUNT_FIELDS = (
    "USER_ID",
    "USER_OE_PR",
    "UG_DEF",
    ATTR_PASSWORD,
    "PWD_LIFE",        # 1 permanent, 2 reset, 3 ignore
    ATTR_USER_STATUS,  # 1 revoke, 2 restore
    ATTR_USER_ADMIN,   # 1 user, 2 auditor, 3 admin, 4 both, 5 ignore
    "DEF_UG_ACT",      # 1 keep as regular, 2 drop, 3 ignore
)

GROUP_FIELDS = ("GROUP_ID", "GROUP_OE_PR", "GROUP_PR")

STATUS_KEYWORDS = frozenset({ATTR_SUSPENDED, ATTR_LOCKED})

# The agent sends keywords upper-cased; schemas store these in camel case
ACCOUNT_CANONICAL_KEYWORDS = {
    "DIRECTPERMISSIONS": "directPermissions",
    "INDIRECTPERMISSIONS": "indirectPermissions",
}
GROUP_CANONICAL_KEYWORDS = {
    "DIRECTPERMISSIONS": "directPermissions",
}


class OperationFamily(Enum):
    PASSWORD = "password"
    ACCOUNT = "account"
    CONNECTION = "connection"
    GROUP = "group"


class OperationCode(str, Enum):
    PASSWORD_CHANGED = "PA"
    ACCOUNT_ADD = "AA"
    ACCOUNT_UPDATE = "UA"
    ACCOUNT_DELETE = "DA"
    ACCOUNT_VERIFY = "VA"
    CONNECTION_ADD = "AC"
    CONNECTION_UPDATE = "UC"
    CONNECTION_DELETE = "DC"
    GROUP_ADD = "AB"
    GROUP_UPDATE = "UB"
    GROUP_DELETE = "DB"

    @property
    def family(self) -> OperationFamily:
        return _FAMILIES[self]

    @classmethod
    def parse(cls, code: str) -> Optional["OperationCode"]:
        """Return the member for a 2-character code, or None if unknown."""
        try:
            return cls(code)
        except ValueError:
            return None


_FAMILIES = {
    OperationCode.PASSWORD_CHANGED: OperationFamily.PASSWORD,
    OperationCode.ACCOUNT_ADD: OperationFamily.ACCOUNT,
    OperationCode.ACCOUNT_UPDATE: OperationFamily.ACCOUNT,
    OperationCode.ACCOUNT_DELETE: OperationFamily.ACCOUNT,
    OperationCode.ACCOUNT_VERIFY: OperationFamily.ACCOUNT,
    OperationCode.CONNECTION_ADD: OperationFamily.CONNECTION,
    OperationCode.CONNECTION_UPDATE: OperationFamily.CONNECTION,
    OperationCode.CONNECTION_DELETE: OperationFamily.CONNECTION,
    OperationCode.GROUP_ADD: OperationFamily.GROUP,
    OperationCode.GROUP_UPDATE: OperationFamily.GROUP,
    OperationCode.GROUP_DELETE: OperationFamily.GROUP,
}


class FieldReader:
    """Cursor over an encoded payload that decodes length-prefixed fields."""

    def __init__(self, payload: bytes, encoding: str, operation: str = ""):
        self.payload = payload
        self.encoding = encoding
        self.operation = operation
        self.offset = 0

    @classmethod
    def from_text(cls, text: str, encoding: str, operation: str = "") -> "FieldReader":
        try:
            payload = text.encode(encoding)
        except (UnicodeEncodeError, LookupError) as e:
            raise RecordParseError(f"Payload cannot be encoded as {encoding}: {e}", operation)
        return cls(payload, encoding, operation)

    def _take(self, size: int) -> bytes:
        end = self.offset + size
        if size < 0 or end > len(self.payload):
            raise RecordParseError(
                f"Truncated payload: need {size} byte(s), {len(self.payload) - self.offset} left",
                self.operation,
                self.offset,
            )
        chunk = self.payload[self.offset:end]
        self.offset = end
        return chunk

    def skip(self, size: int) -> None:
        self._take(size)

    def length(self, width: int) -> int:
        start = self.offset
        raw = self._take(width)
        try:
            return decode_hex_length(raw)
        except CodecError as e:
            raise RecordParseError(str(e), self.operation, start) from e

    def text(self, size: int) -> str:
        return self._take(size).decode(self.encoding, errors="replace")

    def scalar(self) -> str:
        return self.text(self.length(3))

    def skip_scalar(self) -> None:
        self.skip(self.length(3))

    def addinfo(self) -> list[tuple[str, str]]:
        """Read the AddInfo section as ordered (keyword, value) pairs."""
        pairs = []
        count = self.length(3)
        for _ in range(count):
            self.skip(2)  # keyword type
            keyword = self.text(self.length(2))
            value = self.text(self.length(4))
            pairs.append((keyword, value))
        return pairs


def expand_multi_value(value: str, column_separator: Optional[str] = DEFAULT_COLUMN_SEPARATOR) -> list[str]:
    """Split a multi-valued AddInfo value into its ordered items.

    Column markers (0x02) inside an item become ``column_separator``; items
    are delimited by 0x01 and empty items are dropped.

        >>> expand_multi_value("a\\x01b\\x02c\\x01d", "#")
        ['a', 'b#c', 'd']
    """
    separator = column_separator if column_separator is not None else DEFAULT_COLUMN_SEPARATOR
    value = value.replace(COLUMN_DELIMITER, separator)
    return [item for item in value.split(ITEM_DELIMITER) if item]


def _canonical(keyword: str, table: dict[str, str]) -> str:
    return table.get(keyword.upper(), keyword)


def parse_account(payload: str, endpoint: EndpointConfig, operation: str = "") -> dict[str, Any]:
    """Parse an account record (AA/UA/DA/VA) into an attribute map."""
    reader = FieldReader.from_text(payload, endpoint.encoding, operation)
    attrs: dict[str, Any] = {}
    for name in ACCOUNT_FIELDS:
        attrs[name] = reader.scalar()

    admin_code = attrs[ATTR_USER_ADMIN]
    attrs[ATTR_USER_ADMIN] = endpoint.admin_role_labels.get(admin_code, admin_code)

    remaining = set(endpoint.account_attributes) - set(ACCOUNT_FIELDS)
    for keyword, value in reader.addinfo():
        keyword = _canonical(keyword, ACCOUNT_CANONICAL_KEYWORDS)
        if keyword.upper() in STATUS_KEYWORDS:
            attrs[keyword.upper()] = value
            continue
        if endpoint.is_multi_valued_account_attribute(keyword):
            attrs[keyword] = expand_multi_value(value, endpoint.column_separator)
        elif keyword in remaining:
            attrs[keyword] = value
        remaining.discard(keyword)
    return attrs


def parse_group(payload: str, endpoint: EndpointConfig, operation: str = "") -> dict[str, Any]:
    """Parse a group object record (AB/UB/DB) into an attribute map.

    Scalar AddInfo keywords are filtered against the group schema only when
    the endpoint declares one. RU_SUSPENDED and RU_LOCKED are always kept.
    """
    reader = FieldReader.from_text(payload, endpoint.encoding, operation)
    attrs: dict[str, Any] = {}
    for name in GROUP_FIELDS:
        attrs[name] = reader.scalar()

    for keyword, value in reader.addinfo():
        keyword = _canonical(keyword, GROUP_CANONICAL_KEYWORDS)
        if keyword.upper() in STATUS_KEYWORDS:
            attrs[keyword.upper()] = value
        elif endpoint.is_multi_valued_group_attribute(keyword):
            attrs[keyword] = expand_multi_value(value, endpoint.column_separator)
        elif not endpoint.group_attributes or keyword in endpoint.group_attributes:
            attrs[keyword] = value
    return attrs


def parse_connection(payload: str, endpoint: EndpointConfig, group_attribute: str,
                     operation: str = "") -> dict[str, Any]:
    """Parse a group membership record (AC/UC/DC): group name, then user id."""
    reader = FieldReader.from_text(payload, endpoint.encoding, operation)
    group = reader.scalar()
    user_id = reader.scalar()
    return {group_attribute: group, ATTR_USER_ID: user_id}


def parse_password(payload: str, endpoint: EndpointConfig, operation: str = "") -> dict[str, Any]:
    """Parse a password change record (PA): user id, two skipped fields, password."""
    reader = FieldReader.from_text(payload, endpoint.encoding, operation)
    user_id = reader.scalar()
    reader.skip_scalar()
    reader.skip_scalar()
    password = reader.scalar()
    return {ATTR_USER_ID: user_id, ATTR_PASSWORD: password}


def apply_account_status(attrs: dict[str, Any]) -> None:
    """Derive disabled/locked flags in place.

    RU_SUSPENDED wins when present (the endpoint supports lock); otherwise
    the user-status code drives disabled and locked is always false.
    """
    if ATTR_SUSPENDED in attrs:
        attrs[ATTR_DISABLED_FLAG] = attrs[ATTR_SUSPENDED] == "Y"
        attrs[ATTR_LOCKED_FLAG] = attrs.get(ATTR_LOCKED) == "Y"
    elif ATTR_USER_STATUS in attrs:
        attrs[ATTR_DISABLED_FLAG] = attrs[ATTR_USER_STATUS] == "1"
        attrs[ATTR_LOCKED_FLAG] = False
