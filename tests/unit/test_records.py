"""Tests for operation record parsing."""
import pytest

from interceptor.core.exceptions import RecordParseError
from interceptor.core.records import (
    ATTR_DISABLED_FLAG,
    ATTR_LOCKED_FLAG,
    OperationCode,
    OperationFamily,
    apply_account_status,
    expand_multi_value,
    parse_account,
    parse_connection,
    parse_group,
    parse_password,
)
from interceptor.core.registry import EndpointConfig
from tests.conftest import (
    account_payload,
    addinfo,
    connection_payload,
    group_payload,
    make_application,
    password_payload,
    scalar,
)


# ─────────────────────────────────────────────────────────────────────────────
# Operation codes
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize("code,family", [
    ("PA", OperationFamily.PASSWORD),
    ("AA", OperationFamily.ACCOUNT),
    ("VA", OperationFamily.ACCOUNT),
    ("DC", OperationFamily.CONNECTION),
    ("UB", OperationFamily.GROUP),
])
def test_operation_families(code, family):
    assert OperationCode.parse(code).family is family


def test_unknown_operation_code():
    assert OperationCode.parse("ZZ") is None


# ─────────────────────────────────────────────────────────────────────────────
# Multi-value expansion
# ─────────────────────────────────────────────────────────────────────────────
def test_expand_multi_value():
    assert expand_multi_value("a\x01b\x02c\x01d", "#") == ["a", "b#c", "d"]


def test_expand_multi_value_drops_empty_items():
    assert expand_multi_value("\x01a\x01\x01b\x01", "#") == ["a", "b"]


def test_expand_multi_value_default_separator():
    assert expand_multi_value("x\x02y", None) == ["x#y"]


# ─────────────────────────────────────────────────────────────────────────────
# Account records
# ─────────────────────────────────────────────────────────────────────────────
def test_parse_account_fixed_fields(endpoint):
    attrs = parse_account(account_payload("jdoe", password="s3cret"), endpoint, "AA")
    assert attrs["USER_ID"] == "jdoe"
    assert attrs["USER_OE_PR"] == "SALES"
    assert attrs["UG_DEF"] == "USERS"
    assert attrs["password"] == "s3cret"
    assert attrs["User_STA"] == "2"
    assert attrs["DEF_UG_ACT"] == "3"


def test_parse_account_translates_admin_role(endpoint):
    assert parse_account(account_payload(user_admin="3"), endpoint)["USER_ADMIN"] == "Administrator"


def test_parse_account_keeps_unmapped_admin_code(endpoint):
    assert parse_account(account_payload(user_admin="5"), endpoint)["USER_ADMIN"] == "5"


def test_parse_account_filters_unknown_scalar_keywords(endpoint):
    attrs = parse_account(account_payload(extra=[("NAME", "John Doe"), ("SHOESIZE", "44")]), endpoint)
    assert attrs["NAME"] == "John Doe"
    assert "SHOESIZE" not in attrs


def test_parse_account_accepts_known_keyword_once(endpoint):
    attrs = parse_account(account_payload(extra=[("OWNER", "first"), ("OWNER", "second")]), endpoint)
    assert attrs["OWNER"] == "first"


def test_parse_account_addinfo_cannot_override_fixed_fields(endpoint):
    attrs = parse_account(account_payload("jdoe", extra=[("USER_ID", "mallory")]), endpoint)
    assert attrs["USER_ID"] == "jdoe"


def test_parse_account_multi_valued(endpoint):
    attrs = parse_account(account_payload(extra=[("groups", "AUDIT\x01SYS1\x01")]), endpoint)
    assert attrs["groups"] == ["AUDIT", "SYS1"]


def test_parse_account_canonicalises_permission_keywords(endpoint):
    attrs = parse_account(account_payload(extra=[("DIRECTPERMISSIONS", "A\x02READ\x01B\x02ALTER")]), endpoint)
    assert attrs["directPermissions"] == ["A#READ", "B#ALTER"]


def test_parse_account_custom_column_separator():
    endpoint = EndpointConfig.from_application(make_application(multiColumnSeparator="|"))
    attrs = parse_account(account_payload(extra=[("directPermissions", "A\x02READ")]), endpoint)
    assert attrs["directPermissions"] == ["A|READ"]


def test_parse_account_status_keywords_always_kept(endpoint):
    attrs = parse_account(account_payload(extra=[("ru_suspended", "Y"), ("RU_LOCKED", "N")]), endpoint)
    assert attrs["RU_SUSPENDED"] == "Y"
    assert attrs["RU_LOCKED"] == "N"


def test_parse_account_truncated_payload(endpoint):
    payload = account_payload()[:-6]
    with pytest.raises(RecordParseError) as exc_info:
        parse_account(payload, endpoint, "AA")
    assert exc_info.value.operation == "AA"


def test_parse_account_malformed_length(endpoint):
    with pytest.raises(RecordParseError):
        parse_account("0X4jdoe", endpoint, "AA")


def test_parse_account_lengths_count_encoded_bytes():
    endpoint = EndpointConfig.from_application(make_application(characterSet="UTF-8"))
    name = "José"
    # "José" is 4 characters but 5 bytes in UTF-8
    payload = account_payload()[:-3] + "001" + "00" + "04NAME" + "0005" + name
    attrs = parse_account(payload, endpoint)
    assert attrs["NAME"] == name


# ─────────────────────────────────────────────────────────────────────────────
# Status flags
# ─────────────────────────────────────────────────────────────────────────────
def test_status_from_suspended_keyword():
    attrs = {"RU_SUSPENDED": "Y", "RU_LOCKED": "Y", "User_STA": "2"}
    apply_account_status(attrs)
    assert attrs[ATTR_DISABLED_FLAG] is True
    assert attrs[ATTR_LOCKED_FLAG] is True


def test_status_from_user_status():
    attrs = {"User_STA": "1"}
    apply_account_status(attrs)
    assert attrs[ATTR_DISABLED_FLAG] is True
    assert attrs[ATTR_LOCKED_FLAG] is False


def test_status_absent():
    attrs = {"USER_ID": "jdoe"}
    apply_account_status(attrs)
    assert ATTR_DISABLED_FLAG not in attrs
    assert ATTR_LOCKED_FLAG not in attrs


# ─────────────────────────────────────────────────────────────────────────────
# Group, connection and password records
# ─────────────────────────────────────────────────────────────────────────────
def test_parse_group(endpoint):
    attrs = parse_group(group_payload("AUDIT", extra=[
        ("SUPGROUP", "SYS1"),
        ("COLOUR", "red"),
        ("MEMBERS", "jdoe\x01asmith"),
    ]), endpoint, "AB")
    assert attrs["GROUP_ID"] == "AUDIT"
    assert attrs["GROUP_OE_PR"] == "SECOPS"
    assert attrs["GROUP_PR"] == "SYS1"
    assert attrs["SUPGROUP"] == "SYS1"
    assert attrs["MEMBERS"] == ["jdoe", "asmith"]
    assert "COLOUR" not in attrs


def test_parse_group_status_keywords_always_kept(endpoint):
    attrs = parse_group(group_payload(extra=[
        ("RU_SUSPENDED", "Y"),
        ("ru_locked", "N"),
    ]), endpoint, "UB")
    assert attrs["RU_SUSPENDED"] == "Y"
    assert attrs["RU_LOCKED"] == "N"


def test_parse_group_without_group_schema_keeps_scalars():
    endpoint = EndpointConfig.from_application(make_application(group_schema=False))
    attrs = parse_group(group_payload(extra=[("COLOUR", "red")]), endpoint)
    assert attrs["COLOUR"] == "red"


def test_parse_connection(endpoint):
    attrs = parse_connection(connection_payload("AUDIT", "jdoe"), endpoint, "groups", "AC")
    assert attrs == {"groups": "AUDIT", "USER_ID": "jdoe"}


def test_parse_password(endpoint):
    attrs = parse_password(password_payload("jdoe", "N3wSecret"), endpoint, "PA")
    assert attrs == {"USER_ID": "jdoe", "password": "N3wSecret"}


def test_parse_password_truncated(endpoint):
    with pytest.raises(RecordParseError):
        parse_password(scalar("jdoe") + scalar("x"), endpoint, "PA")


def test_addinfo_count_larger_than_entries(endpoint):
    payload = account_payload()[:-3] + "002" + addinfo([("NAME", "x")])[3:]
    with pytest.raises(RecordParseError):
        parse_account(payload, endpoint)
