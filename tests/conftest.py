"""Pytest shared fixtures for the interception engine."""
import pathlib
import sys
from collections import deque
from typing import Optional

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest

from interceptor.config.applications import ApplicationRecord, SchemaAttribute
from interceptor.core.codec import encode_hex_length, length_prefixed
from interceptor.core.exceptions import StreamError
from interceptor.core.messages import HeaderIdentity
from interceptor.core.registry import EndpointConfig, EndpointRegistry


# ─────────────────────────────────────────────────────────────────────────────
# Frame Builders
# ─────────────────────────────────────────────────────────────────────────────
def frame_header(siid: str, code: str, *, marker: str = "T", sequence: str = "000001",
                 message_class: str = "S", user: str = " " * 8, encryption: str = "0") -> str:
    """33-character header as the gateway sends it."""
    return message_class + siid + sequence + "1PE01" + user + marker + encryption + code


def rs_frame(siid: str, mscs_name: str, mscs_type: str) -> str:
    """Record-start frame whose trailer (offset 48) names the managed system."""
    header = frame_header(siid, "RS")
    return header + "0" * (48 - len(header)) + length_prefixed(mscs_name) + length_prefixed(mscs_type)


def completion_frame(siid: str, code: str, payload: str, *, marker: str = "T",
                     last_chunk: bool = False) -> str:
    """Completion frame: header, filler up to offset 61 with the chunk flag at 39, payload."""
    header = frame_header(siid, code, marker=marker)
    filler = list("0" * (61 - len(header)))
    filler[39 - len(header)] = "T" if last_chunk else "F"
    return header + "".join(filler) + payload


def scalar(value: str) -> str:
    return length_prefixed(value)


def addinfo(pairs: list[tuple[str, str]]) -> str:
    """AddInfo block: 3-hex count, then type + kwLen(2) + keyword + valLen(4) + value."""
    body = encode_hex_length(len(pairs), 3)
    for keyword, value in pairs:
        body += "00" + length_prefixed(keyword, 2) + length_prefixed(value, 4)
    return body


def account_payload(user_id: str = "jdoe", *, password: str = "", user_status: str = "2",
                    user_admin: str = "1", extra: Optional[list[tuple[str, str]]] = None) -> str:
    fields = [user_id, "SALES", "USERS", password, "1", user_status, user_admin, "3"]
    return "".join(scalar(value) for value in fields) + addinfo(extra or [])


def group_payload(group_id: str = "AUDIT", extra: Optional[list[tuple[str, str]]] = None) -> str:
    return scalar(group_id) + scalar("SECOPS") + scalar("SYS1") + addinfo(extra or [])


def connection_payload(group: str = "AUDIT", user_id: str = "jdoe") -> str:
    return scalar(group) + scalar(user_id)


def password_payload(user_id: str = "jdoe", password: str = "N3wSecret") -> str:
    return scalar(user_id) + scalar("x") + scalar("") + scalar(password)


# ─────────────────────────────────────────────────────────────────────────────
# Endpoint Fixtures
# ─────────────────────────────────────────────────────────────────────────────
def make_application(name: str = "Corporate LDAP", *, mscs_type: str = "LDAP", mscs_name: str = "CORP",
                     cluster: str = "mainframe-a", interception: bool = True,
                     with_groups: bool = True, group_schema: bool = True, **attributes) -> ApplicationRecord:
    account = [
        SchemaAttribute("USER_ID"),
        SchemaAttribute("NAME"),
        SchemaAttribute("OWNER"),
        SchemaAttribute("directPermissions", multi=True),
    ]
    if with_groups:
        account.append(SchemaAttribute("groups", multi=True))
    schemas = {"account": tuple(account)}
    if group_schema:
        schemas["group"] = (
            SchemaAttribute("GROUP_ID"),
            SchemaAttribute("SUPGROUP"),
            SchemaAttribute("MEMBERS", multi=True),
        )
    attrs = {
        "host": "gateway.test",
        "port": "5600",
        "MscsType": mscs_type,
        "MscsName": mscs_name,
        "UserAdminMap": {"1": "User", "3": "Administrator"},
    }
    attrs.update(attributes)
    return ApplicationRecord(name=name, cluster=cluster, interception=interception,
                             attributes=attrs, schemas=schemas)


@pytest.fixture()
def application() -> ApplicationRecord:
    return make_application()


@pytest.fixture()
def endpoint(application) -> EndpointConfig:
    return EndpointConfig.from_application(application)


@pytest.fixture()
def registry(endpoint) -> EndpointRegistry:
    return EndpointRegistry([endpoint])


# ─────────────────────────────────────────────────────────────────────────────
# Collaborator Doubles
# ─────────────────────────────────────────────────────────────────────────────
class FakeChannel:
    """In-memory stand-in for a gateway session."""

    def __init__(self, frames=()):
        self.identity = HeaderIdentity()
        self.encryption_type = "0"
        self.frames = deque(frames)
        self.sent: list[str] = []

    def send(self, body: str) -> None:
        self.sent.append(body)

    def receive(self) -> str:
        if not self.frames:
            raise StreamError("Connection closed by gateway")
        return self.frames.popleft()


class RecordingSink:
    def __init__(self):
        self.events = []

    def submit(self, event) -> None:
        self.events.append(event)


class RecordingNotifier:
    def __init__(self):
        self.calls: list[tuple[str, str, str]] = []
        self.siids: list[str] = []

    def notify(self, app_name: str, user_id: str, password: str, *, siid: str = "") -> None:
        self.calls.append((app_name, user_id, password))
        self.siids.append(siid)


@pytest.fixture()
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ─────────────────────────────────────────────────────────────────────────────
# Pytest Configuration
# ─────────────────────────────────────────────────────────────────────────────
def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "integration: tests that open real local sockets"
    )
