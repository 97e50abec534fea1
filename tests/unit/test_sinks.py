"""Tests for HTTP and audit event delivery."""
import json

import pytest
import requests

from interceptor.core import sinks
from interceptor.core.exceptions import EventSinkError
from interceptor.core.factory import create_resource_event
from interceptor.core.records import OperationCode
from scripts import audit
from tests.conftest import RecordingNotifier, RecordingSink, account_payload, connection_payload, group_payload


class _StubResponse:
    def __init__(self, status_code: int = 202, text: str = ""):
        self.status_code = status_code
        self.text = text


@pytest.fixture()
def posted(monkeypatch):
    calls = []

    def _stub_post(url, json=None, headers=None, timeout=None):
        calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return _StubResponse()

    monkeypatch.setattr(requests, "post", _stub_post)
    return calls


@pytest.fixture
def temp_audit_dir(monkeypatch, tmp_path):
    audit_dir = tmp_path / "audit"
    monkeypatch.setattr(audit, "AUDIT_LOG_DIR", audit_dir)
    monkeypatch.setattr(audit, "AUDIT_LOG_FILE", audit_dir / "intercept-events.jsonl")
    monkeypatch.setenv("AUDIT_LOG_SIGNING_KEY", "test-signing-key-for-audit-trail")
    return audit_dir / "intercept-events.jsonl"


def _event(endpoint, code=OperationCode.ACCOUNT_ADD, payload=None):
    return create_resource_event(code, payload or account_payload("jdoe", password="s3cret"), endpoint, "000000001")


# ─────────────────────────────────────────────────────────────────────────────
# HTTP delivery
# ─────────────────────────────────────────────────────────────────────────────
def test_http_event_sink_posts_json(posted, endpoint):
    client = sinks.SinkClient("https://iam.test/api/", token="tok")
    sinks.HttpEventSink(client).submit(_event(endpoint))

    assert len(posted) == 1
    call = posted[0]
    assert call["url"] == "https://iam.test/api/resource-events"
    assert call["headers"]["Authorization"] == "Bearer tok"
    assert call["timeout"] == sinks.REQUEST_TIMEOUT
    assert call["json"]["request"]["nativeIdentity"] == "jdoe"
    assert call["json"]["operationCode"] == "AA"


def test_http_sink_without_token(posted, endpoint):
    sinks.HttpEventSink(sinks.SinkClient("https://iam.test")).submit(_event(endpoint))
    assert "Authorization" not in posted[0]["headers"]


def test_http_password_notifier_includes_password(posted):
    sinks.HttpPasswordNotifier(sinks.SinkClient("https://iam.test")).notify("Corporate LDAP", "jdoe", "N3w")
    call = posted[0]
    assert call["url"] == "https://iam.test/password-intercepts"
    assert call["json"]["userId"] == "jdoe"
    assert call["json"]["password"] == "N3w"


def test_http_error_status_raises(monkeypatch, endpoint):
    monkeypatch.setattr(requests, "post", lambda *a, **k: _StubResponse(503, "unavailable"))
    with pytest.raises(EventSinkError) as exc_info:
        sinks.HttpEventSink(sinks.SinkClient("https://iam.test")).submit(_event(endpoint))
    assert exc_info.value.status_code == 503
    assert exc_info.value.endpoint == "https://iam.test/resource-events"


def test_http_connection_error_raises(monkeypatch, endpoint):
    def _boom(*args, **kwargs):
        raise requests.ConnectionError("refused")

    monkeypatch.setattr(requests, "post", _boom)
    with pytest.raises(EventSinkError) as exc_info:
        sinks.HttpEventSink(sinks.SinkClient("https://iam.test")).submit(_event(endpoint))
    assert exc_info.value.status_code == 0


# ─────────────────────────────────────────────────────────────────────────────
# Audit trail
# ─────────────────────────────────────────────────────────────────────────────
@pytest.mark.parametrize("code,payload_fn,expected", [
    (OperationCode.ACCOUNT_ADD, account_payload, "account_create"),
    (OperationCode.ACCOUNT_UPDATE, account_payload, "account_modify"),
    (OperationCode.ACCOUNT_DELETE, account_payload, "account_delete"),
    (OperationCode.CONNECTION_ADD, connection_payload, "connection_add"),
    (OperationCode.CONNECTION_DELETE, connection_payload, "connection_remove"),
    (OperationCode.GROUP_ADD, group_payload, "group_create"),
    (OperationCode.GROUP_DELETE, group_payload, "group_delete"),
])
def test_audit_event_type(endpoint, code, payload_fn, expected):
    assert sinks.audit_event_type(_event(endpoint, code, payload_fn())) == expected


def test_audit_sink_masks_password(temp_audit_dir, endpoint):
    sinks.AuditLogSink().submit(_event(endpoint))

    event = json.loads(temp_audit_dir.read_text().splitlines()[0])
    assert event["event_type"] == "account_create"
    assert event["application"] == "Corporate LDAP"
    assert event["identity"] == "jdoe"
    assert event["siid"] == "000000001"
    assert "s3cret" not in temp_audit_dir.read_text()
    assert audit.verify_audit_log() == (1, 1)


def test_audit_password_notifier_never_writes_password(temp_audit_dir):
    sinks.AuditPasswordNotifier().notify("Corporate LDAP", "jdoe", "N3wSecret", siid="000000007")
    content = temp_audit_dir.read_text()
    assert "N3wSecret" not in content
    event = json.loads(content)
    assert event["event_type"] == "password_change"
    assert event["siid"] == "000000007"
    assert event["success"] is True


# ─────────────────────────────────────────────────────────────────────────────
# Audited delivery
# ─────────────────────────────────────────────────────────────────────────────
class _FailingSink:
    def submit(self, event):
        raise EventSinkError(503, "unavailable", "https://iam.test/resource-events")


class _FailingNotifier:
    def notify(self, app_name, user_id, password, *, siid=""):
        raise EventSinkError(503, "unavailable", "https://iam.test/password-intercepts")


def test_audit_sink_hands_event_to_delivery(temp_audit_dir, endpoint):
    delivery = RecordingSink()
    event = _event(endpoint)
    sinks.AuditLogSink(delivery).submit(event)

    assert delivery.events == [event]
    assert json.loads(temp_audit_dir.read_text())["success"] is True


def test_audit_sink_records_failed_delivery(temp_audit_dir, endpoint):
    with pytest.raises(EventSinkError):
        sinks.AuditLogSink(_FailingSink()).submit(_event(endpoint))

    event = json.loads(temp_audit_dir.read_text())
    assert event["event_type"] == "account_create"
    assert event["success"] is False
    assert audit.verify_audit_log() == (1, 1)


def test_audit_notifier_passes_siid_to_delivery(temp_audit_dir):
    delivery = RecordingNotifier()
    sinks.AuditPasswordNotifier(delivery).notify("Corporate LDAP", "jdoe", "pw", siid="000000003")
    assert delivery.calls == [("Corporate LDAP", "jdoe", "pw")]
    assert delivery.siids == ["000000003"]


def test_audit_notifier_records_failed_delivery(temp_audit_dir):
    with pytest.raises(EventSinkError):
        sinks.AuditPasswordNotifier(_FailingNotifier()).notify("Corporate LDAP", "jdoe", "pw", siid="000000004")

    event = json.loads(temp_audit_dir.read_text())
    assert event["success"] is False
    assert event["siid"] == "000000004"
    assert event["details"] == {}


def test_http_password_notifier_sends_siid(posted):
    sinks.HttpPasswordNotifier(sinks.SinkClient("https://iam.test")).notify(
        "Corporate LDAP", "jdoe", "N3w", siid="000000005")
    assert posted[0]["json"]["siid"] == "000000005"
