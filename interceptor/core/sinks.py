"""Event sinks: where parsed interceptions are delivered.

Two collaborator interfaces:

- EventSink.submit(event): structured resource events
- PasswordNotifier.notify(app_name, user_id, password, siid=...): password changes

Implementations:
- HttpEventSink / HttpPasswordNotifier: downstream provisioning API (requests)
- AuditLogSink / AuditPasswordNotifier: signed JSONL audit trail, wrapping the
  HTTP delivery when one is configured so failed deliveries are recorded too

Every call is independent: no session, connection or transaction is kept
between events.
"""
from __future__ import annotations
import logging
from typing import Any, Optional, Protocol

import requests

from scripts import audit
from .events import AccountRequest, PasswordChangeEvent, ResourceEvent
from .exceptions import EventSinkError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 5


class EventSink(Protocol):
    def submit(self, event: ResourceEvent) -> None:
        ...


class PasswordNotifier(Protocol):
    def notify(self, app_name: str, user_id: str, password: str, *, siid: str = "") -> None:
        ...


# ─────────────────────────────────────────────────────────────────────────────
# HTTP delivery
# ─────────────────────────────────────────────────────────────────────────────
class SinkClient:
    """Minimal HTTP client for the downstream provisioning API.

    Usage:
        client = SinkClient("https://iam.example.com/api", token="...")
        client.post("/resource-events", {"type": "resource_event", ...})
    """

    def __init__(self, base_url: str, token: Optional[str] = None):
        self.base_url = base_url.rstrip("/")
        self._token = token

    def post(self, path: str, payload: dict[str, Any]) -> requests.Response:
        """POST a JSON payload.

        Raises:
            EventSinkError: On connection failure or HTTP status >= 400
        """
        url = f"{self.base_url}{path}"
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            resp = requests.post(url, json=payload, headers=headers, timeout=REQUEST_TIMEOUT)
        except requests.RequestException as e:
            raise EventSinkError(0, str(e), url) from e
        self._handle_error(resp, url)
        return resp

    def _handle_error(self, resp: requests.Response, url: str) -> None:
        if resp.status_code >= 400:
            raise EventSinkError(resp.status_code, resp.text, url)


class HttpEventSink:
    """Posts each resource event to ``{base_url}/resource-events``."""

    def __init__(self, client: SinkClient):
        self.client = client

    def submit(self, event: ResourceEvent) -> None:
        self.client.post("/resource-events", event.to_dict())
        logger.debug(f"Delivered {event.operation_code} event for {event.native_identity} to {self.client.base_url}")


class HttpPasswordNotifier:
    """Posts password changes to ``{base_url}/password-intercepts``."""

    def __init__(self, client: SinkClient):
        self.client = client

    def notify(self, app_name: str, user_id: str, password: str, *, siid: str = "") -> None:
        event = PasswordChangeEvent(application=app_name, user_id=user_id, password=password, siid=siid)
        self.client.post("/password-intercepts", event.to_dict(include_password=True))


# ─────────────────────────────────────────────────────────────────────────────
# Audit trail
# ─────────────────────────────────────────────────────────────────────────────
def audit_event_type(event: ResourceEvent) -> str:
    """Map a resource event to its audit event type (e.g. account_create)."""
    request = event.request
    if isinstance(request, AccountRequest):
        if event.operation_code in ("AC", "UC", "DC"):
            return "connection_remove" if event.operation_code == "DC" else "connection_add"
        return f"account_{request.operation.value.lower()}"
    return f"group_{request.operation.value.lower()}"


class AuditLogSink:
    """Appends every resource event to the signed audit trail (passwords masked).

    With a ``delivery`` sink the event is handed on first and the audit entry
    records whether that succeeded; a failed delivery is re-raised.
    """

    def __init__(self, delivery: Optional[EventSink] = None):
        self.delivery = delivery

    def submit(self, event: ResourceEvent) -> None:
        success = False
        try:
            if self.delivery is not None:
                self.delivery.submit(event)
            success = True
        finally:
            audit.log_intercept_event(
                audit_event_type(event),
                event.application,
                event.native_identity or "",
                siid=event.siid,
                details=event.request.to_dict(mask_sensitive=True),
                success=success,
            )


class AuditPasswordNotifier:
    """Records that a password changed; the password itself is never written."""

    def __init__(self, delivery: Optional[PasswordNotifier] = None):
        self.delivery = delivery

    def notify(self, app_name: str, user_id: str, password: str, *, siid: str = "") -> None:
        success = False
        try:
            if self.delivery is not None:
                self.delivery.notify(app_name, user_id, password, siid=siid)
            success = True
        finally:
            audit.log_intercept_event("password_change", app_name, user_id, siid=siid, success=success)
