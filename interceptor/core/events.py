"""Outbound events: provisioning requests built from intercepted records.

The model is a deliberately small subset of a provisioning plan:

    ResourceEvent
      └── AccountRequest | ObjectRequest
            └── AttributeRequest*

Usage:
    request = AccountRequest(application="RACF", native_identity="jdoe",
                             operation=AccountOperation.CREATE)
    request.add(AttributeRequest("USER_OE_PR", "SALES"))
    event = ResourceEvent(application="RACF", request=request)
    payload = event.to_dict()
"""
from __future__ import annotations
import datetime
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Union

GROUP_OBJECT_TYPE = "group"

# Attribute names whose values must never leave the process unmasked
SENSITIVE_ATTRIBUTES = frozenset({"password"})
MASK = "********"


class AccountOperation(str, Enum):
    CREATE = "Create"
    MODIFY = "Modify"
    DELETE = "Delete"


class ObjectOperation(str, Enum):
    CREATE = "Create"
    MODIFY = "Modify"
    DELETE = "Delete"


class AttributeOperation(str, Enum):
    SET = "Set"
    ADD = "Add"
    REMOVE = "Remove"


@dataclass
class AttributeRequest:
    name: str
    value: Any
    operation: AttributeOperation = AttributeOperation.SET

    def to_dict(self, *, mask_sensitive: bool = False) -> dict[str, Any]:
        value = self.value
        if mask_sensitive and self.name in SENSITIVE_ATTRIBUTES and value:
            value = MASK
        return {"name": self.name, "value": value, "op": self.operation.value}


@dataclass
class AccountRequest:
    application: str
    native_identity: Optional[str]
    operation: AccountOperation
    attributes: list[AttributeRequest] = field(default_factory=list)

    def add(self, attribute: AttributeRequest) -> None:
        self.attributes.append(attribute)

    def get(self, name: str) -> Optional[AttributeRequest]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    def to_dict(self, *, mask_sensitive: bool = False) -> dict[str, Any]:
        return {
            "kind": "account",
            "application": self.application,
            "nativeIdentity": self.native_identity,
            "op": self.operation.value,
            "attributes": [a.to_dict(mask_sensitive=mask_sensitive) for a in self.attributes],
        }


@dataclass
class ObjectRequest:
    application: str
    native_identity: Optional[str]
    operation: ObjectOperation
    object_type: str = GROUP_OBJECT_TYPE
    attributes: list[AttributeRequest] = field(default_factory=list)

    def add(self, attribute: AttributeRequest) -> None:
        self.attributes.append(attribute)

    def get(self, name: str) -> Optional[AttributeRequest]:
        for attribute in self.attributes:
            if attribute.name == name:
                return attribute
        return None

    def to_dict(self, *, mask_sensitive: bool = False) -> dict[str, Any]:
        return {
            "kind": "object",
            "type": self.object_type,
            "application": self.application,
            "nativeIdentity": self.native_identity,
            "op": self.operation.value,
            "attributes": [a.to_dict(mask_sensitive=mask_sensitive) for a in self.attributes],
        }


def _now() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat()


@dataclass
class ResourceEvent:
    """Structured change record handed to the event sink.

    ``source`` is the owning application record, passed through untouched.
    """
    application: str
    request: Union[AccountRequest, ObjectRequest]
    operation_code: str = ""
    siid: str = ""
    created: str = field(default_factory=_now)
    source: Any = field(default=None, compare=False, repr=False)

    @property
    def native_identity(self) -> Optional[str]:
        return self.request.native_identity

    def to_dict(self, *, mask_sensitive: bool = False) -> dict[str, Any]:
        return {
            "type": "resource_event",
            "application": self.application,
            "operationCode": self.operation_code,
            "siid": self.siid,
            "created": self.created,
            "request": self.request.to_dict(mask_sensitive=mask_sensitive),
        }


@dataclass
class PasswordChangeEvent:
    """Password-change notification; the password never appears in repr()."""
    application: str
    user_id: str
    password: str = field(repr=False)
    siid: str = ""
    created: str = field(default_factory=_now)

    def to_dict(self, *, include_password: bool = False) -> dict[str, Any]:
        payload = {
            "type": "password_change",
            "application": self.application,
            "userId": self.user_id,
            "siid": self.siid,
            "created": self.created,
        }
        if include_password:
            payload["password"] = self.password
        return payload


OutboundEvent = Union[ResourceEvent, PasswordChangeEvent]
