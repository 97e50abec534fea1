"""Builds ResourceEvents from parsed operation records."""
from __future__ import annotations
import logging
from typing import Any

from .events import (
    AccountOperation,
    AccountRequest,
    AttributeOperation,
    AttributeRequest,
    ObjectOperation,
    ObjectRequest,
    ResourceEvent,
)
from .exceptions import UnsupportedOperationError
from .records import (
    ATTR_GROUP_ID,
    ATTR_USER_ID,
    OperationCode,
    OperationFamily,
    apply_account_status,
    parse_account,
    parse_connection,
    parse_group,
)
from .registry import GROUP_ATTRIBUTE, EndpointConfig

logger = logging.getLogger(__name__)

_ACCOUNT_OPERATIONS = {
    OperationCode.ACCOUNT_ADD: AccountOperation.CREATE,
    OperationCode.ACCOUNT_UPDATE: AccountOperation.MODIFY,
    OperationCode.ACCOUNT_VERIFY: AccountOperation.MODIFY,
    OperationCode.ACCOUNT_DELETE: AccountOperation.DELETE,
}

_GROUP_OPERATIONS = {
    OperationCode.GROUP_ADD: ObjectOperation.CREATE,
    OperationCode.GROUP_UPDATE: ObjectOperation.MODIFY,
    OperationCode.GROUP_DELETE: ObjectOperation.DELETE,
}


def _fill(request: AccountRequest | ObjectRequest, attrs: dict[str, Any]) -> None:
    for name, value in attrs.items():
        request.add(AttributeRequest(name, value, AttributeOperation.SET))


def create_account_request(code: OperationCode, payload: str, endpoint: EndpointConfig) -> AccountRequest:
    """AA creates, UA/VA modify (without the transient groups list), DA deletes."""
    attrs = parse_account(payload, endpoint, code.value)
    operation = _ACCOUNT_OPERATIONS[code]
    request = AccountRequest(
        application=endpoint.name,
        native_identity=attrs.get(ATTR_USER_ID),
        operation=operation,
    )
    if operation is AccountOperation.DELETE:
        return request

    apply_account_status(attrs)
    if operation is AccountOperation.MODIFY:
        attrs.pop(GROUP_ATTRIBUTE, None)
    _fill(request, attrs)
    return request


def create_connection_request(code: OperationCode, payload: str, endpoint: EndpointConfig) -> AccountRequest:
    """Group membership change as a single-attribute Modify.

    Raises:
        UnsupportedOperationError: If the account schema has no groups attribute
    """
    group_attribute = endpoint.group_attribute
    if not group_attribute:
        raise UnsupportedOperationError(
            f"Connection operation {code.value} is unsupported for application {endpoint.name}: "
            f"'{GROUP_ATTRIBUTE}' is not defined in the account schema"
        )
    attrs = parse_connection(payload, endpoint, group_attribute, code.value)
    if code is OperationCode.CONNECTION_DELETE:
        attribute_operation = AttributeOperation.REMOVE
    else:
        attribute_operation = AttributeOperation.ADD

    request = AccountRequest(
        application=endpoint.name,
        native_identity=attrs.get(ATTR_USER_ID),
        operation=AccountOperation.MODIFY,
    )
    request.add(AttributeRequest(group_attribute, attrs.get(group_attribute), attribute_operation))
    return request


def create_group_request(code: OperationCode, payload: str, endpoint: EndpointConfig) -> ObjectRequest:
    attrs = parse_group(payload, endpoint, code.value)
    operation = _GROUP_OPERATIONS[code]
    request = ObjectRequest(
        application=endpoint.name,
        native_identity=attrs.get(ATTR_GROUP_ID),
        operation=operation,
    )
    if operation is not ObjectOperation.DELETE:
        _fill(request, attrs)
    return request


_BUILDERS = {
    OperationFamily.ACCOUNT: create_account_request,
    OperationFamily.CONNECTION: create_connection_request,
    OperationFamily.GROUP: create_group_request,
}


def create_resource_event(code: OperationCode, payload: str, endpoint: EndpointConfig,
                          siid: str = "") -> ResourceEvent:
    """Parse ``payload`` for a non-password operation and wrap it in an event.

    Raises:
        RecordParseError: If the payload is malformed
        UnsupportedOperationError: If the endpoint cannot represent the change
        KeyError: If ``code`` is a password change (handled separately)
    """
    request = _BUILDERS[code.family](code, payload, endpoint)
    event = ResourceEvent(
        application=endpoint.name,
        request=request,
        operation_code=code.value,
        siid=siid,
        source=endpoint.application,
    )
    logger.debug(f"Resource event for SIID {siid}: {event.to_dict(mask_sensitive=True)}")
    return event
