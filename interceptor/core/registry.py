"""Endpoint registry: read-only per-managed-system configuration snapshots.

The receive loop resolves every completed interception to an endpoint by the
managed-system type and name found in its RS frame. Snapshots are taken once
per worker run so the loop never re-fetches or mutates application records.
"""
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional, Protocol

from interceptor.config.applications import ApplicationRecord, SchemaAttribute, check_parser_attributes

logger = logging.getLogger(__name__)

DEFAULT_ENCODING = "ISO-8859-1"
DEFAULT_COLUMN_SEPARATOR = "#"
GROUP_ATTRIBUTE = "groups"


@dataclass(frozen=True)
class EndpointKey:
    """(managed-system type, managed-system name), upper-cased."""
    mscs_type: str
    mscs_name: str

    @classmethod
    def of(cls, mscs_type: Optional[str], mscs_name: Optional[str]) -> "EndpointKey":
        return cls((mscs_type or "").upper(), (mscs_name or "").upper())


def _attribute_names(schema: Optional[Iterable[SchemaAttribute]]) -> tuple[frozenset[str], frozenset[str]]:
    names: set[str] = set()
    multi: set[str] = set()
    for attribute in schema or ():
        names.add(attribute.internal_or_name)
        if attribute.multi:
            multi.add(attribute.internal_or_name)
    return frozenset(names), frozenset(multi)


@dataclass(frozen=True)
class EndpointConfig:
    """Immutable snapshot of everything the parser needs for one endpoint."""
    name: str
    key: EndpointKey
    encoding: str = DEFAULT_ENCODING
    column_separator: str = DEFAULT_COLUMN_SEPARATOR
    group_attribute: Optional[str] = None
    account_attributes: frozenset[str] = frozenset()
    multi_valued_account_attributes: frozenset[str] = frozenset()
    group_attributes: frozenset[str] = frozenset()
    multi_valued_group_attributes: frozenset[str] = frozenset()
    admin_role_labels: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))
    application: Any = field(default=None, compare=False, repr=False)

    @classmethod
    def from_application(cls, app: ApplicationRecord) -> "EndpointConfig":
        """Snapshot one application.

        Raises:
            ConfigError: If a parser attribute has the wrong shape
        """
        check_parser_attributes(app.name, app.attributes)
        account_schema = app.schema("account")
        account_names, account_multi = _attribute_names(account_schema)
        group_names, group_multi = _attribute_names(app.schema("group"))

        group_attribute = None
        if account_schema is None:
            logger.error(f"Cannot process application '{app.name}': it has no account schema")
        elif GROUP_ATTRIBUTE in account_names:
            group_attribute = GROUP_ATTRIBUTE

        encoding = app.get_string("characterSet").strip() or DEFAULT_ENCODING
        separator = app.get_string("multiColumnSeparator") or DEFAULT_COLUMN_SEPARATOR

        raw_labels = app.get_attribute("UserAdminMap") or {}
        labels = {str(code): str(label) for code, label in raw_labels.items()}

        return cls(
            name=app.name,
            key=EndpointKey.of(app.get_string("MscsType"), app.get_string("MscsName")),
            encoding=encoding,
            column_separator=separator,
            group_attribute=group_attribute,
            account_attributes=account_names,
            multi_valued_account_attributes=account_multi,
            group_attributes=group_names,
            multi_valued_group_attributes=group_multi,
            admin_role_labels=MappingProxyType(labels),
            application=app,
        )

    def is_multi_valued_account_attribute(self, name: str) -> bool:
        return name in self.multi_valued_account_attributes

    def is_multi_valued_group_attribute(self, name: str) -> bool:
        return name in self.multi_valued_group_attributes


class ConfigSource(Protocol):
    """Surrounding application configuration, as the registry consumes it."""

    def applications_in_cluster(self, cluster: str) -> list[ApplicationRecord]:
        ...

    def get_endpoint_config(self, mscs_type: str, mscs_name: str) -> Optional[EndpointConfig]:
        ...


class EndpointRegistry:
    """Lookup table of EndpointConfig snapshots keyed by EndpointKey."""

    def __init__(self, endpoints: Iterable[EndpointConfig] = ()):
        self._endpoints: dict[EndpointKey, EndpointConfig] = {}
        for endpoint in endpoints:
            self._endpoints[endpoint.key] = endpoint

    @classmethod
    def build(cls, primary: ApplicationRecord, source: ConfigSource) -> "EndpointRegistry":
        """Snapshot every application sharing the primary endpoint's cluster.

        Falls back to the primary application alone when the cluster query
        comes back empty.
        """
        applications = source.applications_in_cluster(primary.cluster) or [primary]
        endpoints = []
        for app in applications:
            logger.debug(f"Registering endpoint '{app.name}' for cluster '{primary.cluster}'")
            endpoints.append(EndpointConfig.from_application(app))
        return cls(endpoints)

    def lookup(self, mscs_type: str, mscs_name: str) -> Optional[EndpointConfig]:
        return self._endpoints.get(EndpointKey.of(mscs_type, mscs_name))

    def __len__(self) -> int:
        return len(self._endpoints)

    def __contains__(self, key: EndpointKey) -> bool:
        return key in self._endpoints

    def names(self) -> list[str]:
        return sorted(endpoint.name for endpoint in self._endpoints.values())
