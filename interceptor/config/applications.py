"""Application records: per-endpoint connection parameters and schemas.

Records are read from a YAML file shaped like:

    applications:
      - name: RACF Production
        cluster: mainframe-a
        interception: true
        attributes:
          host: gateway.example.com
          port: "5600"
          MscsType: RACF
          MscsName: RACFPROD
          characterSet: ISO-8859-1
          user: sailadmin
          passwordSecret: racf_prod_password
        schemas:
          account:
            - {name: USER_ID}
            - {name: groups, multi: true}
          group:
            - {name: GROUP_ID}
"""
from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml

from interceptor.core.exceptions import ConfigError
from .settings import _load_secret_from_file

DEFAULT_CHARSET = "ISO-8859-1"
DEFAULT_ENCRYPTION_TYPE = "0"
DEFAULT_CONNECT_TIMEOUT = 30.0

_TRUE_VALUES = {"true", "yes", "y", "1", "on"}


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in _TRUE_VALUES


@dataclass(frozen=True)
class SchemaAttribute:
    """One attribute definition from an account or group schema."""
    name: str
    internal_name: Optional[str] = None
    multi: bool = False

    @property
    def internal_or_name(self) -> str:
        return self.internal_name or self.name


@dataclass(frozen=True)
class ApplicationRecord:
    """Configured managed application, as the configuration source stores it."""
    name: str
    cluster: str = ""
    interception: bool = False
    attributes: dict[str, Any] = field(default_factory=dict)
    schemas: dict[str, tuple[SchemaAttribute, ...]] = field(default_factory=dict)

    def get_attribute(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)

    def get_string(self, key: str, default: str = "") -> str:
        value = self.attributes.get(key)
        if value is None:
            return default
        return str(value)

    def get_bool(self, key: str) -> bool:
        return _to_bool(self.attributes.get(key))

    def schema(self, object_type: str) -> Optional[tuple[SchemaAttribute, ...]]:
        return self.schemas.get(object_type)


@dataclass(frozen=True)
class GatewaySettings:
    """Connection parameters for one gateway session."""
    application: str
    host: str
    port: int
    mscs_name: str
    mscs_type: str
    mscs_admin: str = ""
    charset: str = DEFAULT_CHARSET
    encryption_type: str = DEFAULT_ENCRYPTION_TYPE
    tls_enabled: bool = False
    disable_hostname_verification: bool = False
    cert_subject: str = ""
    ca_file: str = ""
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    socket_connect_retry: int = 1
    app_user: str = ""
    app_password: Optional[str] = field(default=None, repr=False)
    disable_one_phase_aggregation: bool = False

    @classmethod
    def from_application(cls, app: ApplicationRecord) -> "GatewaySettings":
        """Derive session settings from an application record.

        Raises:
            ConfigError: If host/port are missing or a value is out of range
        """
        host = app.get_string("host").strip()
        if not host:
            raise ConfigError(f"Application '{app.name}' has no gateway host")

        try:
            port = int(app.get_string("port"))
        except ValueError:
            raise ConfigError(f"Application '{app.name}' has an invalid port: {app.get_attribute('port')!r}")
        if not 0 < port < 65536:
            raise ConfigError(f"Application '{app.name}' port out of range: {port}")

        charset = app.get_string("characterSet").strip() or DEFAULT_CHARSET
        try:
            "".encode(charset)
        except LookupError:
            raise ConfigError(f"Application '{app.name}' uses unknown character set '{charset}'")

        encryption_type = app.get_string("encryptionType", DEFAULT_ENCRYPTION_TYPE).strip()
        if len(encryption_type) != 1:
            raise ConfigError(f"Application '{app.name}' encryptionType must be one character")

        try:
            connect_timeout = float(app.get_attribute("connectTimeout", DEFAULT_CONNECT_TIMEOUT))
            socket_connect_retry = max(1, int(app.get_attribute("smSocketConnectRetry", 1)))
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Application '{app.name}' has an invalid timeout or retry count: {e}")

        password = app.get_string("password") or None
        secret_name = app.get_string("passwordSecret")
        if not password and secret_name:
            password = _load_secret_from_file(secret_name, secret_name.upper())

        return cls(
            application=app.name,
            host=host,
            port=port,
            mscs_name=app.get_string("MscsName"),
            mscs_type=app.get_string("MscsType"),
            mscs_admin=app.get_string("MscsAdmin"),
            charset=charset,
            encryption_type=encryption_type,
            tls_enabled=app.get_bool("TLSEnabled"),
            disable_hostname_verification=app.get_bool("disableHostnameVerification"),
            cert_subject=app.get_string("cgCertSubject"),
            ca_file=app.get_string("caFile"),
            connect_timeout=connect_timeout,
            socket_connect_retry=socket_connect_retry,
            app_user=app.get_string("user"),
            app_password=password,
            disable_one_phase_aggregation=app.get_bool("disableOnePhaseAggregation"),
        )


def check_parser_attributes(app_name: str, attributes: dict[str, Any]) -> None:
    """Validate the attributes the record parser reads.

    Raises:
        ConfigError: If UserAdminMap is not a mapping or multiColumnSeparator
            is not a string
    """
    admin_map = attributes.get("UserAdminMap")
    if admin_map is not None and not isinstance(admin_map, dict):
        raise ConfigError(
            f"Application '{app_name}' UserAdminMap must be a mapping of code to label, "
            f"got {type(admin_map).__name__}"
        )
    separator = attributes.get("multiColumnSeparator")
    if separator is not None and not isinstance(separator, str):
        raise ConfigError(
            f"Application '{app_name}' multiColumnSeparator must be a string, got {separator!r}"
        )


def _parse_schema(app_name: str, object_type: str, raw: Any) -> tuple[SchemaAttribute, ...]:
    if not isinstance(raw, list):
        raise ConfigError(f"Application '{app_name}' {object_type} schema must be a list")
    attributes = []
    for entry in raw:
        if isinstance(entry, str):
            attributes.append(SchemaAttribute(name=entry))
            continue
        if not isinstance(entry, dict) or not entry.get("name"):
            raise ConfigError(f"Application '{app_name}' has a {object_type} attribute without a name")
        attributes.append(SchemaAttribute(
            name=str(entry["name"]),
            internal_name=entry.get("internalName"),
            multi=_to_bool(entry.get("multi")),
        ))
    return tuple(attributes)


def parse_application(raw: dict[str, Any]) -> ApplicationRecord:
    """Build an ApplicationRecord from one YAML mapping."""
    if not isinstance(raw, dict) or not raw.get("name"):
        raise ConfigError("Every application needs a name")
    name = str(raw["name"])

    attributes = raw.get("attributes") or {}
    if not isinstance(attributes, dict):
        raise ConfigError(f"Application '{name}' attributes must be a mapping")
    check_parser_attributes(name, attributes)

    schemas = {}
    for object_type, schema in (raw.get("schemas") or {}).items():
        schemas[object_type] = _parse_schema(name, object_type, schema)

    return ApplicationRecord(
        name=name,
        cluster=str(raw.get("cluster") or ""),
        interception=_to_bool(raw.get("interception")),
        attributes=dict(attributes),
        schemas=schemas,
    )


def load_applications(path: str | Path) -> list[ApplicationRecord]:
    """Load application records from a YAML file.

    Raises:
        ConfigError: If the file is missing, unreadable or malformed
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Applications file not found: {path}")
    try:
        with path.open("r", encoding="utf-8") as handle:
            document = yaml.safe_load(handle) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Failed to read applications file {path}: {e}")

    raw_apps = document.get("applications") if isinstance(document, dict) else None
    if not isinstance(raw_apps, list):
        raise ConfigError(f"{path} must contain an 'applications' list")

    applications = [parse_application(raw) for raw in raw_apps]
    names = [app.name for app in applications]
    duplicates = {name for name in names if names.count(name) > 1}
    if duplicates:
        raise ConfigError(f"Duplicate application names: {', '.join(sorted(duplicates))}")
    return applications


class YamlConfigSource:
    """Configuration source backed by a list of application records."""

    def __init__(self, applications: list[ApplicationRecord]):
        self._applications = list(applications)

    @classmethod
    def from_file(cls, path: str | Path) -> "YamlConfigSource":
        return cls(load_applications(path))

    def applications(self) -> list[ApplicationRecord]:
        return list(self._applications)

    def interception_applications(self) -> list[ApplicationRecord]:
        """Applications that get their own gateway session and worker."""
        return [app for app in self._applications if app.interception]

    def get_application(self, name: str) -> Optional[ApplicationRecord]:
        for app in self._applications:
            if app.name == name:
                return app
        return None

    def applications_in_cluster(self, cluster: str) -> list[ApplicationRecord]:
        if not cluster:
            return []
        return [app for app in self._applications if app.cluster == cluster]

    def get_endpoint_config(self, mscs_type: str, mscs_name: str):
        """Return the EndpointConfig for a managed system, or None."""
        from interceptor.core.registry import EndpointConfig, EndpointKey

        wanted = EndpointKey.of(mscs_type, mscs_name)
        for app in self._applications:
            if EndpointKey.of(app.get_string("MscsType"), app.get_string("MscsName")) == wanted:
                return EndpointConfig.from_application(app)
        return None
