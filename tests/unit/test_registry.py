"""Tests for endpoint snapshots and registry lookup."""
import pytest

from interceptor.config.applications import ApplicationRecord, SchemaAttribute, YamlConfigSource
from interceptor.core.exceptions import ConfigError
from interceptor.core.registry import EndpointConfig, EndpointKey, EndpointRegistry
from tests.conftest import make_application


def test_endpoint_key_is_upper_cased():
    assert EndpointKey.of("ldap", "Corp") == EndpointKey("LDAP", "CORP")


def test_endpoint_config_defaults(endpoint):
    assert endpoint.name == "Corporate LDAP"
    assert endpoint.encoding == "ISO-8859-1"
    assert endpoint.column_separator == "#"
    assert endpoint.group_attribute == "groups"
    assert endpoint.is_multi_valued_account_attribute("groups")
    assert not endpoint.is_multi_valued_account_attribute("NAME")
    assert endpoint.is_multi_valued_group_attribute("MEMBERS")


def test_endpoint_config_without_groups_attribute():
    endpoint = EndpointConfig.from_application(make_application(with_groups=False))
    assert endpoint.group_attribute is None


def test_endpoint_config_uses_internal_names():
    app = ApplicationRecord(
        name="RACF",
        attributes={"MscsType": "RACF", "MscsName": "PROD"},
        schemas={"account": (SchemaAttribute("Full Name", internal_name="NAME"),)},
    )
    endpoint = EndpointConfig.from_application(app)
    assert "NAME" in endpoint.account_attributes
    assert "Full Name" not in endpoint.account_attributes


def test_endpoint_config_is_immutable(endpoint):
    with pytest.raises(AttributeError):
        endpoint.encoding = "UTF-8"
    with pytest.raises(TypeError):
        endpoint.admin_role_labels["9"] = "Root"


def test_endpoint_carries_application(application, endpoint):
    assert endpoint.application is application


def test_missing_account_schema_is_logged(caplog):
    app = ApplicationRecord(name="Bare", attributes={"MscsType": "X", "MscsName": "Y"})
    endpoint = EndpointConfig.from_application(app)
    assert endpoint.group_attribute is None
    assert "no account schema" in caplog.text


def test_endpoint_config_rejects_non_mapping_admin_map():
    app = make_application(UserAdminMap=["User", "Administrator"])
    with pytest.raises(ConfigError, match="UserAdminMap"):
        EndpointConfig.from_application(app)


def test_registry_lookup_is_case_insensitive(registry):
    assert registry.lookup("ldap", "corp").name == "Corporate LDAP"
    assert registry.lookup("LDAP", "OTHER") is None


def test_registry_build_uses_cluster():
    primary = make_application()
    sibling = make_application("Top Secret", mscs_type="TSS", mscs_name="PROD", interception=False)
    outsider = make_application("Elsewhere", mscs_type="ACF2", mscs_name="X", cluster="other")
    source = YamlConfigSource([primary, sibling, outsider])

    registry = EndpointRegistry.build(primary, source)
    assert len(registry) == 2
    assert registry.names() == ["Corporate LDAP", "Top Secret"]
    assert EndpointKey("TSS", "PROD") in registry
    assert registry.lookup("ACF2", "X") is None


def test_registry_build_falls_back_to_primary():
    primary = make_application(cluster="")
    registry = EndpointRegistry.build(primary, YamlConfigSource([]))
    assert registry.names() == ["Corporate LDAP"]


def test_config_source_get_endpoint_config():
    source = YamlConfigSource([make_application()])
    assert source.get_endpoint_config("Ldap", "corp").name == "Corporate LDAP"
    assert source.get_endpoint_config("LDAP", "NONE") is None
