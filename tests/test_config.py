import pytest
from pydantic import ValidationError

from identity_provisioner.config.settings import (
    MappingConfigSource,
    Settings,
    SettingsConfigSource,
    build_azure_credential,
)
from identity_provisioner.errors import AuthenticationError, ConfigurationError


def test_mapping_source_returns_trimmed_values():
    source = MappingConfigSource({"tenant_id": " contoso-tenant "})
    assert source.get("tenant_id") == "contoso-tenant"


@pytest.mark.parametrize("values", [{}, {"tenant_id": ""}, {"tenant_id": None}])
def test_mapping_source_missing_key_raises(values):
    source = MappingConfigSource(values)
    with pytest.raises(ConfigurationError) as exc_info:
        source.get("tenant_id")
    assert exc_info.value.key == "tenant_id"


def test_get_optional_falls_back_to_default():
    source = MappingConfigSource({})
    assert source.get_optional("notification_email") is None
    assert source.get_optional("credential_ref", "azure_cli") == "azure_cli"


def test_settings_source_reads_settings_fields():
    settings = Settings(_env_file=None, tenant_id="tenant-1", notification_email="")
    source = SettingsConfigSource(settings)

    assert source.get("tenant_id") == "tenant-1"
    assert source.get("credential_ref") == "managed_identity"
    with pytest.raises(ConfigurationError):
        source.get("notification_email")
    with pytest.raises(ConfigurationError):
        source.get("no_such_key")


def test_settings_load_from_environment(monkeypatch):
    monkeypatch.setenv("TENANT_ID", "env-tenant")
    monkeypatch.setenv("PROPAGATION_DELAY_SECONDS", "3")
    monkeypatch.setenv("DIRECTORY_PROVIDER", "graph")

    settings = Settings(_env_file=None)

    assert settings.tenant_id == "env-tenant"
    assert settings.propagation_delay_seconds == 3.0
    assert settings.directory_provider == "graph"


def test_provider_names_are_case_insensitive(monkeypatch):
    monkeypatch.setenv("DIRECTORY_PROVIDER", " Graph ")
    monkeypatch.setenv("NOTIFICATION_PROVIDER", "GRAPH_MAIL")

    settings = Settings(_env_file=None)

    assert settings.directory_provider == "graph"
    assert settings.notification_provider == "graph_mail"


@pytest.mark.parametrize("field,value", [
    ("directory_provider", "grpah"),
    ("notification_provider", "smtp"),
    ("log_level", "trace"),
    ("propagation_delay_seconds", "-1"),
])
def test_invalid_settings_rejected(field, value):
    with pytest.raises(ValidationError):
        Settings(_env_file=None, **{field: value})


def test_client_secret_credential_requires_secret():
    settings = Settings(_env_file=None, client_id="", client_secret="")
    with pytest.raises(AuthenticationError):
        build_azure_credential("client_secret", "tenant-1", settings)


def test_unknown_credential_reference():
    with pytest.raises(AuthenticationError):
        build_azure_credential("certificate_vault", "tenant-1", Settings(_env_file=None))
