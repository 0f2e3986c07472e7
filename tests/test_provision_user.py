import json

import pytest

from identity_provisioner import cli
from identity_provisioner.config.settings import MappingConfigSource, Settings
from identity_provisioner.integrations.notifications import MockNotificationSink
from identity_provisioner.workflows.provisioning import provision_user


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        tenant_id="00000000-0000-0000-0000-000000000001",
        notification_email="servicedesk@example.com",
        propagation_delay_seconds=0,
        directory_provider="mock",
        notification_provider="mock",
    )


@pytest.fixture
def fresh_settings(monkeypatch, tmp_path):
    monkeypatch.setattr("identity_provisioner.config.settings._settings_instance", None)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("TENANT_ID", "00000000-0000-0000-0000-000000000001")


@pytest.mark.asyncio
async def test_provision_user_with_injected_collaborators(config_source, directory, notifier, settings):
    result = await provision_user(
        "Jane Doe",
        "jdoe@example.com",
        "jdoe",
        group_ids=("g1", "g2"),
        license_sku_id="SKU1",
        send_notification=True,
        config=config_source,
        directory=directory,
        notifier=notifier,
        settings=settings,
    )

    assert result.success is True
    assert directory.group_members["g1"] == [result.account_id]
    assert directory.group_members["g2"] == [result.account_id]
    assert len(notifier.messages) == 1
    assert directory.disconnect_calls == 1


@pytest.mark.asyncio
async def test_provision_user_uses_configured_backends(settings):
    result = await provision_user("Jane Doe", "jdoe@example.com", "jdoe", settings=settings)

    assert result.success is True
    assert result.account_id


@pytest.mark.asyncio
async def test_invalid_request_becomes_failure_result(directory, settings):
    result = await provision_user(
        "Jane Doe",
        "jdoe@example.com",
        "",
        directory=directory,
        settings=settings,
    )

    assert result.success is False
    assert result.error.startswith("ValidationError")
    assert "mail_nickname" in result.error
    assert directory.calls == []


@pytest.mark.asyncio
async def test_missing_tenant_reported(directory, settings):
    result = await provision_user(
        "Jane Doe",
        "jdoe@example.com",
        "jdoe",
        config=MappingConfigSource({}),
        directory=directory,
        notifier=MockNotificationSink(),
        settings=settings,
    )

    assert result.success is False
    assert "tenant_id" in result.error
    assert directory.disconnect_calls == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("variable,value", [
    ("PROPAGATION_DELAY_SECONDS", "soon"),
    ("PROPAGATION_DELAY_SECONDS", "-5"),
    ("LOG_LEVEL", "trace"),
])
async def test_invalid_environment_becomes_failure_result(
    fresh_settings, monkeypatch, config_source, directory, notifier, variable, value
):
    monkeypatch.setenv(variable, value)

    result = await provision_user(
        "Jane Doe",
        "jdoe@example.com",
        "jdoe",
        config=config_source,
        directory=directory,
        notifier=notifier,
    )

    assert result.success is False
    assert result.error.startswith("ConfigurationError")
    assert variable.lower() in result.error
    assert result.account_id is None
    assert directory.accounts == {}
    assert directory.calls == ["disconnect"]


@pytest.mark.asyncio
async def test_mistyped_directory_provider_does_not_fall_back_to_mock(fresh_settings, monkeypatch):
    monkeypatch.setenv("DIRECTORY_PROVIDER", "grpah")

    result = await provision_user("Jane Doe", "jdoe@example.com", "jdoe")

    assert result.success is False
    assert "directory_provider" in result.error
    assert result.credential is None


def test_cli_prints_json_result(monkeypatch, capsys, settings):
    monkeypatch.setattr("identity_provisioner.cli.get_settings", lambda: settings)

    exit_code = cli.main([
        "--display-name", "Jane Doe",
        "--upn", "jdoe@example.com",
        "--mail-nickname", "jdoe",
        "--group", "g1",
        "--group", "g2",
        "--license", "SKU1",
        "--notify",
        "--json",
        "--show-password",
    ])

    assert exit_code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["success"] is True
    assert output["upn"] == "jdoe@example.com"
    assert output["displayName"] == "Jane Doe"
    assert len(output["password"]) == 12
    assert output["warnings"] == []


def test_cli_failure_exit_code(monkeypatch, settings):
    monkeypatch.setattr("identity_provisioner.cli.get_settings", lambda: settings)

    exit_code = cli.main([
        "--display-name", " ",
        "--upn", "jdoe@example.com",
        "--mail-nickname", "jdoe",
    ])

    assert exit_code == 1


def test_cli_parser_collects_groups_in_order():
    args = cli.build_parser().parse_args([
        "--display-name", "Jane Doe",
        "--upn", "jdoe@example.com",
        "--mail-nickname", "jdoe",
        "--group", "g2",
        "--group", "g1",
    ])

    assert args.group_ids == ["g2", "g1"]
    assert args.send_notification is False
    assert args.license_sku_id is None


def test_cli_reports_invalid_environment(fresh_settings, monkeypatch, capsys):
    monkeypatch.setenv("NOTIFICATION_PROVIDER", "smtp")

    exit_code = cli.main([
        "--display-name", "Jane Doe",
        "--upn", "jdoe@example.com",
        "--mail-nickname", "jdoe",
        "--json",
    ])

    assert exit_code == 1
    output = json.loads(capsys.readouterr().out)
    assert output["success"] is False
    assert output["error"].startswith("ConfigurationError")
    assert "notification_provider" in output["error"]

