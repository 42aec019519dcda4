import contextlib
import json
from unittest.mock import patch

import pytest
import requests
from typer.testing import CliRunner

from m365_offboard import cli
from m365_offboard import session as session_module
from m365_offboard.config import AppConfig, ConfigurationError, GraphConfig
from m365_offboard.graph_client import GraphConfigurationError
from m365_offboard.session import OffboardingSession
from tests.fakes import USER, FakeDirectory, FakeMailbox


runner = CliRunner()


@pytest.fixture
def ports(calls, directory, mailbox):
    return directory, mailbox


@pytest.fixture
def app_config():
    return AppConfig()


@pytest.fixture(autouse=True)
def patched(app_config, ports):
    directory, mailbox = ports

    @contextlib.contextmanager
    def fake_session(config):
        yield OffboardingSession(directory=directory, mailbox=mailbox)

    with patch.object(cli, "load_config", return_value=app_config), patch.object(
        cli, "configure_logging"
    ), patch.object(cli, "offboarding_session", side_effect=fake_session) as session:
        yield session


def test_offboard_success(ports):
    result = runner.invoke(cli.app, ["offboard", USER, "--forward-to", "manager@contoso.com", "--yes"])

    assert result.exit_code == 0, result.output
    assert f"Offboarding report for {USER}: SUCCESS" in result.output
    assert ports[0].enabled is False


def test_offboard_requires_confirmation(ports):
    result = runner.invoke(cli.app, ["offboard", USER], input="n\n")

    assert result.exit_code == 1
    assert ports[0].calls == []


def test_offboard_json_report():
    result = runner.invoke(cli.app, ["offboard", USER, "--yes", "--json"])

    assert result.exit_code == 0
    payload = json.loads(result.output)
    assert payload["reference"] == USER
    assert payload["state"] == "DONE"
    forwarding = next(step for step in payload["steps"] if step["name"] == "mailbox-forwarding")
    assert forwarding["status"] == "SKIPPED"


def test_message_overrides_reach_mailbox(ports, app_config):
    result = runner.invoke(
        cli.app,
        ["offboard", USER, "--yes", "--internal-message", "Bye {display_name}", "--external-message", "Gone"],
    )

    assert result.exit_code == 0
    assert ("set_auto_reply", USER, "Bye Jane Doe", "Gone") in ports[1].calls


def test_partial_run_exit_codes(ports):
    ports[1].available = False

    result = runner.invoke(cli.app, ["offboard", USER, "--yes"])
    assert result.exit_code == 0
    assert "PARTIAL" in result.output

    result = runner.invoke(cli.app, ["offboard", USER, "--yes", "--strict"])
    assert result.exit_code == cli.EXIT_PARTIAL_STRICT


def test_fatal_failure_exits_one(ports):
    ports[0].failures["disable_sign_in"] = RuntimeError("403 Authorization_RequestDenied")

    result = runner.invoke(cli.app, ["offboard", USER, "--yes"])

    assert result.exit_code == cli.EXIT_FAILED
    assert "Run aborted at 'disable-sign-in'" in result.output


def test_configuration_error(patched):
    with patch.object(cli, "load_config", side_effect=ConfigurationError("bad settings")):
        result = runner.invoke(cli.app, ["offboard", USER, "--yes"])

    assert result.exit_code == cli.EXIT_FAILED
    patched.assert_not_called()


def test_missing_graph_credentials(patched):
    patched.side_effect = GraphConfigurationError("Microsoft Graph credentials are not configured.")

    result = runner.invoke(cli.app, ["offboard", USER, "--yes"])

    assert result.exit_code == cli.EXIT_FAILED


def test_blank_reference_is_rejected(ports):
    result = runner.invoke(cli.app, ["offboard", "   ", "--yes"])

    assert result.exit_code == cli.EXIT_FAILED
    assert ports[0].calls == []


def test_probe(ports):
    result = runner.invoke(cli.app, ["probe"])

    assert result.exit_code == 0
    assert "Identity directory: available" in result.output
    assert "Mailbox service: available" in result.output


def test_probe_unavailable_directory(calls, mailbox):
    directory = FakeDirectory(calls)
    directory.available = False

    @contextlib.contextmanager
    def fake_session(config):
        yield OffboardingSession(directory=directory, mailbox=FakeMailbox(calls, available=False))

    with patch.object(cli, "offboarding_session", side_effect=fake_session):
        result = runner.invoke(cli.app, ["probe"])

    assert result.exit_code == cli.EXIT_FAILED
    assert "Identity directory: unavailable" in result.output
    assert "Mailbox service: unavailable" in result.output


def test_connectivity_check_reports_network_failure():
    config = AppConfig(graph=GraphConfig(tenant_id="tenant", client_id="client", client_secret="secret"))

    with patch.object(cli, "load_config", return_value=config), patch.object(
        cli, "offboarding_session", side_effect=session_module.offboarding_session
    ), patch("m365_offboard.graph_client.msal.ConfidentialClientApplication") as factory, patch(
        "m365_offboard.graph_client.requests.Session"
    ) as http:
        factory.return_value.acquire_token_silent.return_value = {"access_token": "token-123"}
        http.return_value.request.side_effect = requests.ConnectionError("dns failure")
        result = runner.invoke(cli.app, ["probe"])

    assert not isinstance(result.exception, requests.ConnectionError)
    assert result.exit_code == cli.EXIT_FAILED
    assert "Identity directory: unavailable" in result.output
    assert "Mailbox service: unavailable" in result.output
