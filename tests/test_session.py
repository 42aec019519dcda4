from unittest.mock import patch

import pytest

from m365_offboard import session as session_module
from m365_offboard.config import AppConfig, ExchangeConfig, GraphConfig
from m365_offboard.mailbox import ExchangeMailboxService, UnavailableMailboxService
from m365_offboard.session import build_mailbox, offboarding_session


@pytest.fixture
def config():
    return AppConfig(
        graph=GraphConfig(tenant_id="tenant", client_id="client", client_secret="secret"),
        exchange=ExchangeConfig(app_id="client", organization="contoso.onmicrosoft.com", certificate_thumbprint="ABC"),
    )


@pytest.fixture
def clients():
    with patch.object(session_module, "GraphClient") as graph, patch.object(
        session_module, "ExchangeClient"
    ) as exchange:
        yield graph.return_value, exchange.return_value


def test_build_mailbox_without_exchange_settings():
    mailbox = build_mailbox(AppConfig())
    assert isinstance(mailbox, UnavailableMailboxService)


def test_build_mailbox_passes_options(config, clients):
    config.offboarding.hide_from_address_lists = False
    mailbox = build_mailbox(config)

    assert isinstance(mailbox, ExchangeMailboxService)
    assert mailbox.hide_from_address_lists is False


def test_session_closes_each_port_once(config, clients):
    graph, exchange = clients
    with offboarding_session(config) as session:
        assert session.directory is not None
        assert session.mailbox is not None

    graph.close.assert_called_once_with()
    exchange.close.assert_called_once_with()


def test_session_closes_on_error(config, clients):
    graph, exchange = clients
    with pytest.raises(RuntimeError, match="boom"):
        with offboarding_session(config):
            raise RuntimeError("boom")

    graph.close.assert_called_once_with()
    exchange.close.assert_called_once_with()


def test_close_errors_do_not_mask_teardown(config, clients):
    graph, exchange = clients
    exchange.close.side_effect = OSError("pipe closed")

    with offboarding_session(config):
        pass

    graph.close.assert_called_once_with()


def test_directory_closed_when_mailbox_cannot_be_built(config, clients):
    graph, _ = clients
    with patch.object(session_module, "build_mailbox", side_effect=RuntimeError("bad exchange")):
        with pytest.raises(RuntimeError, match="bad exchange"):
            with offboarding_session(config):
                pass

    graph.close.assert_called_once_with()
