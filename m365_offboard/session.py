"""Scoped connections to the identity directory and the mailbox service."""
from __future__ import annotations

import contextlib
import logging
from typing import Iterator, NamedTuple

from .config import AppConfig
from .directory import GraphIdentityDirectory, IdentityDirectoryPort
from .exchange_client import ExchangeClient
from .graph_client import GraphClient
from .mailbox import ExchangeMailboxService, MailboxPort, UnavailableMailboxService


logger = logging.getLogger(__name__)


class OffboardingSession(NamedTuple):
    directory: IdentityDirectoryPort
    mailbox: MailboxPort


def _close_quietly(name: str, resource) -> None:
    try:
        resource.close()
    except Exception as exc:
        logger.debug("Ignoring error while closing %s: %s", name, exc)


def build_mailbox(config: AppConfig) -> MailboxPort:
    if not config.exchange.has_credentials:
        return UnavailableMailboxService()
    return ExchangeMailboxService(
        ExchangeClient(config.exchange),
        hide_from_address_lists=config.offboarding.hide_from_address_lists,
        deliver_to_mailbox_and_forward=config.offboarding.deliver_to_mailbox_and_forward,
    )


@contextlib.contextmanager
def offboarding_session(config: AppConfig) -> Iterator[OffboardingSession]:
    """Open both ports and close each exactly once, whatever happens inside."""

    directory = GraphIdentityDirectory(GraphClient(config.graph))
    try:
        mailbox = build_mailbox(config)
    except Exception:
        _close_quietly("identity directory", directory)
        raise

    try:
        yield OffboardingSession(directory=directory, mailbox=mailbox)
    finally:
        _close_quietly("mailbox service", mailbox)
        _close_quietly("identity directory", directory)


__all__ = ["OffboardingSession", "build_mailbox", "offboarding_session"]
