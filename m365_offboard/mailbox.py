"""Mailbox contract and its Exchange Online adapter."""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from .exchange_client import ExchangeClient, ExchangeClientError
from .models import MailboxState


logger = logging.getLogger(__name__)


class MailboxError(RuntimeError):
    """Raised when a mailbox operation fails."""


class MailboxPort(ABC):
    """Mailbox mutations required to preserve mail data for a departed user."""

    @abstractmethod
    def probe_availability(self) -> bool:
        """Return whether the mailbox service can be reached."""

    @abstractmethod
    def get_mailbox(self, reference: str) -> MailboxState:
        """Return the mailbox state; ``exists`` is false when there is none."""

    def mailbox_exists(self, reference: str) -> bool:
        return self.get_mailbox(reference).exists

    @abstractmethod
    def convert_to_shared(self, reference: str) -> None:
        pass

    @abstractmethod
    def set_forwarding(self, reference: str, target: str) -> None:
        pass

    @abstractmethod
    def set_auto_reply(self, reference: str, internal_message: str, external_message: str) -> None:
        pass

    @abstractmethod
    def remove_distribution_group_member(self, group_id: str, reference: str) -> None:
        """Remove the identity from a mail-enabled group that only Exchange can change."""

    def close(self) -> None:
        """Release any held connection."""


class UnavailableMailboxService(MailboxPort):
    """Stand-in used when Exchange Online is not configured."""

    def __init__(self, reason: str = "Exchange Online is not configured") -> None:
        self.reason = reason

    def probe_availability(self) -> bool:
        logger.warning("Mailbox service unavailable: %s.", self.reason)
        return False

    def _unavailable(self) -> MailboxError:
        return MailboxError(f"Mailbox service unavailable: {self.reason}.")

    def get_mailbox(self, reference: str) -> MailboxState:
        raise self._unavailable()

    def convert_to_shared(self, reference: str) -> None:
        raise self._unavailable()

    def set_forwarding(self, reference: str, target: str) -> None:
        raise self._unavailable()

    def set_auto_reply(self, reference: str, internal_message: str, external_message: str) -> None:
        raise self._unavailable()

    def remove_distribution_group_member(self, group_id: str, reference: str) -> None:
        raise self._unavailable()


class ExchangeMailboxService(MailboxPort):
    """Exchange Online mailbox operations backed by :class:`ExchangeClient`."""

    def __init__(
        self,
        client: ExchangeClient,
        hide_from_address_lists: bool = True,
        deliver_to_mailbox_and_forward: bool = True,
    ) -> None:
        self._client = client
        self.hide_from_address_lists = hide_from_address_lists
        self.deliver_to_mailbox_and_forward = deliver_to_mailbox_and_forward

    def probe_availability(self) -> bool:
        try:
            self._client.test_connection()
        except (ExchangeClientError, OSError) as exc:
            logger.warning("Exchange Online connection test failed: %s", exc)
            return False
        return True

    def get_mailbox(self, reference: str) -> MailboxState:
        try:
            data = self._client.get_mailbox(reference)
        except ExchangeClientError as exc:
            raise MailboxError(str(exc)) from exc
        if data is None:
            return MailboxState.absent()
        return MailboxState.from_exchange(data)

    def convert_to_shared(self, reference: str) -> None:
        try:
            self._client.convert_to_shared(reference, hide_from_address_lists=self.hide_from_address_lists)
        except ExchangeClientError as exc:
            raise MailboxError(str(exc)) from exc

    def set_forwarding(self, reference: str, target: str) -> None:
        try:
            self._client.set_forwarding(reference, target, deliver_to_mailbox=self.deliver_to_mailbox_and_forward)
        except ExchangeClientError as exc:
            raise MailboxError(str(exc)) from exc

    def set_auto_reply(self, reference: str, internal_message: str, external_message: str) -> None:
        try:
            self._client.set_auto_reply(reference, internal_message, external_message)
        except ExchangeClientError as exc:
            raise MailboxError(str(exc)) from exc

    def remove_distribution_group_member(self, group_id: str, reference: str) -> None:
        try:
            self._client.remove_distribution_group_member(group_id, reference)
        except ExchangeClientError as exc:
            raise MailboxError(str(exc)) from exc

    def close(self) -> None:
        self._client.close()


__all__ = ["ExchangeMailboxService", "MailboxError", "MailboxPort", "UnavailableMailboxService"]
