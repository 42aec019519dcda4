"""Identity directory contract and its Microsoft Graph adapter."""
from __future__ import annotations

import contextlib
import logging
from abc import ABC, abstractmethod
from typing import Iterator, List, Sequence

import requests

from .graph_client import GraphClient, GraphClientError, GraphError
from .models import GroupMembership, Identity


logger = logging.getLogger(__name__)

_IDENTITY_SELECT = "id,userPrincipalName,displayName,accountEnabled,assignedLicenses"


class DirectoryError(RuntimeError):
    """Base exception for identity directory operations."""


class IdentityNotFound(DirectoryError):
    pass


class DirectoryUnauthorized(DirectoryError):
    pass


class DirectoryPermissionDenied(DirectoryError):
    pass


class DirectoryConflict(DirectoryError):
    pass


class IdentityDirectoryPort(ABC):
    """Identity mutations required to deactivate an account."""

    @abstractmethod
    def get_identity(self, reference: str) -> Identity:
        """Return the identity snapshot including its license grants."""

    @abstractmethod
    def disable_sign_in(self, reference: str) -> None:
        """Block sign-in. Disabling an already disabled account succeeds."""

    @abstractmethod
    def set_one_time_credential(self, reference: str, credential: str) -> None:
        """Replace the password. The value must never be logged or returned."""

    @abstractmethod
    def revoke_all_sessions(self, reference: str) -> None:
        """Invalidate every refresh and session token issued to the identity."""

    @abstractmethod
    def list_group_memberships(self, reference: str) -> List[GroupMembership]:
        """Return all group memberships, across every result page."""

    @abstractmethod
    def remove_group_membership(self, reference: str, group_id: str) -> None:
        """Remove a single membership."""

    @abstractmethod
    def remove_license_grants(self, reference: str, sku_ids: Sequence[str]) -> None:
        """Remove the given grants. An empty sequence is a successful no-op."""

    def probe_availability(self) -> bool:
        return True

    def close(self) -> None:
        """Release any held connection."""


_STATUS_ERRORS = {
    401: DirectoryUnauthorized,
    403: DirectoryPermissionDenied,
    404: IdentityNotFound,
    409: DirectoryConflict,
}


@contextlib.contextmanager
def _translate_graph_errors(action: str, reference: str) -> Iterator[None]:
    try:
        yield
    except GraphError as exc:
        error_cls = _STATUS_ERRORS.get(exc.status_code, DirectoryError)
        # Graph reports some conflicts (e.g. dynamic or role-assignable groups) as 400.
        if exc.status_code == 400 and "Request_BadRequest" in exc.error:
            error_cls = DirectoryConflict
        raise error_cls(f"Unable to {action} for {reference}: {exc}") from exc


class GraphIdentityDirectory(IdentityDirectoryPort):
    """Entra ID directory backed by :class:`GraphClient`."""

    def __init__(self, client: GraphClient) -> None:
        self._client = client
        self._object_ids: dict[str, str] = {}

    def _object_id(self, reference: str) -> str:
        cached = self._object_ids.get(reference)
        if cached:
            return cached
        return self.get_identity(reference).object_id

    def probe_availability(self) -> bool:
        try:
            self._client.test_connection()
        except (GraphClientError, requests.RequestException) as exc:
            logger.warning("Microsoft Graph connection test failed: %s", exc)
            return False
        return True

    def get_identity(self, reference: str) -> Identity:
        with _translate_graph_errors("read identity", reference):
            data = self._client.get_user(reference, select=_IDENTITY_SELECT)
        identity = Identity.from_graph(reference, data)
        if identity.object_id:
            self._object_ids[reference] = identity.object_id
        logger.info(
            "Resolved %s (%s) with %s license grant(s).",
            reference,
            identity.object_id,
            len(identity.license_sku_ids),
        )
        return identity

    def disable_sign_in(self, reference: str) -> None:
        with _translate_graph_errors("disable sign-in", reference):
            self._client.update_user(reference, accountEnabled=False)

    def set_one_time_credential(self, reference: str, credential: str) -> None:
        with _translate_graph_errors("reset credential", reference):
            self._client.update_user(
                reference,
                passwordProfile={
                    "forceChangePasswordNextSignIn": True,
                    "password": credential,
                },
            )

    def revoke_all_sessions(self, reference: str) -> None:
        with _translate_graph_errors("revoke sessions", reference):
            self._client.revoke_sign_in_sessions(reference)

    def list_group_memberships(self, reference: str) -> List[GroupMembership]:
        with _translate_graph_errors("list group memberships", reference):
            entries = self._client.list_member_of(reference)
        memberships = [GroupMembership.from_graph(entry) for entry in entries]
        groups = [membership for membership in memberships if membership.is_group and membership.group_id]
        excluded = len(memberships) - len(groups)
        if excluded:
            logger.debug("Ignoring %s non-group memberOf entries for %s.", excluded, reference)
        return groups

    def remove_group_membership(self, reference: str, group_id: str) -> None:
        with _translate_graph_errors(f"remove membership of group {group_id}", reference):
            self._client.remove_user_from_group(self._object_id(reference), group_id)

    def remove_license_grants(self, reference: str, sku_ids: Sequence[str]) -> None:
        skus = [sku for sku in sku_ids if sku]
        if not skus:
            return
        with _translate_graph_errors("remove license grants", reference):
            self._client.assign_license(reference, add=(), remove_skus=skus)

    def close(self) -> None:
        self._client.close()


__all__ = [
    "DirectoryConflict",
    "DirectoryError",
    "DirectoryPermissionDenied",
    "DirectoryUnauthorized",
    "GraphIdentityDirectory",
    "IdentityDirectoryPort",
    "IdentityNotFound",
]
