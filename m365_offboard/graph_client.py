"""Microsoft Graph helper utilities."""
from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Optional
from urllib.parse import quote

import msal
import requests

from .config import GraphConfig


GRAPH_SCOPE = ["https://graph.microsoft.com/.default"]

logger = logging.getLogger(__name__)


class GraphClientError(RuntimeError):
    """Base exception for Microsoft Graph client operations."""


class GraphConfigurationError(GraphClientError):
    """Raised when the Microsoft Graph integration is not configured."""


class GraphError(GraphClientError):
    """Raised when the Microsoft Graph API returns an error."""

    def __init__(self, status_code: int, error: str, description: str) -> None:
        super().__init__(f"{status_code}: {error} - {description}")
        self.status_code = status_code
        self.error = error
        self.description = description


class GraphClient:
    """Lightweight Microsoft Graph client for user lifecycle operations."""

    def __init__(self, config: GraphConfig, session: Optional[requests.Session] = None) -> None:
        if not config.has_credentials:
            raise GraphConfigurationError(
                "Microsoft Graph credentials are not configured. "
                "Provide tenant_id, client_id, and client_secret."
            )

        self._config = config
        self._authority = f"https://login.microsoftonline.com/{config.tenant_id}"
        try:
            self._app = msal.ConfidentialClientApplication(
                client_id=config.client_id,
                client_credential=config.client_secret,
                authority=self._authority,
            )
        except (ValueError, requests.RequestException) as exc:
            # msal resolves the tenant authority over the network at construction.
            raise GraphClientError(f"Unable to initialise Microsoft Graph authentication: {exc}") from exc
        self._token_lock = threading.Lock()
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def __enter__(self) -> "GraphClient":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()

    # ------------------------------------------------------------------ #
    # Token handling / HTTP helpers                                      #
    # ------------------------------------------------------------------ #
    def _acquire_token(self) -> str:
        with self._token_lock:
            result = self._app.acquire_token_silent(GRAPH_SCOPE, account=None)
            if not result:
                result = self._app.acquire_token_for_client(scopes=GRAPH_SCOPE)

        if "access_token" not in result:
            raise GraphError(
                status_code=0,
                error=result.get("error", "token_error"),
                description=result.get("error_description", "Unable to acquire Graph token."),
            )
        return str(result["access_token"])

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        url = path if path.startswith("https://") else self._config.base_url + path
        headers = kwargs.pop("headers", {}) or {}
        headers.setdefault("Authorization", f"Bearer {self._acquire_token()}")
        headers.setdefault("Accept", "application/json")
        if "json" in kwargs:
            headers.setdefault("Content-Type", "application/json")

        logger.debug("Graph request %s %s", method, url)
        response = self._session.request(
            method,
            url,
            timeout=self._config.timeout,
            headers=headers,
            **kwargs,
        )
        if response.status_code == 204:
            return {}

        if response.status_code >= 400:
            try:
                payload = response.json()
                error = payload.get("error", {})
                code = error.get("code", "GraphError")
                message = error.get("message", response.text)
            except ValueError:
                code = "GraphError"
                message = response.text or "Unknown Graph error."
            raise GraphError(response.status_code, code, message)

        if not response.content:
            return {}
        return response.json()

    def _paged(self, path: str, params: Optional[Dict[str, str]] = None) -> Iterator[Dict[str, Any]]:
        """Yield every item of a collection, following ``@odata.nextLink``."""

        result = self._request("GET", path, params=params)
        while True:
            for item in result.get("value", []):
                yield item
            next_link = result.get("@odata.nextLink")
            if not next_link:
                return
            # nextLink already carries the original query string.
            result = self._request("GET", next_link)

    def test_connection(self) -> None:
        self._request("GET", "/organization", params={"$select": "id"})

    # ------------------------------------------------------------------ #
    # User helpers                                                       #
    # ------------------------------------------------------------------ #
    @staticmethod
    def _user_path(user: str) -> str:
        return f"/users/{quote(user, safe='@')}"

    def get_user(self, user: str, select: Optional[str] = None) -> Dict[str, Any]:
        params = {"$select": select} if select else None
        return self._request("GET", self._user_path(user), params=params)

    def update_user(self, user: str, **fields: Any) -> Dict[str, Any]:
        payload = {key: value for key, value in fields.items() if value is not None}
        if not payload:
            return {}
        return self._request("PATCH", self._user_path(user), json=payload)

    def revoke_sign_in_sessions(self, user: str) -> Dict[str, Any]:
        return self._request("POST", f"{self._user_path(user)}/revokeSignInSessions")

    def assign_license(
        self,
        user: str,
        add: Iterable[Dict[str, Any]] = (),
        remove_skus: Iterable[str] = (),
    ) -> Dict[str, Any]:
        payload = {
            "addLicenses": list(add),
            "removeLicenses": list(remove_skus),
        }
        return self._request("POST", f"{self._user_path(user)}/assignLicense", json=payload)

    # ------------------------------------------------------------------ #
    # Group helpers                                                      #
    # ------------------------------------------------------------------ #
    def list_member_of(self, user: str) -> List[Dict[str, Any]]:
        """Return every directory object the user is a direct member of."""

        params = {
            "$select": "id,displayName,groupTypes,membershipRule,onPremisesSyncEnabled,mailEnabled,securityEnabled",
            "$top": "100",
        }
        return list(self._paged(f"{self._user_path(user)}/memberOf", params=params))

    def remove_user_from_group(self, user_id: str, group_id: str) -> None:
        self._request("DELETE", f"/groups/{group_id}/members/{user_id}/$ref")


__all__ = [
    "GraphClient",
    "GraphClientError",
    "GraphConfigurationError",
    "GraphError",
]
