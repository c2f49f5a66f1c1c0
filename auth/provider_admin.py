"""
auth/provider_admin.py -- Client for the identity provider's admin REST API.

Two operations are needed by the token adapter:
  set_user_attributes(user_id, claims) -- write application claims onto the
      provider's user record so that newly issued tokens carry them.
  logout_user(user_id) -- end every provider session for the user, which stops
      refresh tokens from minting new access tokens.

The request shapes follow the Keycloak admin API
(PUT /users/{id} with an "attributes" map of string lists, and
POST /users/{id}/logout). Providers with the same semantics behind other
paths can subclass and override _user_url().

A module-style shared requests.Session gives connection pooling;
max_redirects=3 because an admin endpoint has no business redirecting far.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional
from urllib.parse import quote

import requests

from auth.adapter import ClaimsSyncError, ProviderAdminError

logger = logging.getLogger("tokenguard.provider")

_TIMEOUT_SECONDS = 10


def _as_attribute_values(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (list, tuple, set)):
        return [str(v) for v in value]
    if isinstance(value, bool):
        return ["true" if value else "false"]
    return [str(value)]


class ProviderAdminClient:
    """Thin requests wrapper around the provider admin endpoints."""

    def __init__(
        self,
        base_url: str,
        access_token: str,
        session: Optional[requests.Session] = None,
        timeout: int = _TIMEOUT_SECONDS,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._access_token = access_token
        self._timeout = timeout
        if session is None:
            session = requests.Session()
            session.max_redirects = 3
        self._session = session

    def _user_url(self, user_id: str) -> str:
        return f"{self.base_url}/users/{quote(user_id, safe='')}"

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._access_token}", "Content-Type": "application/json"}

    def set_user_attributes(self, user_id: str, claims: Mapping[str, Any]) -> None:
        """Replace the user's custom attributes with claims.

        Raises ClaimsSyncError on any transport or HTTP error status.
        """
        body = {"attributes": {key: _as_attribute_values(value) for key, value in claims.items()}}
        try:
            resp = self._session.put(self._user_url(user_id), json=body, headers=self._headers(), timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Claims sync failed for %s: %s", user_id, e.__class__.__name__)
            raise ClaimsSyncError(f"claims sync failed for {user_id}") from e

    def logout_user(self, user_id: str) -> None:
        """End all provider sessions for user_id. Raises ProviderAdminError on failure."""
        try:
            resp = self._session.post(f"{self._user_url(user_id)}/logout", headers=self._headers(), timeout=self._timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.warning("Provider logout failed for %s: %s", user_id, e.__class__.__name__)
            raise ProviderAdminError(f"provider logout failed for {user_id}") from e
