"""Client for the identity provider's administrative REST API (Supabase GoTrue).

Only the two calls provisioning needs are implemented: fetching an identity
by key and updating its metadata. Transport errors, non-2xx responses and
unreadable bodies are raised as ``IdentityProviderError``; a 404 on lookup
is reported as ``None``.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import requests

from scripts.provisioning.config import IdentityProviderConfig
from scripts.provisioning.errors import IdentityProviderError
from scripts.provisioning.models import Identity

logger = logging.getLogger("provisioning.identity_provider")


def _identity_from_payload(data: dict[str, Any]) -> Identity:
    # Some GoTrue versions wrap the user object
    user = data.get("user", data)
    return Identity(
        key=str(user["id"]),
        email=user.get("email"),
        user_metadata=dict(user.get("user_metadata") or {}),
        app_metadata=dict(user.get("app_metadata") or {}),
    )


class IdentityProviderClient:
    def __init__(self, config: IdentityProviderConfig) -> None:
        self._base = f"{config.url.rstrip('/')}/auth/v1/admin"
        self._timeout = config.request_timeout_s
        self._session = requests.Session()
        self._session.headers.update({
            "apikey": config.service_role_key,
            "Authorization": f"Bearer {config.service_role_key}",
            "Content-Type": "application/json",
        })

    def close(self) -> None:
        self._session.close()

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self._base}{path}"
        try:
            return self._session.request(method, url, timeout=self._timeout, **kwargs)
        except requests.RequestException as exc:
            raise IdentityProviderError(f"{method} {path} failed: {exc}") from exc

    @staticmethod
    def _raise_for_status(resp: requests.Response, action: str) -> None:
        if resp.ok:
            return
        detail = resp.text[:500]
        raise IdentityProviderError(
            f"{action} returned HTTP {resp.status_code}: {detail}",
            status_code=resp.status_code,
        )

    @staticmethod
    def _parse_identity(resp: requests.Response, action: str) -> Identity:
        # Gateways can answer 2xx with an HTML body
        try:
            return _identity_from_payload(resp.json())
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            raise IdentityProviderError(
                f"{action} returned an unreadable body: {exc!r}",
                status_code=resp.status_code,
            ) from exc

    def get_identity_by_id(self, key: str) -> Optional[Identity]:
        """Fetch an identity with its metadata. Returns None if unknown."""
        resp = self._request("GET", f"/users/{key}")
        if resp.status_code == 404:
            return None
        self._raise_for_status(resp, "get_identity_by_id")
        return self._parse_identity(resp, "get_identity_by_id")

    def update_identity_metadata(
        self,
        key: str,
        user_metadata: Optional[dict[str, Any]] = None,
        app_metadata: Optional[dict[str, Any]] = None,
    ) -> Identity:
        """Merge the given fields into the identity's metadata maps."""
        body: dict[str, Any] = {}
        if user_metadata is not None:
            body["user_metadata"] = user_metadata
        if app_metadata is not None:
            body["app_metadata"] = app_metadata
        resp = self._request("PUT", f"/users/{key}", json=body)
        self._raise_for_status(resp, "update_identity_metadata")
        identity = self._parse_identity(resp, "update_identity_metadata")
        logger.debug("Updated metadata", extra={"identity": key})
        return identity
