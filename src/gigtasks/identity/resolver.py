# SPDX-License-Identifier: Apache-2.0
from __future__ import annotations

"""
Caller identity and external (payment-system) identities.

The user service is the source of truth:
- `GET /api/v1/users/me` (bearer credential) -> {"id": <int>, ...}
- `GET /api/v1/users/{id}` (bearer credential) -> {"keycloakId": <str>, ...}

Status mapping:
    401/403              -> Unauthenticated
    404 on /me           -> Unauthenticated (credential maps to no user)
    404 on /{id}         -> UpstreamUnavailable (no external identity yet)
    5xx, timeouts, I/O   -> UpstreamUnavailable
"""

from typing import Any, Protocol, runtime_checkable

import httpx

from ..core.logging import get_logger
from ..core.types import Credential, ExternalId, UserId
from ..errors import Unauthenticated, UpstreamUnavailable


@runtime_checkable
class IdentityResolver(Protocol):
    async def resolve(self, credential: Credential) -> UserId:
        """Return the caller's user id or raise Unauthenticated / UpstreamUnavailable."""

    async def external_id(self, user_id: UserId, credential: Credential) -> ExternalId:
        """Return the user's payment-system identity or raise UpstreamUnavailable."""


class HttpIdentityResolver:
    """IdentityResolver backed by the user service over HTTP (httpx)."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.timeout_sec = timeout_sec
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout_sec)
        self.log = get_logger("identity.http")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _get(self, path: str, credential: Credential) -> dict[str, Any] | None:
        try:
            resp = await self._client.get(
                path,
                headers={"Authorization": f"Bearer {credential}"},
                timeout=self.timeout_sec,
            )
        except httpx.TimeoutException as e:
            raise UpstreamUnavailable(f"user service timed out on {path}") from e
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"user service unreachable: {e.__class__.__name__}") from e

        if resp.status_code in (401, 403):
            raise Unauthenticated("credential rejected by user service")
        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            self.log.warning(
                "identity.upstream.error", event="identity.upstream_error", path=path, status=resp.status_code
            )
            raise UpstreamUnavailable(f"user service returned {resp.status_code}")
        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamUnavailable("user service returned malformed JSON") from e
        if not isinstance(body, dict):
            raise UpstreamUnavailable("user service returned an unexpected body")
        return body

    async def resolve(self, credential: Credential) -> UserId:
        if not credential:
            raise Unauthenticated("missing credential")
        body = await self._get("/api/v1/users/me", credential)
        if body is None or body.get("id") is None:
            raise Unauthenticated("credential does not map to a user")
        try:
            return int(body["id"])
        except (TypeError, ValueError) as e:
            raise UpstreamUnavailable("user service returned a non-numeric id") from e

    async def external_id(self, user_id: UserId, credential: Credential) -> ExternalId:
        body = await self._get(f"/api/v1/users/{user_id}", credential)
        ext = body.get("keycloakId") if body else None
        if not ext:
            raise UpstreamUnavailable(f"no external identity for user {user_id}")
        return str(ext)
