"""Bearer token verification against the hosted auth provider.

The provider owns the auth protocol; this service only asks it who a token
belongs to (``GET {auth_url}/user``).
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import httpx

from app.config import get_settings
from app.core.errors import AuthenticationError
from app.core.logging import get_logger

logger = get_logger(__name__)
settings = get_settings()

BEARER_PREFIX = "bearer "


@dataclass(frozen=True)
class AuthenticatedUser:
    id: UUID
    email: str | None = None


def parse_bearer(header: str | None) -> str:
    """Extract the token from an ``Authorization`` header or raise 401."""
    if not header or not header.lower().startswith(BEARER_PREFIX):
        raise AuthenticationError()
    token = header[len(BEARER_PREFIX):].strip()
    if not token:
        raise AuthenticationError()
    return token


class AuthVerifier:
    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        *,
        auth_url: str | None = None,
        api_key: str | None = None,
        dev_bypass: bool | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=settings.auth_timeout_seconds)
        self._owns_client = client is None
        self.auth_url = (auth_url or settings.auth_url).rstrip("/")
        self.api_key = api_key if api_key is not None else settings.auth_api_key
        self.dev_bypass = settings.dev_auth_bypass if dev_bypass is None else dev_bypass

    async def verify(self, token: str) -> AuthenticatedUser:
        if self.dev_bypass:
            try:
                return AuthenticatedUser(id=UUID(token))
            except ValueError:
                raise AuthenticationError() from None

        try:
            resp = await self._client.get(
                f"{self.auth_url}/user",
                headers={
                    "Authorization": f"Bearer {token}",
                    "apikey": self.api_key,
                },
            )
        except httpx.HTTPError as e:
            logger.warning("auth_provider_unreachable", error=str(e))
            raise AuthenticationError() from e

        if resp.status_code != 200:
            logger.info("auth_token_rejected", status_code=resp.status_code)
            raise AuthenticationError()

        data = resp.json()
        try:
            user_id = UUID(str(data.get("id")))
        except (ValueError, TypeError):
            raise AuthenticationError() from None
        return AuthenticatedUser(id=user_id, email=data.get("email"))

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
