"""Bearer-token authentication.

The routing layer only knows the `IdentityVerifier` interface; the Supabase
Auth implementation is used in deployments and the static-token map in local
development and tests.
"""
import abc
import json
import logging
from typing import Dict, Optional

import httpx

from .config import Settings
from .errors import ConfigError, Unauthenticated
from .models import Principal


logger = logging.getLogger("chat_relay.auth")

MISSING_HEADER = "Missing or invalid authorization header"
INVALID_TOKEN = "Invalid or expired token"
AUTH_FAILED = "Authentication failed"


def extract_bearer_token(authorization: Optional[str]) -> str:
    """Return the token from an `Authorization: Bearer <token>` header value."""
    if not authorization or not authorization.startswith("Bearer "):
        raise Unauthenticated(MISSING_HEADER)
    token = authorization[len("Bearer "):].strip()
    if not token:
        raise Unauthenticated(MISSING_HEADER)
    return token


class IdentityVerifier(abc.ABC):
    provider_name: str = "unknown"

    @abc.abstractmethod
    async def verify(self, token: str) -> Principal:
        """Resolve a bearer token to a Principal or raise Unauthenticated."""


class StaticIdentityVerifier(IdentityVerifier):
    provider_name: str = "static"

    def __init__(self, tokens: Dict[str, str]):
        self._tokens = dict(tokens)

    async def verify(self, token: str) -> Principal:
        user_id = self._tokens.get(token)
        if not user_id:
            raise Unauthenticated(INVALID_TOKEN)
        return Principal(user_id=user_id)


class SupabaseIdentityVerifier(IdentityVerifier):
    """Validates access tokens with `GET {SUPABASE_URL}/auth/v1/user`."""

    provider_name: str = "supabase"

    def __init__(
        self,
        url: str,
        anon_key: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        if not url or not anon_key:
            raise ConfigError("SUPABASE_URL and SUPABASE_ANON_KEY are required")
        self._user_url = url.rstrip("/") + "/auth/v1/user"
        self._anon_key = anon_key
        self._timeout = timeout
        self._transport = transport

    async def verify(self, token: str) -> Principal:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                resp = await client.get(self._user_url, headers=headers)
        except httpx.HTTPError as e:
            logger.error(json.dumps({"event": "auth_transport_error", "error": type(e).__name__}))
            raise Unauthenticated(AUTH_FAILED) from e

        if resp.status_code in (401, 403):
            raise Unauthenticated(INVALID_TOKEN)
        if resp.status_code >= 400:
            logger.error(json.dumps({
                "event": "auth_http_error",
                "status": resp.status_code,
                "body": (resp.text or "")[:512],
            }))
            raise Unauthenticated(AUTH_FAILED)

        try:
            user = resp.json()
        except ValueError as e:
            raise Unauthenticated(AUTH_FAILED) from e
        if not isinstance(user, dict) or not user.get("id"):
            raise Unauthenticated(INVALID_TOKEN)
        return Principal(user_id=str(user["id"]), email=user.get("email"))


def get_identity_verifier(settings: Settings, provider: Optional[str] = None) -> IdentityVerifier:
    name = (provider or settings.auth_provider or "supabase").lower()
    if name == "static":
        return StaticIdentityVerifier(settings.static_tokens)
    if name == "supabase":
        return SupabaseIdentityVerifier(
            settings.supabase_url,
            settings.supabase_anon_key,
            timeout=settings.supabase_timeout_seconds,
        )
    raise ConfigError(f"unknown AUTH_PROVIDER {name!r}")
