"""Supabase clients bound to one caller, with the session kept in cookies."""

from __future__ import annotations

import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, List, Optional, Protocol

import httpx
from pydantic import ValidationError
from supabase import (
    AsyncClient,
    AsyncClientOptions,
    AuthApiError,
    AuthError,
    PostgrestAPIError,
    SupabaseException,
)
from supabase_auth import AsyncMemoryStorage, AsyncSupportedStorage
from supabase_auth.constants import STORAGE_KEY

from ..models.config import AppConfig, EnvSettings
from ..models.session import AuthUser

logger = logging.getLogger(__name__)

BASE64_PREFIX = "base64-"
CHUNK_SIZE = 3180
VERIFIER_MAX_AGE = 600


class UpstreamError(Exception):
    """Error returned by, or raised while reaching, the external service."""

    kind = "upstream"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        code: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.code = code


class NotConfiguredError(UpstreamError):
    """Supabase URL or public key is missing from the environment."""


@dataclass(frozen=True)
class CookieOptions:
    """Attributes applied when a session cookie is written."""

    path: str = "/"
    max_age: Optional[int] = None
    httponly: bool = True
    secure: bool = False
    samesite: str = "lax"


class CookieMethods(Protocol):
    """Cookie operations a server-context client is bound to."""

    def get(self, name: str) -> Optional[str]: ...

    def set(self, name: str, value: str, options: CookieOptions) -> None: ...

    def remove(self, name: str, options: CookieOptions) -> None: ...


def encode_cookie_value(value: str) -> str:
    """Encode a stored value so it is safe inside a cookie."""
    encoded = base64.urlsafe_b64encode(value.encode("utf-8")).rstrip(b"=").decode("ascii")
    return BASE64_PREFIX + encoded


def decode_cookie_value(value: str) -> Optional[str]:
    """Reverse ``encode_cookie_value``. Values without the prefix pass through."""
    if not value.startswith(BASE64_PREFIX):
        return value
    encoded = value[len(BASE64_PREFIX):]
    try:
        raw = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4))
        return raw.decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return None


class CookieSessionStorage(AsyncSupportedStorage):
    """Auth storage for the Supabase client, backed by request cookies.

    The session lives in ``<prefix>-auth-token``. A value too large for one
    cookie is split into ``<prefix>-auth-token.0``, ``.1`` and so on. The PKCE
    code verifier is kept in ``<prefix>-auth-token-code-verifier`` until the
    sign-in callback. Every write goes through the bound cookie operations,
    so the request and the response both see it.
    """

    def __init__(self, cookies: CookieMethods, config: AppConfig):
        self.cookies = cookies
        self.config = config

    def cookie_name(self, key: str) -> str:
        if key.startswith(STORAGE_KEY):
            return self.config.session_cookie_name + key[len(STORAGE_KEY):]
        return f"{self.config.cookie_prefix}-{key}"

    def _options(self, name: str, remove: bool = False) -> CookieOptions:
        if remove:
            max_age = 0
        elif name == self.config.verifier_cookie_name:
            max_age = VERIFIER_MAX_AGE
        else:
            max_age = self.config.cookie_max_age_seconds
        return CookieOptions(max_age=max_age, secure=self.config.cookie_secure)

    def _present(self, name: str) -> List[str]:
        """Names of the cookies currently holding ``name``, chunks included."""
        present = [name] if self.cookies.get(name) else []
        index = 0
        while self.cookies.get(f"{name}.{index}"):
            present.append(f"{name}.{index}")
            index += 1
        return present

    async def get_item(self, key: str) -> Optional[str]:
        name = self.cookie_name(key)
        value = self.cookies.get(name)
        if not value:
            chunks = []
            while True:
                chunk = self.cookies.get(f"{name}.{len(chunks)}")
                if not chunk:
                    break
                chunks.append(chunk)
            value = "".join(chunks)
        if not value:
            return None
        return decode_cookie_value(value)

    async def set_item(self, key: str, value: str) -> None:
        name = self.cookie_name(key)
        encoded = encode_cookie_value(value)
        options = self._options(name)

        if len(encoded) <= CHUNK_SIZE:
            written = {name: encoded}
        else:
            written = {
                f"{name}.{i}": encoded[start:start + CHUNK_SIZE]
                for i, start in enumerate(range(0, len(encoded), CHUNK_SIZE))
            }

        for cookie, part in written.items():
            self.cookies.set(cookie, part, options)
        for stale in self._present(name):
            if stale not in written:
                self.cookies.remove(stale, self._options(name, remove=True))

    async def remove_item(self, key: str) -> None:
        name = self.cookie_name(key)
        for cookie in self._present(name):
            self.cookies.remove(cookie, self._options(name, remove=True))


def _upstream_from(error: Exception, action: str) -> UpstreamError:
    if isinstance(error, PostgrestAPIError):
        code = str(error.code) if error.code is not None else None
        return UpstreamError(error.message or f"{action} failed", code=code)
    if isinstance(error, AuthError):
        return UpstreamError(
            error.message, status_code=getattr(error, "status", None), code=error.code
        )
    if isinstance(error, httpx.TimeoutException):
        return UpstreamError(f"{action} timed out")
    return UpstreamError(f"Network error during {action}: {error}")


async def fetch_rows(query: Any) -> List[dict]:
    """Execute a query builder and return its rows.

    Raises:
        UpstreamError: If the record store rejects the query or cannot be reached
    """
    try:
        response = await query.execute()
    except (PostgrestAPIError, httpx.HTTPError) as e:
        raise _upstream_from(e, "record store request") from e
    return response.data


async def access_token_for(client: AsyncClient) -> Optional[str]:
    """Access token of the session held by ``client``, if any."""
    try:
        session = await client.auth.get_session()
    except (AuthError, httpx.HTTPError) as e:
        logger.warning(f"Session lookup failed: {e}")
        return None
    return session.access_token if session else None


async def get_user(client: AsyncClient) -> Optional[AuthUser]:
    """Validate the stored session with the provider and return its user.

    Returns None whenever there is no usable session, including when the
    provider cannot be reached or answers with something unreadable. An
    expired session is refreshed once, and the new session is written back
    through the client's storage. A session the provider rejects is cleared.
    On success the client's table queries are authorized as the user.
    """
    try:
        session = await client.auth.get_session()
        if session is None:
            return None
        response = await client.auth.get_user(session.access_token)
        if response is None:
            return None
        user = AuthUser.model_validate(response.user, from_attributes=True)
    except AuthApiError as e:
        logger.warning(f"Session rejected ({e.status}): {e.message}")
        await client.options.storage.remove_item(STORAGE_KEY)
        return None
    except (AuthError, httpx.HTTPError, ValidationError) as e:
        logger.warning(f"Session lookup failed: {e}")
        return None

    client.postgrest.auth(session.access_token)
    return user


async def sign_in_url(client: AsyncClient, provider: str, redirect_to: str) -> str:
    """Start a PKCE sign-in and return the provider authorize URL.

    The code verifier is written to the client's storage until the callback.
    """
    response = await client.auth.sign_in_with_oauth(
        {"provider": provider, "options": {"redirect_to": redirect_to}}
    )
    return response.url


async def exchange_code_for_session(client: AsyncClient, code: str) -> Optional[AuthUser]:
    """Exchange an authorization code for a session and store it.

    Raises:
        UpstreamError: If the provider rejects the code or cannot be reached
    """
    try:
        response = await client.auth.exchange_code_for_session({"auth_code": code})
    except (AuthError, httpx.HTTPError) as e:
        raise _upstream_from(e, "code exchange") from e
    if response.user is None:
        return None
    return AuthUser.model_validate(response.user, from_attributes=True)


async def sign_out(client: AsyncClient) -> None:
    """Revoke the session with the provider and clear it from storage."""
    try:
        await client.auth.sign_out()
    except (AuthError, httpx.HTTPError) as e:
        logger.warning(f"Sign-out request failed: {e}")
    finally:
        await client.options.storage.remove_item(STORAGE_KEY)


class SupabaseClientFactory:
    """Builds per-caller clients. No client is shared between callers.

    All clients send their HTTP traffic through one connection pool, closed
    by ``aclose``. ``realtime`` replaces the websocket client of each built
    client when given, the way ``transport`` replaces the HTTP one.
    """

    def __init__(
        self,
        env_settings: EnvSettings,
        config: AppConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        realtime: Optional[Any] = None,
    ):
        self.env_settings = env_settings
        self.config = config
        self.transport = transport
        self.realtime = realtime
        self._http: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return self.env_settings.is_configured

    @property
    def http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=self.config.request_timeout_seconds,
                transport=self.transport,
                follow_redirects=True,
            )
        return self._http

    async def aclose(self) -> None:
        http, self._http = self._http, None
        if http is not None:
            await http.aclose()

    def _options(self, storage: AsyncSupportedStorage) -> AsyncClientOptions:
        return AsyncClientOptions(
            storage=storage,
            auto_refresh_token=False,
            persist_session=True,
            flow_type="pkce",
            httpx_client=self.http_client,
        )

    def _create(self, options: AsyncClientOptions) -> AsyncClient:
        if not self.is_configured:
            raise NotConfiguredError("Supabase URL or anon key is not configured")
        try:
            client = AsyncClient(
                self.env_settings.supabase_url,
                self.env_settings.supabase_anon_key,
                options,
            )
        except SupabaseException as e:
            raise NotConfiguredError(e.message) from e
        if self.realtime is not None:
            client.realtime = self.realtime()
        return client

    def browser_client(self, access_token: Optional[str] = None) -> AsyncClient:
        """Client for a caller that holds its token directly (no cookie jar)."""
        options = self._options(AsyncMemoryStorage())
        if access_token:
            options.headers["Authorization"] = f"Bearer {access_token}"
        return self._create(options)

    def server_client(self, cookies: CookieMethods) -> AsyncClient:
        """Client whose session storage is one request's cookie operations."""
        return self._create(self._options(CookieSessionStorage(cookies, self.config)))
