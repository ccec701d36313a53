"""Shared fixtures: an in-memory stand-in for the Supabase project."""

import asyncio
import itertools
import json
import time
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from fastapi.testclient import TestClient
from realtime import RealtimeSubscribeStates

from nyxvaulta.api import create_app
from nyxvaulta.api.dependencies import AppServices
from nyxvaulta.core.change_feed import ChangeFeed
from nyxvaulta.core.supabase_client import (
    CookieOptions,
    SupabaseClientFactory,
    encode_cookie_value,
)
from nyxvaulta.models.config import AppConfig, EnvSettings

SUPABASE_URL = "https://fake-project.supabase.co"
ANON_KEY = "anon-test-key"

BOOKMARK_DEFAULTS = {
    "description": None,
    "folder_id": None,
    "tags": None,
    "favicon_url": None,
    "visit_count": 0,
    "last_visited": None,
    "is_favorite": False,
}


class FakeSupabase:
    """GoTrue, PostgREST and Realtime endpoints backed by dicts.

    Rows are only visible to, and writable by, the user whose access token
    authorizes the request (the owner row rule). Realtime channels only
    receive changes to rows their token's user owns.
    """

    def __init__(self):
        self.access_tokens: Dict[str, str] = {}
        self.refresh_tokens: Dict[str, str] = {}
        self.users: Dict[str, dict] = {}
        self.auth_codes: Dict[str, str] = {}
        self.tables: Dict[str, List[dict]] = {"bookmarks": [], "folders": []}
        self.requests: List[httpx.Request] = []
        self.channels: List["FakeChannel"] = []
        self.rest_failure: Optional[int] = None
        self.auth_down = False
        self.malformed_user = False
        self.realtime_down = False
        self._counter = itertools.count(1)
        self._clock = datetime(2026, 1, 1, tzinfo=timezone.utc)

    # -- test helpers -------------------------------------------------

    def add_user(self, user_id: str, email: Optional[str] = None) -> Tuple[str, str, dict]:
        self.users[user_id] = {
            "id": user_id,
            "aud": "authenticated",
            "role": "authenticated",
            "email": email or f"{user_id}@example.com",
            "app_metadata": {"provider": "google"},
            "user_metadata": {},
            "created_at": "2026-01-01T00:00:00Z",
        }
        access, refresh = self._issue(user_id)
        return access, refresh, self.users[user_id]

    def expire(self, access_token: str) -> None:
        self.access_tokens.pop(access_token, None)

    def add_auth_code(self, code: str, user_id: str) -> None:
        self.auth_codes[code] = user_id

    def count(self, method: str, path: str) -> int:
        return sum(1 for r in self.requests if r.method == method and r.url.path == path)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    # -- request handling ---------------------------------------------

    def _issue(self, user_id: str) -> Tuple[str, str]:
        n = next(self._counter)
        access, refresh = f"access-{user_id}-{n}", f"refresh-{user_id}-{n}"
        self.access_tokens[access] = user_id
        self.refresh_tokens[refresh] = user_id
        return access, refresh

    def _session(self, user_id: str) -> httpx.Response:
        access, refresh = self._issue(user_id)
        return httpx.Response(
            200,
            json={
                "access_token": access,
                "refresh_token": refresh,
                "token_type": "bearer",
                "expires_in": 3600,
                "user": self.users[user_id],
            },
        )

    def _bearer_user(self, request: httpx.Request) -> Optional[str]:
        header = request.headers.get("authorization", "")
        token = header[len("Bearer "):] if header.startswith("Bearer ") else ""
        return self.access_tokens.get(token)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.headers.get("apikey") != ANON_KEY:
            return httpx.Response(401, json={"message": "Invalid API key"})

        path = request.url.path
        if path.startswith("/auth/v1/"):
            if self.auth_down:
                return httpx.Response(503, json={"msg": "auth unavailable"})
            return self._handle_auth(request, path[len("/auth/v1/"):])
        if path.startswith("/rest/v1/"):
            if self.rest_failure:
                return httpx.Response(
                    self.rest_failure,
                    json={
                        "message": "relation internals leaked",
                        "code": "XX000",
                        "hint": None,
                        "details": None,
                    },
                )
            return self._handle_rest(request, path[len("/rest/v1/"):])
        return httpx.Response(404, json={"message": "not found"})

    def _handle_auth(self, request: httpx.Request, endpoint: str) -> httpx.Response:
        if endpoint == "health":
            return httpx.Response(200, json={"name": "GoTrue"})

        if endpoint == "user":
            user_id = self._bearer_user(request)
            if user_id is None:
                return httpx.Response(
                    401, json={"code": "bad_jwt", "msg": "invalid JWT"}
                )
            if self.malformed_user:
                return httpx.Response(200, json={"unexpected": True})
            return httpx.Response(200, json=self.users[user_id])

        if endpoint == "token":
            body = json.loads(request.content or b"{}")
            grant = request.url.params.get("grant_type")
            if grant == "refresh_token":
                user_id = self.refresh_tokens.pop(body.get("refresh_token"), None)
            elif grant == "pkce" and body.get("code_verifier"):
                user_id = self.auth_codes.pop(body.get("auth_code"), None)
            else:
                user_id = None
            if user_id is None:
                return httpx.Response(
                    400,
                    json={"error": "invalid_grant", "error_description": "Invalid grant"},
                )
            return self._session(user_id)

        if endpoint == "logout":
            header = request.headers.get("authorization", "")
            self.access_tokens.pop(header[len("Bearer "):], None)
            return httpx.Response(204)

        return httpx.Response(404, json={"msg": "unknown endpoint"})

    @staticmethod
    def _as_param(value) -> str:
        if isinstance(value, bool):
            return str(value).lower()
        return str(value)

    def _matching(self, request: httpx.Request, rows: List[dict], owner: Optional[str]):
        filters = {
            key: value[len("eq."):]
            for key, value in request.url.params.multi_items()
            if value.startswith("eq.")
        }
        for row in rows:
            if owner is None or row["user_id"] != owner:
                continue
            if all(self._as_param(row.get(k)) == v for k, v in filters.items()):
                yield row

    def _handle_rest(self, request: httpx.Request, table: str) -> httpx.Response:
        rows = self.tables.setdefault(table, [])
        owner = self._bearer_user(request)

        if request.method == "GET":
            found = list(self._matching(request, rows, owner))
            order = request.url.params.get("order")
            if order:
                column, _, direction = order.partition(".")
                found.sort(key=lambda r: r[column], reverse=direction.startswith("desc"))
            return httpx.Response(200, json=found)

        if request.method == "POST":
            row = json.loads(request.content)
            if owner is None or row.get("user_id") != owner:
                return httpx.Response(
                    403,
                    json={
                        "message": "new row violates row-level security policy",
                        "code": "42501",
                        "hint": None,
                        "details": None,
                    },
                )
            stored = {
                **BOOKMARK_DEFAULTS,
                **row,
                "id": str(uuid.uuid4()),
                "created_at": (self._clock + timedelta(minutes=next(self._counter))).isoformat(),
            }
            rows.append(stored)
            self._broadcast(table, "INSERT", stored, record=stored)
            return httpx.Response(201, json=[stored])

        if request.method == "PATCH":
            values = json.loads(request.content)
            updated = []
            for row in list(self._matching(request, rows, owner)):
                row.update(values)
                updated.append(dict(row))
                self._broadcast(table, "UPDATE", row, record=dict(row), old_record={"id": row["id"]})
            return httpx.Response(200, json=updated)

        if request.method == "DELETE":
            removed = list(self._matching(request, rows, owner))
            for row in removed:
                rows.remove(row)
                self._broadcast(table, "DELETE", row, old_record={"id": row["id"]})
            return httpx.Response(200, json=removed)

        return httpx.Response(405, json={"message": "method not allowed"})

    def _broadcast(
        self,
        table: str,
        change_type: str,
        row: dict,
        record: Optional[dict] = None,
        old_record: Optional[dict] = None,
    ) -> None:
        payload = {
            "data": {
                "schema": "public",
                "table": table,
                "commit_timestamp": "2026-01-01T00:00:00Z",
                "type": change_type,
                "errors": None,
                "columns": [],
                "record": record or {},
                "old_record": old_record or {},
            },
            "ids": [1],
        }
        for channel in list(self.channels):
            channel.deliver(payload, row["user_id"])


class FakeChannel:
    """Realtime channel that receives the fake project's row changes."""

    def __init__(self, realtime: "FakeRealtime", topic: str):
        self.realtime = realtime
        self.topic = topic
        self.bindings: List[Tuple[str, Optional[str], Any]] = []
        self.states: List[str] = []
        self.loop: Optional[asyncio.AbstractEventLoop] = None

    def on_postgres_changes(self, event, callback, table=None, schema=None, filter=None):
        self.bindings.append((event, table, callback))
        return self

    async def subscribe(self, callback=None):
        project = self.realtime.project
        if project.realtime_down:
            raise ConnectionError("realtime unavailable")
        self.loop = asyncio.get_running_loop()
        project.channels.append(self)
        if callback is not None:
            callback(RealtimeSubscribeStates.SUBSCRIBED, None)
        self.states.append("SUBSCRIBED")
        return self

    def deliver(self, payload: dict, owner: str) -> None:
        reader = self.realtime.project.access_tokens.get(self.realtime.access_token)
        if reader != owner or self.loop is None or self.loop.is_closed():
            return
        data = payload["data"]
        for event, table, callback in self.bindings:
            if table == data["table"] and event in ("*", data["type"]):
                self.loop.call_soon_threadsafe(callback, payload)


class FakeRealtime:
    """Stands in for the websocket client of one Supabase client."""

    def __init__(self, project: FakeSupabase):
        self.project = project
        self.access_token: Optional[str] = None
        self.channels: List[FakeChannel] = []

    async def set_auth(self, token: Optional[str]) -> None:
        self.access_token = token

    def channel(self, topic: str, params: Optional[dict] = None) -> FakeChannel:
        channel = FakeChannel(self, topic)
        self.channels.append(channel)
        return channel

    async def remove_channel(self, channel: FakeChannel) -> None:
        if channel in self.project.channels:
            self.project.channels.remove(channel)
        if channel in self.channels:
            self.channels.remove(channel)
        channel.states.append("CLOSED")


class DictCookies:
    """Cookie operations over a plain dict, recording every write."""

    def __init__(self, initial: Optional[Dict[str, str]] = None):
        self.jar: Dict[str, str] = dict(initial or {})
        self.writes: List[Tuple[str, str, CookieOptions]] = []

    def get(self, name: str) -> Optional[str]:
        return self.jar.get(name)

    def set(self, name: str, value: str, options: CookieOptions) -> None:
        self.jar[name] = value
        self.writes.append((name, value, options))

    def remove(self, name: str, options: CookieOptions) -> None:
        self.jar.pop(name, None)
        self.writes.append((name, "", options))


def session_json(access_token: str, refresh_token: str, user: dict, expired: bool = False) -> str:
    """Session as the auth client stores it."""
    expires_at = int(time.time()) + (-60 if expired else 3600)
    return json.dumps(
        {
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_type": "bearer",
            "expires_in": 3600,
            "expires_at": expires_at,
            "user": user,
        }
    )


def session_cookies(
    access_token: Optional[str] = None,
    refresh_token: Optional[str] = None,
    user: Optional[dict] = None,
    expired: bool = False,
) -> Dict[str, str]:
    """Session cookie with the default prefix, as the server writes it."""
    if not access_token:
        return {}
    value = session_json(access_token, refresh_token or "", user or {}, expired)
    return {"sb-auth-token": encode_cookie_value(value)}


def cookie_header(
    access_token: Optional[str] = None,
    refresh_token: Optional[str] = None,
    user: Optional[dict] = None,
    expired: bool = False,
) -> Dict[str, str]:
    """Request headers carrying the session cookie with the default prefix."""
    cookies = session_cookies(access_token, refresh_token, user, expired)
    if not cookies:
        return {}
    return {"Cookie": "; ".join(f"{name}={value}" for name, value in cookies.items())}


@pytest.fixture
def fake_supabase():
    return FakeSupabase()


@pytest.fixture
def app_config():
    return AppConfig()


@pytest.fixture
def env_settings():
    return EnvSettings(SUPABASE_URL=SUPABASE_URL, SUPABASE_ANON_KEY=ANON_KEY)


def make_factory(fake: FakeSupabase, env_settings: EnvSettings, config: AppConfig):
    return SupabaseClientFactory(
        env_settings,
        config,
        transport=fake.transport,
        realtime=lambda: FakeRealtime(fake),
    )


@pytest.fixture
def clients(fake_supabase, env_settings, app_config):
    return make_factory(fake_supabase, env_settings, app_config)


@pytest.fixture
def services(clients, env_settings, app_config):
    return AppServices(
        config=app_config,
        env_settings=env_settings,
        clients=clients,
        change_feed=ChangeFeed(),
    )


@pytest.fixture
def client(services):
    """Test client for an app wired to the fake project."""
    with TestClient(create_app(services), follow_redirects=False) as test_client:
        yield test_client


@pytest.fixture
def alice(fake_supabase):
    """(access_token, refresh_token, user) for a signed-in user."""
    return fake_supabase.add_user("user-alice", "alice@example.com")


@pytest.fixture
def bob(fake_supabase):
    return fake_supabase.add_user("user-bob", "bob@example.com")
