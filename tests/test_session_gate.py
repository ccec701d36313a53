"""Tests for the session gate middleware and its decision function."""

import pytest
from fastapi.testclient import TestClient

from conftest import cookie_header
from nyxvaulta.api import create_app
from nyxvaulta.api.dependencies import AppServices
from nyxvaulta.api.session_gate import GateDecision, decide, is_gated, is_protected
from nyxvaulta.core.supabase_client import SupabaseClientFactory
from nyxvaulta.models.config import AppConfig, EnvSettings


class TestDecide:
    """Test the pure allow/redirect decision."""

    @pytest.fixture
    def config(self):
        return AppConfig()

    def test_unauthenticated_protected_path_redirects_to_login(self, config):
        assert decide("/dashboard", False, config) is GateDecision.REDIRECT_TO_LOGIN
        assert decide("/dashboard/settings", False, config) is GateDecision.REDIRECT_TO_LOGIN

    def test_authenticated_login_redirects_to_protected(self, config):
        assert decide("/login", True, config) is GateDecision.REDIRECT_TO_PROTECTED

    def test_other_combinations_allow(self, config):
        assert decide("/login", False, config) is GateDecision.ALLOW
        assert decide("/dashboard", True, config) is GateDecision.ALLOW

    def test_path_matching(self, config):
        assert is_protected("/dashboard", config)
        assert is_protected("/dashboard/a/b", config)
        assert not is_protected("/dashboardx", config)
        assert is_gated("/login", config)
        assert not is_gated("/login/extra", config)
        assert not is_gated("/api/bookmarks", config)

    def test_custom_paths(self):
        config = AppConfig(protected_path="/vault/", login_path="/signin")
        assert config.protected_path == "/vault"
        assert decide("/vault/x", False, config) is GateDecision.REDIRECT_TO_LOGIN
        assert decide("/signin", True, config) is GateDecision.REDIRECT_TO_PROTECTED


class TestSessionGate:
    """Test the gate against the fake identity provider."""

    def test_no_session_redirects_to_login(self, client, fake_supabase):
        response = client.get("/dashboard?search=x")

        assert response.status_code == 307
        assert response.headers["location"] == "http://testserver/login"
        # Nothing to validate, so the provider is never asked
        assert fake_supabase.count("GET", "/auth/v1/user") == 0

    def test_signed_in_user_reaches_dashboard(self, client, alice):
        response = client.get("/dashboard", headers=cookie_header(*alice))

        assert response.status_code == 200
        assert response.json()["user"]["id"] == "user-alice"

    def test_signed_in_user_is_sent_away_from_login(self, client, alice):
        response = client.get("/login", headers=cookie_header(*alice))

        assert response.status_code == 307
        assert response.headers["location"] == "http://testserver/dashboard"

    def test_login_page_served_without_session(self, client):
        response = client.get("/login")

        assert response.status_code == 200
        assert "/auth/signin" in response.text

    def test_unmatched_paths_bypass_gate(self, client, fake_supabase, alice):
        response = client.get("/dashboardx", headers=cookie_header(*alice))

        assert response.status_code == 404
        assert fake_supabase.count("GET", "/auth/v1/user") == 0

        client.get("/api/health")
        assert fake_supabase.count("GET", "/auth/v1/user") == 0

    def test_expired_session_is_refreshed(self, client, fake_supabase, alice):
        response = client.get("/dashboard", headers=cookie_header(*alice, expired=True))

        assert response.status_code == 200
        assert response.json()["user"]["id"] == "user-alice"
        set_cookies = response.headers.get_list("set-cookie")
        assert any(c.startswith("sb-auth-token=base64-") for c in set_cookies)
        # The refreshed cookie is visible downstream in the same request
        assert fake_supabase.count("POST", "/auth/v1/token") == 1

    def test_failed_refresh_clears_cookie_on_redirect(self, client, fake_supabase, alice):
        fake_supabase.refresh_tokens.clear()

        response = client.get("/dashboard", headers=cookie_header(*alice, expired=True))

        assert response.status_code == 307
        assert response.headers["location"] == "http://testserver/login"
        cleared = [c for c in response.headers.get_list("set-cookie") if "Max-Age=0" in c]
        assert len(cleared) == 1
        assert cleared[0].startswith("sb-auth-token=")

    def test_revoked_session_clears_cookie_on_redirect(self, client, fake_supabase, alice):
        fake_supabase.expire(alice[0])

        response = client.get("/dashboard", headers=cookie_header(*alice))

        assert response.status_code == 307
        cleared = [c for c in response.headers.get_list("set-cookie") if "Max-Age=0" in c]
        assert [c.split("=", 1)[0] for c in cleared] == ["sb-auth-token"]

    def test_provider_outage_fails_closed(self, client, fake_supabase, alice):
        fake_supabase.auth_down = True

        response = client.get("/dashboard", headers=cookie_header(*alice))

        assert response.status_code == 307
        assert response.headers["location"] == "http://testserver/login"
        assert response.headers.get_list("set-cookie") == []

    def test_missing_configuration_fails_closed(self, fake_supabase, alice):
        config = AppConfig()
        env_settings = EnvSettings(SUPABASE_URL=None, SUPABASE_ANON_KEY=None)
        services = AppServices(
            config=config,
            env_settings=env_settings,
            clients=SupabaseClientFactory(env_settings, config, transport=fake_supabase.transport),
        )

        with TestClient(create_app(services), follow_redirects=False) as client:
            response = client.get("/dashboard", headers=cookie_header(*alice))

        assert response.status_code == 307
        assert fake_supabase.requests == []
