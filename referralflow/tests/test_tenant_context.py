"""
Tests for per-request tenant scoping.

Tests cover:
- Host parsing (subdomain label, apex hosts, ports, junk values)
- Edge header precedence over Host
- Middleware sets request.state.tenant_id without touching the database
"""

import pytest
from fastapi import FastAPI, Request
from fastapi.testclient import TestClient

from referralflow.config.platform import PlatformConfig
from referralflow.platform.tenant_context import (
    ROOT_TENANT_ID,
    TenantScopeMiddleware,
    get_scoped_tenant_id,
    normalize_tenant_hint,
    scope_from_host,
)


# ============================================================================
# scope_from_host
# ============================================================================

class TestScopeFromHost:
    """Tests for deriving the tenant id from a Host header."""

    @pytest.mark.parametrize("host,expected", [
        ("sunrise.referralflow.health", "sunrise"),
        ("Sunrise.ReferralFlow.Health", "sunrise"),
        ("sunrise.referralflow.health:8443", "sunrise"),
        ("sunrise.referralflow.health.", "sunrise"),
        ("acme.localhost:3000", "acme"),
    ])
    def test_subdomain_label_is_tenant(self, host, expected):
        assert scope_from_host(host) == expected

    @pytest.mark.parametrize("host", [
        "referralflow.health",
        "www.referralflow.health",
        "localhost",
        "localhost:8000",
    ])
    def test_apex_hosts_scope_to_root(self, host):
        assert scope_from_host(host) == ROOT_TENANT_ID

    @pytest.mark.parametrize("host", [None, "", "   ", "undefined", "null", "[::1]:8000"])
    def test_missing_or_junk_scope_to_root(self, host):
        assert scope_from_host(host) == ROOT_TENANT_ID

    def test_custom_root_domains(self):
        assert scope_from_host("example.org", root_domains=("example.org",)) == ROOT_TENANT_ID
        assert scope_from_host("a.example.org", root_domains=("example.org",)) == "a"

    def test_undefined_label_scopes_to_root(self):
        assert scope_from_host("undefined.referralflow.health") == ROOT_TENANT_ID


class TestNormalizeTenantHint:
    """Tests for edge header normalization."""

    @pytest.mark.parametrize("value", [None, "", "undefined", "null", "  NULL "])
    def test_empty_markers(self, value):
        assert normalize_tenant_hint(value) == ROOT_TENANT_ID

    def test_lowercases(self):
        assert normalize_tenant_hint(" Sunrise ") == "sunrise"


# ============================================================================
# Middleware
# ============================================================================

@pytest.fixture
def scoped_app():
    app = FastAPI()
    app.middleware("http")(TenantScopeMiddleware(PlatformConfig()))

    @app.get("/whoami")
    async def whoami(request: Request):
        return {"tenant_id": get_scoped_tenant_id(request)}

    return app


class TestTenantScopeMiddleware:
    """Tests for the scoping middleware."""

    def test_edge_header_wins_over_host(self, scoped_app):
        client = TestClient(scoped_app)
        resp = client.get(
            "/whoami",
            headers={"X-Agency-Id": "sunrise", "Host": "other.referralflow.health"},
        )
        assert resp.json() == {"tenant_id": "sunrise"}

    def test_host_used_without_edge_header(self, scoped_app):
        client = TestClient(scoped_app)
        resp = client.get("/whoami", headers={"Host": "acme.referralflow.health"})
        assert resp.json() == {"tenant_id": "acme"}

    def test_junk_edge_header_scopes_to_root(self, scoped_app):
        client = TestClient(scoped_app)
        resp = client.get("/whoami", headers={"X-Agency-Id": "undefined"})
        assert resp.json() == {"tenant_id": ROOT_TENANT_ID}

    def test_apex_host_scopes_to_root(self, scoped_app):
        client = TestClient(scoped_app)
        resp = client.get("/whoami", headers={"Host": "referralflow.health"})
        assert resp.json() == {"tenant_id": ROOT_TENANT_ID}
