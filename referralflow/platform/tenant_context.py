"""
Per-request tenant scoping from the inbound host.

Every agency is served from its own subdomain (e.g. sunrise.referralflow.health).
The edge layer copies the left-most host label into the X-Agency-Id header;
when that header is absent (local development, tests) the Host header is
parsed directly.

CRITICAL SECURITY REQUIREMENTS:
- The scoped tenant id is a ROUTING hint only. It never grants access:
  record access is decided by RecordAuthorizer against the principal's
  memberships.
- Scoping is pure. It performs no session lookup and no database query.
- Missing or junk values ("", "undefined", "null") scope to the root tenant,
  which only the platform admin may act within.
"""

import logging
from typing import Iterable, Optional

from fastapi import Request

from referralflow.config.platform import PlatformConfig, DEFAULT_ROOT_DOMAINS

logger = logging.getLogger(__name__)

ROOT_TENANT_ID = "default"

EDGE_TENANT_HEADER = "X-Agency-Id"

# Values the edge layer or a client may forward when no tenant is present
_EMPTY_MARKERS = frozenset({"", "undefined", "null"})


def normalize_tenant_hint(value: Optional[str]) -> str:
    """Map a forwarded tenant id to ROOT_TENANT_ID when it is empty or junk."""
    if value is None:
        return ROOT_TENANT_ID
    cleaned = value.strip().lower()
    if cleaned in _EMPTY_MARKERS:
        return ROOT_TENANT_ID
    return cleaned


def scope_from_host(
    host_header: Optional[str],
    root_domains: Iterable[str] = DEFAULT_ROOT_DOMAINS,
) -> str:
    """
    Derive the tenant id for a request from its host.

    Args:
        host_header: Raw Host header value (may include a port)
        root_domains: Apex hosts that serve the root tenant

    Returns:
        ROOT_TENANT_ID for missing, junk or apex hosts, otherwise the
        left-most host label.
    """
    if host_header is None:
        return ROOT_TENANT_ID

    host = host_header.strip().lower()
    if host in _EMPTY_MARKERS:
        return ROOT_TENANT_ID

    # Strip port (IPv6 literals are never tenant hosts)
    if host.startswith("["):
        return ROOT_TENANT_ID
    host = host.split(":", 1)[0].rstrip(".")

    if not host or host in set(root_domains):
        return ROOT_TENANT_ID

    label = host.split(".", 1)[0]
    return normalize_tenant_hint(label)


def get_scoped_tenant_id(request: Request) -> str:
    """Tenant id attached by TenantScopeMiddleware (root tenant if absent)."""
    return getattr(request.state, "tenant_id", ROOT_TENANT_ID)


class TenantScopeMiddleware:
    """
    HTTP middleware that sets request.state.tenant_id for every request.

    Registered with:
        app.middleware("http")(TenantScopeMiddleware(config))
    """

    def __init__(self, config: PlatformConfig):
        self._root_domains = tuple(config.root_domains)

    def resolve(self, request: Request) -> str:
        edge_value = request.headers.get(EDGE_TENANT_HEADER)
        if edge_value is not None:
            return normalize_tenant_hint(edge_value)
        return scope_from_host(request.headers.get("host"), self._root_domains)

    async def __call__(self, request: Request, call_next):
        tenant_id = self.resolve(request)
        request.state.tenant_id = tenant_id
        logger.debug(
            "Request scoped to tenant",
            extra={"tenant_id": tenant_id, "path": request.url.path},
        )
        return await call_next(request)
