"""
Platform-level modules for tenant scoping and security.

This package contains:
- tenant_context: Per-request tenant scoping from the host
- audit: Audit logging
- background: Fire-and-forget task dispatcher
- errors: Consistent error handling
"""

from referralflow.platform.tenant_context import (
    ROOT_TENANT_ID,
    TenantScopeMiddleware,
    scope_from_host,
    get_scoped_tenant_id,
)

from referralflow.platform.errors import (
    AppError,
    ValidationError,
    AuthenticationError,
    PermissionDeniedError,
    TenantIsolationError,
    NotFoundError,
    ConflictError,
    ServiceUnavailableError,
    generate_correlation_id,
    get_correlation_id,
    register_error_handlers,
)

from referralflow.platform.audit import (
    AuditAction,
    AuditEvent,
    AuditLog,
    AuditOutcome,
    AuditSink,
    DatabaseAuditSink,
    BackgroundAuditSink,
    PIIRedactor,
    write_audit_log_sync,
)

from referralflow.platform.background import BackgroundDispatcher

__all__ = [
    # Tenant scoping
    "ROOT_TENANT_ID",
    "TenantScopeMiddleware",
    "scope_from_host",
    "get_scoped_tenant_id",
    # Errors
    "AppError",
    "ValidationError",
    "AuthenticationError",
    "PermissionDeniedError",
    "TenantIsolationError",
    "NotFoundError",
    "ConflictError",
    "ServiceUnavailableError",
    "generate_correlation_id",
    "get_correlation_id",
    "register_error_handlers",
    # Audit
    "AuditAction",
    "AuditEvent",
    "AuditLog",
    "AuditOutcome",
    "AuditSink",
    "DatabaseAuditSink",
    "BackgroundAuditSink",
    "PIIRedactor",
    "write_audit_log_sync",
    # Background
    "BackgroundDispatcher",
]
