"""
Base mixins for database models.

Provides common functionality:
- TimestampMixin: created_at, updated_at timestamps
- TenantScopedMixin: tenant_id for multi-tenant isolation
- generate_record_id: unguessable identifiers for tenant-owned records
"""

import secrets

from sqlalchemy import Column, String, DateTime, func
from sqlalchemy.orm import declared_attr


# 16 random bytes -> 22 url-safe characters (128 bits of entropy)
RECORD_ID_BYTES = 16


def generate_record_id() -> str:
    """
    Generate a high-entropy record identifier.

    Public status lookups are keyed by this id alone, so it must not be
    sequential or derivable from other record fields.
    """
    return secrets.token_urlsafe(RECORD_ID_BYTES)


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Timestamp when record was last updated"
    )


class TenantScopedMixin:
    """
    Mixin that adds tenant_id column for multi-tenant isolation.

    SECURITY: every authenticated read or write of a tenant-scoped record
    must pass RecordAuthorizer against this column.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(255),
            nullable=False,
            index=True,
            comment="Owning tenant id. Checked against caller memberships."
        )
