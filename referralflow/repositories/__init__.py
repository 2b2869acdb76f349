"""Repository layer over tenant storage."""

from referralflow.repositories.tenant_repository import TenantRepository

__all__ = ["TenantRepository"]
