"""Repository layer with tenant isolation enforcement."""

from src.repositories.tenant_addon_repository import TenantAddonRepository

__all__ = ["TenantAddonRepository"]
