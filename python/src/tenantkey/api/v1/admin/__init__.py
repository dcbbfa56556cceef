"""
Admin API endpoints.

Tenant management and the system admin allow-list.
"""

from .tenant_management import router as tenant_management_router

__all__ = ["tenant_management_router"]
