"""
Admin API for tenant management and the system admin allow-list.

Endpoints:
- GET    /admin/tenants
- POST   /admin/tenants
- POST   /admin/tenants/{tenant_id}/suspend
- DELETE /admin/tenants/{tenant_id}
- GET    /admin/system-admins
- POST   /admin/system-admins
- DELETE /admin/system-admins/{email}

Every endpoint requires the system admin gate. Suspension and deletion
additionally require an owner membership in the target tenant (enforced
by TenantService).
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ....database import get_session
from ....models.tenant import Tenant
from ....models.user import User
from ....services.admin_gate import SystemAdminGate
from ....services.tenant import TenantService
from ...deps import get_admin_gate, require_system_admin

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


# Request/Response Models

class AdminTenantCreateRequest(BaseModel):
    """Request model for admin tenant creation."""
    
    model_config = ConfigDict(populate_by_name=True)
    
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=100)
    owner_email: EmailStr = Field(alias="ownerEmail")
    description: Optional[str] = None
    domain: Optional[str] = Field(default=None, max_length=255)


class AdminTenantResponse(BaseModel):
    id: str
    name: str
    slug: str
    domain: Optional[str]
    subscription_status: str
    created_at: datetime


class SystemAdminRequest(BaseModel):
    email: EmailStr


class SystemAdminListResponse(BaseModel):
    emails: List[str]


def _admin_tenant_response(tenant: Tenant) -> AdminTenantResponse:
    return AdminTenantResponse(
        id=str(tenant.id),
        name=tenant.name,
        slug=tenant.slug,
        domain=tenant.domain,
        subscription_status=tenant.subscription_status,
        created_at=tenant.created_at,
    )


# Tenant endpoints

@router.get("/tenants", response_model=List[AdminTenantResponse])
async def list_tenants(
    _admin: User = Depends(require_system_admin),
    session: AsyncSession = Depends(get_session),
) -> List[AdminTenantResponse]:
    tenants = await TenantService(session).list_tenants()
    return [_admin_tenant_response(tenant) for tenant in tenants]


@router.post(
    "/tenants",
    response_model=AdminTenantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tenant for a named owner",
)
async def create_tenant(
    request: AdminTenantCreateRequest,
    admin: User = Depends(require_system_admin),
    gate: SystemAdminGate = Depends(get_admin_gate),
    session: AsyncSession = Depends(get_session),
) -> AdminTenantResponse:
    tenant, _ = await TenantService(session).admin_create_tenant(
        requester=admin,
        gate=gate,
        name=request.name,
        slug=request.slug,
        owner_email=request.owner_email,
        description=request.description,
        domain=request.domain,
    )
    return _admin_tenant_response(tenant)


@router.post(
    "/tenants/{tenant_id}/suspend",
    response_model=AdminTenantResponse,
    summary="Suspend a tenant",
    description="""
    Suspend a tenant by cancelling its subscription status.
    
    - Requester must be a system administrator
    - Requester must also be an owner of the tenant
    """
)
async def suspend_tenant(
    tenant_id: UUID,
    admin: User = Depends(require_system_admin),
    gate: SystemAdminGate = Depends(get_admin_gate),
    session: AsyncSession = Depends(get_session),
) -> AdminTenantResponse:
    tenant = await TenantService(session).suspend_tenant(tenant_id, admin, gate)
    return _admin_tenant_response(tenant)


@router.delete(
    "/tenants/{tenant_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a tenant and all memberships",
)
async def delete_tenant(
    tenant_id: UUID,
    admin: User = Depends(require_system_admin),
    gate: SystemAdminGate = Depends(get_admin_gate),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await TenantService(session).delete_tenant(tenant_id, admin, gate)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# System admin allow-list endpoints

@router.get("/system-admins", response_model=SystemAdminListResponse)
async def list_system_admins(
    _admin: User = Depends(require_system_admin),
    gate: SystemAdminGate = Depends(get_admin_gate),
) -> SystemAdminListResponse:
    return SystemAdminListResponse(emails=gate.get_system_admin_emails())


@router.post("/system-admins", response_model=SystemAdminListResponse)
async def add_system_admin(
    request: SystemAdminRequest,
    admin: User = Depends(require_system_admin),
    gate: SystemAdminGate = Depends(get_admin_gate),
) -> SystemAdminListResponse:
    """Grant admin to an email in this process (not persisted across restarts)."""
    if gate.add_system_admin(request.email):
        logger.warning(f"{admin.email} granted system admin to {request.email}")
    return SystemAdminListResponse(emails=gate.get_system_admin_emails())


@router.delete("/system-admins/{email}", response_model=SystemAdminListResponse)
async def remove_system_admin(
    email: str,
    _admin: User = Depends(require_system_admin),
    gate: SystemAdminGate = Depends(get_admin_gate),
) -> SystemAdminListResponse:
    gate.remove_system_admin(email)
    return SystemAdminListResponse(emails=gate.get_system_admin_emails())
