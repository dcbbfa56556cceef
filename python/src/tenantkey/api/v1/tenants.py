"""
Tenant management API endpoints.

Provides endpoints for:
- Listing user's tenants
- Creating new tenants (requester becomes owner)
- Updating tenant settings
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ...database import get_session
from ...models.tenant import Tenant, TenantMembership
from ...models.user import User
from ...services.tenant import MembershipService, TenantService
from ..deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/tenants", tags=["tenants"])


class TenantCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    slug: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None


class TenantResponse(BaseModel):
    """Tenant information response."""
    
    id: str
    name: str
    slug: str
    role: str
    subscription_status: str
    created_at: datetime


class TenantListResponse(BaseModel):
    """List of user's tenants."""
    
    tenants: List[TenantResponse]
    total: int


class TenantSettingsRequest(BaseModel):
    settings: Dict[str, Any]


def _tenant_response(tenant: Tenant, membership: TenantMembership) -> TenantResponse:
    return TenantResponse(
        id=str(tenant.id),
        name=tenant.name,
        slug=tenant.slug,
        role=membership.role,
        subscription_status=tenant.subscription_status,
        created_at=tenant.created_at,
    )


@router.get(
    "",
    response_model=TenantListResponse,
    summary="List user's tenants",
    description="Get all tenants the authenticated user has joined"
)
async def list_user_tenants(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> TenantListResponse:
    memberships = await MembershipService(session).list_user_tenants(user.id)
    tenants = [_tenant_response(tenant, membership) for membership, tenant in memberships]
    
    logger.debug(f"User {user.id} has access to {len(tenants)} tenants")
    return TenantListResponse(tenants=tenants, total=len(tenants))


@router.post(
    "",
    response_model=TenantResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tenant owned by the requester",
)
async def create_tenant(
    request: TenantCreateRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> TenantResponse:
    tenant, membership = await TenantService(session).create_tenant_with_owner(
        name=request.name,
        slug=request.slug,
        owner_id=user.id,
        description=request.description,
    )
    return _tenant_response(tenant, membership)


@router.patch("/{tenant_id}/settings", response_model=Dict[str, Any])
async def update_tenant_settings(
    tenant_id: UUID,
    request: TenantSettingsRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    tenant = await TenantService(session).update_settings(tenant_id, user.id, request.settings)
    return tenant.settings
