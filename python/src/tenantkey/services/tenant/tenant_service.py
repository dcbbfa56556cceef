"""
Tenant lifecycle service.

Features:
- Self-serve and admin tenant creation (creator/named user becomes owner)
- Slug and domain uniqueness
- Suspension and deletion gated by BOTH the system admin allow-list and an
  owner membership in the tenant
- Settings updates for tenant admins
"""

import logging
import re
from typing import Any, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.clock import utcnow
from ...core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from ...models.tenant import Tenant, TenantMembership
from ...models.user import User
from ..admin_gate import SystemAdminGate
from ..users import UserService
from .membership_service import MembershipService
from .roles import Capability, Role

logger = logging.getLogger(__name__)

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")

SUSPENDED_STATUS = "cancelled"


class TenantService:
    """Tenant creation, lookup, suspension and deletion."""
    
    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = UserService(session)
        self.memberships = MembershipService(session)
    
    async def get_tenant(self, tenant_id: UUID) -> Tenant:
        tenant = await self.session.get(Tenant, tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {tenant_id} not found")
        return tenant
    
    async def get_tenant_by_slug(self, slug: str) -> Optional[Tenant]:
        result = await self.session.execute(select(Tenant).where(Tenant.slug == slug).limit(1))
        return result.scalar_one_or_none()
    
    async def get_tenant_by_domain(self, domain: str) -> Optional[Tenant]:
        result = await self.session.execute(
            select(Tenant).where(Tenant.domain == domain.lower()).limit(1)
        )
        return result.scalar_one_or_none()
    
    async def list_tenants(self) -> List[Tenant]:
        result = await self.session.execute(select(Tenant).order_by(Tenant.created_at.desc()))
        return list(result.scalars().all())
    
    async def create_tenant_with_owner(
        self,
        name: str,
        slug: str,
        owner_id: UUID,
        description: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> tuple[Tenant, TenantMembership]:
        """
        Create a tenant and its first owner membership.
        
        Raises:
            ValidationError: If name is empty or slug is not URL-safe
            ConflictError: If slug or domain is taken
        """
        name = (name or "").strip()
        slug = (slug or "").strip()
        if not name or not slug:
            raise ValidationError("Name and slug are required")
        if not SLUG_PATTERN.match(slug):
            raise ValidationError("Slug can only contain lowercase letters, numbers, and hyphens")
        
        if await self.get_tenant_by_slug(slug) is not None:
            raise ConflictError("This team URL is already taken")
        if domain:
            domain = domain.strip().lower()
            if await self.get_tenant_by_domain(domain) is not None:
                raise ConflictError("This domain is already in use")
        
        tenant = Tenant(name=name, slug=slug, description=description, domain=domain or None)
        self.session.add(tenant)
        try:
            await self.session.flush()
        except IntegrityError:
            raise ConflictError("Tenant slug or domain is already taken")
        
        membership = TenantMembership(
            tenant_id=tenant.id,
            user_id=owner_id,
            role=Role.OWNER.value,
            joined_at=utcnow(),
        )
        self.session.add(membership)
        await self.session.flush()
        
        logger.info(f"Created tenant {tenant.id} ({slug}) with owner {owner_id}")
        return tenant, membership
    
    async def admin_create_tenant(
        self,
        requester: Optional[User],
        gate: SystemAdminGate,
        name: str,
        slug: str,
        owner_email: str,
        description: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> tuple[Tenant, TenantMembership]:
        """
        Create a tenant on behalf of someone else.
        
        The owner is found or created by email.
        
        Raises:
            AuthorizationError: If requester is not a system admin
        """
        self._require_system_admin(requester, gate)
        owner = await self.users.get_or_create_user(owner_email)
        return await self.create_tenant_with_owner(
            name=name,
            slug=slug,
            owner_id=owner.id,
            description=description,
            domain=domain,
        )
    
    async def suspend_tenant(
        self,
        tenant_id: UUID,
        requester: Optional[User],
        gate: SystemAdminGate,
    ) -> Tenant:
        """
        Suspend a tenant by cancelling its subscription status.
        
        Raises:
            AuthorizationError: Unless requester is a system admin AND a tenant owner
            NotFoundError: If tenant doesn't exist
        """
        tenant = await self.get_tenant(tenant_id)
        await self._require_admin_and_owner(tenant_id, requester, gate, Capability.MANAGE_OWNER)
        
        tenant.subscription_status = SUSPENDED_STATUS
        tenant.updated_at = utcnow()
        await self.session.flush()
        
        logger.warning(f"Tenant {tenant_id} suspended by {requester.id}")
        return tenant
    
    async def delete_tenant(
        self,
        tenant_id: UUID,
        requester: Optional[User],
        gate: SystemAdminGate,
    ) -> None:
        """
        Delete a tenant and all of its memberships.
        
        Raises:
            AuthorizationError: Unless requester is a system admin AND a tenant owner
            NotFoundError: If tenant doesn't exist
        """
        tenant = await self.get_tenant(tenant_id)
        await self._require_admin_and_owner(tenant_id, requester, gate, Capability.DELETE_TENANT)
        
        await self.session.execute(
            delete(TenantMembership).where(TenantMembership.tenant_id == tenant_id)
        )
        await self.session.delete(tenant)
        await self.session.flush()
        
        logger.warning(f"Tenant {tenant_id} deleted by {requester.id}")
    
    async def update_settings(
        self,
        tenant_id: UUID,
        requester_id: UUID,
        updates: Dict[str, Any],
    ) -> Tenant:
        """Merge settings keys into the tenant's settings blob."""
        tenant = await self.get_tenant(tenant_id)
        await self.memberships.require_capability(tenant_id, requester_id, Capability.MANAGE_SETTINGS)
        
        tenant.settings = {**(tenant.settings or {}), **updates}
        tenant.updated_at = utcnow()
        await self.session.flush()
        return tenant
    
    def _require_system_admin(self, requester: Optional[User], gate: SystemAdminGate) -> None:
        if not gate.is_user_system_admin(requester):
            logger.warning(f"Non-admin {getattr(requester, 'id', None)} attempted an admin tenant operation")
            raise AuthorizationError("System administrator privileges required")
    
    async def _require_admin_and_owner(
        self,
        tenant_id: UUID,
        requester: Optional[User],
        gate: SystemAdminGate,
        capability: Capability,
    ) -> None:
        self._require_system_admin(requester, gate)
        await self.memberships.require_capability(tenant_id, requester.id, capability)
