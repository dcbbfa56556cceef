"""
Shared FastAPI dependencies.

Authentication (session → user), the system admin gate, and the tenant
capability interceptor. Routes declare the capability they need instead of
checking role names themselves:

    @router.post("/invite")
    async def invite(
        membership: TenantMembership = Depends(require_capability(Capability.INVITE_MEMBER)),
    ):
        ...
"""

import logging
from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import settings
from ..core.exceptions import AuthenticationError, AuthorizationError, ValidationError
from ..database import get_session
from ..middleware.auth import get_session_token
from ..models.tenant import TenantMembership
from ..models.user import User
from ..services.admin_gate import SystemAdminGate
from ..services.session_issuer import SessionIssuer
from ..services.tenant import Capability, MembershipService

logger = logging.getLogger(__name__)


def get_admin_gate(request: Request) -> SystemAdminGate:
    """Admin gate created at startup (see main.lifespan)."""
    gate = getattr(request.app.state, "admin_gate", None)
    if gate is None:
        gate = SystemAdminGate(settings.SYSTEM_ADMIN_EMAILS)
        request.app.state.admin_gate = gate
    return gate


async def get_optional_user(
    token: Optional[str] = Depends(get_session_token),
    session: AsyncSession = Depends(get_session),
) -> Optional[User]:
    """Current user, or None when the request carries no live session."""
    resolved = await SessionIssuer(session).resolve(token)
    if resolved is None:
        return None
    return resolved[1]


async def get_current_user(user: Optional[User] = Depends(get_optional_user)) -> User:
    """
    Current user.
    
    Raises:
        AuthenticationError: If the request carries no live session
    """
    if user is None:
        raise AuthenticationError("User not authenticated")
    return user


def get_tenant_id(x_tenant_id: Optional[str] = Header(default=None)) -> UUID:
    """
    Tenant selected by the X-Tenant-Id header.
    
    Raises:
        ValidationError: If the header is missing or not a UUID
    """
    if not x_tenant_id:
        raise ValidationError("Tenant context required")
    try:
        return UUID(x_tenant_id)
    except ValueError:
        raise ValidationError("X-Tenant-Id must be a tenant ID")


def require_capability(capability: Capability) -> Callable:
    """
    Build a dependency that enforces a tenant capability.
    
    The dependency resolves the current user and tenant, checks the
    capability table, and returns the requester's membership.
    """
    async def dependency(
        user: User = Depends(get_current_user),
        tenant_id: UUID = Depends(get_tenant_id),
        session: AsyncSession = Depends(get_session),
    ) -> TenantMembership:
        return await MembershipService(session).require_capability(tenant_id, user.id, capability)
    
    return dependency


async def require_system_admin(
    user: User = Depends(get_current_user),
    gate: SystemAdminGate = Depends(get_admin_gate),
) -> User:
    """
    Current user, if on the system admin allow-list.
    
    Raises:
        AuthorizationError: Otherwise
    """
    if not gate.is_user_system_admin(user):
        logger.warning(f"Non-admin user {user.id} attempted to access an admin endpoint")
        raise AuthorizationError("System administrator privileges required")
    return user
