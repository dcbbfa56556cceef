"""
Tenant membership authority.

Resolves a user's role within a tenant and enforces the role hierarchy on
invitations, role changes, removals and ownership transfer.

Last-owner protection:
    Every tenant keeps at least one owner. Demoting or removing an owner is
    a conditional UPDATE/DELETE that only matches while the tenant still
    has another owner, and a zero rowcount is rejected. On PostgreSQL the
    tenant row is also locked (SELECT ... FOR UPDATE) so concurrent
    mutations on one tenant serialize and the second sees the first one's
    result. SQLite ignores FOR UPDATE; there every transaction starts with
    BEGIN IMMEDIATE (see database.configure_sqlite_transactions).
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from ...core.clock import utcnow
from ...core.config import settings
from ...core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    PolicyError,
    ValidationError,
)
from ...models.tenant import Tenant, TenantMembership
from ...models.user import User
from ...monitoring.metrics import record_policy_rejection
from ..users import UserService
from .roles import (
    ASSIGNABLE_ROLES,
    INVITABLE_ROLES,
    Capability,
    Role,
    can_modify_membership,
    has_capability,
    parse_role,
)

logger = logging.getLogger(__name__)


class MembershipService:
    """Role resolution and membership mutations for tenants."""
    
    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = UserService(session)
    
    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------
    
    async def get_membership(self, tenant_id: UUID, user_id: UUID) -> Optional[TenantMembership]:
        result = await self.session.execute(
            select(TenantMembership)
            .where(
                TenantMembership.tenant_id == tenant_id,
                TenantMembership.user_id == user_id,
            )
            .limit(1)
        )
        return result.scalar_one_or_none()
    
    async def get_user_role(self, tenant_id: UUID, user_id: UUID) -> Optional[Role]:
        """Role of a joined member, or None (pending invitations hold no role yet)."""
        membership = await self.get_membership(tenant_id, user_id)
        if membership is None or membership.is_pending():
            return None
        return parse_role(membership.role)
    
    async def user_has_tenant_access(self, tenant_id: UUID, user_id: UUID) -> bool:
        return await self.get_user_role(tenant_id, user_id) is not None
    
    async def count_owners(self, tenant_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(TenantMembership)
            .where(
                TenantMembership.tenant_id == tenant_id,
                TenantMembership.role == Role.OWNER.value,
            )
        )
        return result.scalar_one()
    
    async def list_members(self, tenant_id: UUID) -> List[Tuple[TenantMembership, User]]:
        """Memberships (pending included) with their users, oldest first."""
        result = await self.session.execute(
            select(TenantMembership, User)
            .join(User, TenantMembership.user_id == User.id)
            .where(TenantMembership.tenant_id == tenant_id)
            .order_by(TenantMembership.created_at)
        )
        return [(membership, user) for membership, user in result.all()]
    
    async def list_user_tenants(
        self, user_id: UUID, include_pending: bool = False
    ) -> List[Tuple[TenantMembership, Tenant]]:
        stmt = (
            select(TenantMembership, Tenant)
            .join(Tenant, TenantMembership.tenant_id == Tenant.id)
            .where(TenantMembership.user_id == user_id)
            .order_by(Tenant.name)
        )
        if not include_pending:
            stmt = stmt.where(TenantMembership.joined_at.isnot(None))
        result = await self.session.execute(stmt)
        return [(membership, tenant) for membership, tenant in result.all()]
    
    async def require_capability(
        self,
        tenant_id: UUID,
        user_id: UUID,
        capability: Capability,
    ) -> TenantMembership:
        """
        Return the requester's membership if their role grants a capability.
        
        Raises:
            AuthorizationError: If the user is not a joined member or the role is too low
        """
        membership = await self.get_membership(tenant_id, user_id)
        if membership is None or membership.is_pending():
            raise AuthorizationError("User does not have access to this tenant")
        
        if not has_capability(membership.role, capability):
            record_policy_rejection("capability")
            logger.info(
                f"User {user_id} ({membership.role}) lacks {capability.value} "
                f"in tenant {tenant_id}"
            )
            raise AuthorizationError("Insufficient permissions")
        
        return membership
    
    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------
    
    async def invite_member(
        self,
        tenant_id: UUID,
        email: str,
        role: str,
        invited_by: UUID,
    ) -> Tuple[TenantMembership, User]:
        """
        Invite an email address into a tenant.
        
        Creates an unverified user (no credentials yet) when the email is
        unknown. The membership stays pending until accepted.
        
        Raises:
            AuthorizationError: If the inviter is not at least admin
            ValidationError: If the role cannot be assigned by invitation
            ConflictError: If the email is already a member of the tenant
        """
        target_role = parse_role(role)
        if target_role not in INVITABLE_ROLES:
            raise ValidationError("Invitations can only grant the member or admin role")
        
        await self.require_capability(tenant_id, invited_by, Capability.INVITE_MEMBER)
        
        invitee = await self.users.get_or_create_user(email)
        
        if await self.get_membership(tenant_id, invitee.id) is not None:
            raise ConflictError("User is already a member of this tenant")
        
        membership = TenantMembership(
            tenant_id=tenant_id,
            user_id=invitee.id,
            role=target_role.value,
            invited_by=invited_by,
            invited_at=utcnow(),
            joined_at=None,
        )
        self.session.add(membership)
        try:
            await self.session.flush()
        except IntegrityError:
            raise ConflictError("User is already a member of this tenant")
        
        # Email delivery is handled outside this service; log the link for now
        logger.info(
            f"Invitation created for {invitee.email} in tenant {tenant_id} as {target_role.value}: "
            f"{settings.APP_URL}/onboarding?invite={membership.id}"
        )
        return membership, invitee
    
    async def accept_invitation(self, membership_id: UUID, user_id: UUID) -> TenantMembership:
        """
        Accept a pending invitation.
        
        Raises:
            NotFoundError: If the invitation does not exist or is for another user
            ConflictError: If it was already accepted
        """
        membership = await self.session.get(TenantMembership, membership_id)
        if membership is None or membership.user_id != user_id:
            raise NotFoundError("Invitation not found")
        if not membership.is_pending():
            raise ConflictError("Invitation has already been accepted")
        
        membership.joined_at = utcnow()
        membership.updated_at = utcnow()
        await self.session.flush()
        
        logger.info(f"User {user_id} joined tenant {membership.tenant_id}")
        return membership
    
    # ------------------------------------------------------------------
    # Role changes and removal
    # ------------------------------------------------------------------
    
    async def update_member_role(
        self,
        tenant_id: UUID,
        requester_id: UUID,
        membership_id: UUID,
        new_role: str,
    ) -> TenantMembership:
        """
        Change a member's role.
        
        Raises:
            PolicyError: If the role is owner (use transfer_ownership), the
                requester may not modify the target, or the change would
                demote the last owner
            AuthorizationError: If the requester is not at least admin
            NotFoundError: If tenant or membership does not exist
        """
        role = parse_role(new_role)
        if role == Role.OWNER:
            raise PolicyError("Owner role can only be granted through ownership transfer")
        if role not in ASSIGNABLE_ROLES:
            raise ValidationError("Role must be viewer, member or admin")
        
        await self._lock_tenant(tenant_id)
        requester = await self.require_capability(tenant_id, requester_id, Capability.CHANGE_ROLE)
        target = await self.get_tenant_membership(tenant_id, membership_id)
        
        self._check_hierarchy(requester, target, Capability.CHANGE_ROLE)
        
        previous = target.role
        if target.is_owner():
            await self._demote_owner(tenant_id, target, role)
        else:
            target.role = role.value
            target.updated_at = utcnow()
            await self.session.flush()
        
        logger.info(
            f"Membership {membership_id} in tenant {tenant_id}: {previous} -> {role.value} "
            f"(by {requester_id})"
        )
        return target
    
    async def remove_member(
        self,
        tenant_id: UUID,
        requester_id: UUID,
        membership_id: UUID,
    ) -> None:
        """
        Remove a membership.
        
        Raises:
            PolicyError: If the requester may not modify the target or the
                target is the last owner
            AuthorizationError: If the requester is not at least admin
            NotFoundError: If tenant or membership does not exist
        """
        await self._lock_tenant(tenant_id)
        requester = await self.require_capability(tenant_id, requester_id, Capability.REMOVE_MEMBER)
        target = await self.get_tenant_membership(tenant_id, membership_id)
        
        self._check_hierarchy(requester, target, Capability.REMOVE_MEMBER)
        
        if target.is_owner():
            await self._remove_owner(tenant_id, target)
        else:
            await self.session.delete(target)
            await self.session.flush()
        
        logger.info(f"Membership {membership_id} removed from tenant {tenant_id} (by {requester_id})")
    
    async def transfer_ownership(
        self,
        tenant_id: UUID,
        requester_id: UUID,
        membership_id: UUID,
        demote_self: bool = False,
    ) -> TenantMembership:
        """
        Promote a joined member to owner.
        
        The only path that grants the owner role. With demote_self the
        requester steps down to admin once the new owner is in place.
        
        Raises:
            AuthorizationError: If the requester is not an owner
            NotFoundError: If the target membership is not in this tenant
            PolicyError: If the target has not accepted their invitation
            ValidationError: If the target is the requester
        """
        await self._lock_tenant(tenant_id)
        requester = await self.require_capability(tenant_id, requester_id, Capability.MANAGE_OWNER)
        target = await self.get_tenant_membership(tenant_id, membership_id)
        
        if target.id == requester.id:
            raise ValidationError("Cannot transfer ownership to yourself")
        if target.is_pending():
            raise PolicyError("Ownership can only be transferred to a member who has joined")
        
        target.role = Role.OWNER.value
        target.updated_at = utcnow()
        await self.session.flush()
        
        if demote_self:
            await self._demote_owner(tenant_id, requester, Role.ADMIN)
        
        logger.warning(
            f"Ownership of tenant {tenant_id} granted to membership {membership_id} "
            f"by {requester_id} (demote_self={demote_self})"
        )
        return target
    
    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    
    async def _lock_tenant(self, tenant_id: UUID) -> Tenant:
        """Take the per-tenant row lock that serializes membership mutations."""
        result = await self.session.execute(
            select(Tenant).where(Tenant.id == tenant_id).with_for_update()
        )
        tenant = result.scalar_one_or_none()
        if tenant is None:
            raise NotFoundError("Tenant not found")
        return tenant
    
    async def get_tenant_membership(self, tenant_id: UUID, membership_id: UUID) -> TenantMembership:
        membership = await self.session.get(TenantMembership, membership_id)
        if membership is None or membership.tenant_id != tenant_id:
            raise NotFoundError("Member not found")
        return membership
    
    def _check_hierarchy(
        self,
        requester: TenantMembership,
        target: TenantMembership,
        action: Capability,
    ) -> None:
        if not can_modify_membership(requester.role, target.role, action):
            record_policy_rejection("hierarchy")
            logger.warning(
                f"User {requester.user_id} ({requester.role}) attempted {action.value} "
                f"on {target.role} membership {target.id}"
            )
            raise PolicyError("Only owners can modify or remove other owners", status_code=403)
    
    def _other_owner_exists(self, tenant_id: UUID):
        """SQL condition: the tenant currently has more than one owner."""
        peer = aliased(TenantMembership)
        owners = (
            select(func.count())
            .select_from(peer)
            .where(peer.tenant_id == tenant_id, peer.role == Role.OWNER.value)
            .scalar_subquery()
        )
        return owners > 1
    
    async def _demote_owner(
        self,
        tenant_id: UUID,
        membership: TenantMembership,
        role: Role,
    ) -> None:
        """
        Move an owner to a lower role unless they are the last owner.
        
        The owner count is checked inside the UPDATE itself, so the write
        and the check cannot be separated by a concurrent demotion.
        """
        result = await self.session.execute(
            update(TenantMembership)
            .where(
                TenantMembership.id == membership.id,
                TenantMembership.role == Role.OWNER.value,
                self._other_owner_exists(tenant_id),
            )
            .values(role=role.value, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._reject_last_owner(tenant_id, "demote")
        await self.session.refresh(membership)
    
    async def _remove_owner(self, tenant_id: UUID, membership: TenantMembership) -> None:
        """Delete an owner membership unless it is the last one."""
        result = await self.session.execute(
            delete(TenantMembership)
            .where(
                TenantMembership.id == membership.id,
                TenantMembership.role == Role.OWNER.value,
                self._other_owner_exists(tenant_id),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self._reject_last_owner(tenant_id, "remove")
        self.session.expunge(membership)
    
    def _reject_last_owner(self, tenant_id: UUID, verb: str) -> None:
        record_policy_rejection("last_owner")
        logger.warning(f"Rejected attempt to {verb} the last owner of tenant {tenant_id}")
        raise PolicyError(
            f"Cannot {verb} the last owner. Promote another member to owner first."
        )
