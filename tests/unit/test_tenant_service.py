"""
Unit tests for tenant lifecycle operations.
"""

import uuid

import pytest
from sqlalchemy import select

from tenantkey.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from tenantkey.models.tenant import Tenant, TenantMembership
from tenantkey.services.admin_gate import SystemAdminGate
from tenantkey.services.tenant import MembershipService, Role, TenantService

from tests.conftest import add_member, create_tenant, create_user


@pytest.fixture
def gate():
    return SystemAdminGate(["root@example.com"])


@pytest.fixture
async def root(db_session):
    return await create_user(db_session, "root@example.com", "Root")


class TestTenantCreation:
    
    @pytest.mark.asyncio
    async def test_creator_becomes_joined_owner(self, db_session, alice):
        service = TenantService(db_session)
        
        tenant, membership = await service.create_tenant_with_owner("Acme", "acme", alice.id)
        
        assert tenant.subscription_status == "trialing"
        assert membership.role == Role.OWNER.value
        assert membership.joined_at is not None
        assert await MembershipService(db_session).count_owners(tenant.id) == 1
    
    @pytest.mark.asyncio
    async def test_slug_must_be_url_safe(self, db_session, alice):
        with pytest.raises(ValidationError):
            await TenantService(db_session).create_tenant_with_owner("Acme", "Acme Corp", alice.id)
    
    @pytest.mark.asyncio
    async def test_slug_and_domain_are_unique(self, db_session, alice, bob):
        service = TenantService(db_session)
        await service.create_tenant_with_owner("Acme", "acme", alice.id, domain="acme.test")
        
        with pytest.raises(ConflictError):
            await service.create_tenant_with_owner("Acme 2", "acme", bob.id)
        with pytest.raises(ConflictError):
            await service.create_tenant_with_owner("Acme 3", "acme-3", bob.id, domain="ACME.test")
    
    @pytest.mark.asyncio
    async def test_admin_create_requires_system_admin(self, db_session, alice, gate):
        with pytest.raises(AuthorizationError):
            await TenantService(db_session).admin_create_tenant(
                alice, gate, "Acme", "acme", owner_email="ceo@acme.test"
            )
        with pytest.raises(AuthorizationError):
            await TenantService(db_session).admin_create_tenant(
                None, gate, "Acme", "acme", owner_email="ceo@acme.test"
            )
    
    @pytest.mark.asyncio
    async def test_admin_create_provisions_named_owner(self, db_session, root, gate):
        tenant, membership = await TenantService(db_session).admin_create_tenant(
            root, gate, "Acme", "acme", owner_email="CEO@acme.test"
        )
        
        members = await MembershipService(db_session).list_members(tenant.id)
        assert [(m.role, u.email) for m, u in members] == [("owner", "ceo@acme.test")]
        assert membership.user_id != root.id


class TestTenantAdministration:
    
    @pytest.mark.asyncio
    async def test_suspend_requires_admin_and_owner(self, db_session, root, alice, gate):
        tenant = await create_tenant(db_session, "acme")
        await add_member(db_session, tenant, alice, "owner")
        service = TenantService(db_session)
        
        # System admin without an owner membership
        with pytest.raises(AuthorizationError):
            await service.suspend_tenant(tenant.id, root, gate)
        # Owner who is not a system admin
        with pytest.raises(AuthorizationError):
            await service.suspend_tenant(tenant.id, alice, gate)
        
        await add_member(db_session, tenant, root, "owner")
        suspended = await service.suspend_tenant(tenant.id, root, gate)
        
        assert suspended.subscription_status == "cancelled"
        assert not suspended.is_active()
    
    @pytest.mark.asyncio
    async def test_delete_removes_tenant_and_memberships(self, db_session, root, alice, gate):
        tenant = await create_tenant(db_session, "acme")
        await add_member(db_session, tenant, root, "owner")
        await add_member(db_session, tenant, alice, "member")
        tenant_id = tenant.id
        
        await TenantService(db_session).delete_tenant(tenant_id, root, gate)
        
        assert await db_session.get(Tenant, tenant_id) is None
        result = await db_session.execute(
            select(TenantMembership).where(TenantMembership.tenant_id == tenant_id)
        )
        assert result.first() is None
    
    @pytest.mark.asyncio
    async def test_delete_unknown_tenant(self, db_session, root, gate):
        with pytest.raises(NotFoundError):
            await TenantService(db_session).delete_tenant(uuid.uuid4(), root, gate)
    
    @pytest.mark.asyncio
    async def test_settings_merge_requires_admin(self, db_session, alice, bob):
        tenant = await create_tenant(db_session, "acme")
        await add_member(db_session, tenant, alice, "admin")
        await add_member(db_session, tenant, bob, "member")
        service = TenantService(db_session)
        
        await service.update_settings(tenant.id, alice.id, {"theme": "dark"})
        updated = await service.update_settings(tenant.id, alice.id, {"locale": "en"})
        
        assert updated.settings == {"theme": "dark", "locale": "en"}
        with pytest.raises(AuthorizationError):
            await service.update_settings(tenant.id, bob.id, {"theme": "light"})
