"""
Concurrent owner demotion against a file-backed SQLite database.

Each side runs in its own session and connection, the way two requests
would, so the last-owner check has to hold across transactions.
"""

import asyncio

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

from tenantkey.core.exceptions import PolicyError
from tenantkey.database import configure_sqlite_transactions
from tenantkey.services.tenant import MembershipService

from tests.conftest import add_member, create_tenant, create_user


pytestmark = pytest.mark.security


@pytest.fixture
async def file_session_maker(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'owners.db'}")
    configure_sqlite_transactions(engine)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

    yield sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest.fixture
async def two_owners(file_session_maker):
    async with file_session_maker() as session:
        tenant = await create_tenant(session, "globex")
        first = await create_user(session, "first@example.com")
        second = await create_user(session, "second@example.com")
        first_m = await add_member(session, tenant, first, "owner")
        second_m = await add_member(session, tenant, second, "owner")
        await session.commit()

    return {
        "tenant_id": tenant.id,
        "first": (first.id, first_m.id),
        "second": (second.id, second_m.id),
    }


class TestConcurrentOwnerDemotion:

    async def _run(self, session_maker, action, *args):
        async with session_maker() as session:
            try:
                await action(MembershipService(session), *args)
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def _owner_count(self, session_maker, tenant_id):
        async with session_maker() as session:
            return await MembershipService(session).count_owners(tenant_id)

    @pytest.mark.asyncio
    async def test_owners_demoting_each_other_keep_one_owner(self, file_session_maker, two_owners):
        tenant_id = two_owners["tenant_id"]
        first_id, first_m = two_owners["first"]
        second_id, second_m = two_owners["second"]

        def demote(service, requester_id, membership_id):
            return service.update_member_role(tenant_id, requester_id, membership_id, "admin")

        results = await asyncio.gather(
            self._run(file_session_maker, demote, first_id, second_m),
            self._run(file_session_maker, demote, second_id, first_m),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], PolicyError)
        assert await self._owner_count(file_session_maker, tenant_id) == 1

    @pytest.mark.asyncio
    async def test_owners_removing_each_other_keep_one_owner(self, file_session_maker, two_owners):
        tenant_id = two_owners["tenant_id"]
        first_id, first_m = two_owners["first"]
        second_id, second_m = two_owners["second"]

        def remove(service, requester_id, membership_id):
            return service.remove_member(tenant_id, requester_id, membership_id)

        results = await asyncio.gather(
            self._run(file_session_maker, remove, first_id, second_m),
            self._run(file_session_maker, remove, second_id, first_m),
            return_exceptions=True,
        )

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert await self._owner_count(file_session_maker, tenant_id) == 1
