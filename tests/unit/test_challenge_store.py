"""
Unit tests for single-use ceremony challenges.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from tenantkey.core.clock import utcnow
from tenantkey.core.exceptions import ChallengeError
from tenantkey.models.user import AuthChallenge
from tenantkey.services.passkey.challenge_store import (
    AUTHENTICATION,
    REGISTRATION,
    ChallengeStore,
)


class TestChallengeStore:
    
    @pytest.mark.asyncio
    async def test_create_sets_expiry_from_ttl(self, db_session, alice):
        store = ChallengeStore(db_session, ttl_seconds=120)
        before = utcnow()
        
        record = await store.create("chal-1", REGISTRATION, user_id=alice.id)
        
        assert record.used is False
        assert record.user_id == alice.id
        assert before + timedelta(seconds=119) <= record.expires_at <= utcnow() + timedelta(seconds=120)
    
    @pytest.mark.asyncio
    async def test_unknown_challenge_type_rejected(self, db_session):
        with pytest.raises(ValueError):
            await ChallengeStore(db_session).create("chal", "login")
    
    @pytest.mark.asyncio
    async def test_lookup_returns_usable_challenge(self, db_session, alice):
        store = ChallengeStore(db_session)
        created = await store.create("chal-2", REGISTRATION, user_id=alice.id)
        
        found = await store.get_for_ceremony("chal-2", REGISTRATION, user_id=alice.id)
        
        assert found.id == created.id
    
    @pytest.mark.asyncio
    async def test_lookup_is_scoped_to_type_and_user(self, db_session, alice, bob):
        store = ChallengeStore(db_session)
        await store.create("chal-3", REGISTRATION, user_id=alice.id)
        
        with pytest.raises(ChallengeError) as exc_info:
            await store.get_for_ceremony("chal-3", AUTHENTICATION)
        assert exc_info.value.reason == "not_found"
        
        with pytest.raises(ChallengeError):
            await store.get_for_ceremony("chal-3", REGISTRATION, user_id=bob.id)
    
    @pytest.mark.asyncio
    async def test_used_challenge_is_rejected(self, db_session, alice):
        store = ChallengeStore(db_session)
        record = await store.create("chal-4", AUTHENTICATION, user_id=alice.id)
        await store.mark_used(record.id)
        
        with pytest.raises(ChallengeError) as exc_info:
            await store.get_for_ceremony("chal-4", AUTHENTICATION)
        
        assert exc_info.value.reason == "used"
        assert exc_info.value.status_code == 400
    
    @pytest.mark.asyncio
    async def test_expired_challenge_is_rejected_even_if_unused(self, db_session):
        store = ChallengeStore(db_session)
        record = await store.create("chal-5", AUTHENTICATION)
        record.expires_at = utcnow() - timedelta(seconds=1)
        await db_session.flush()
        
        with pytest.raises(ChallengeError) as exc_info:
            await store.get_for_ceremony("chal-5", AUTHENTICATION)
        
        assert exc_info.value.reason == "expired"
    
    @pytest.mark.asyncio
    async def test_create_sweeps_expired_unused_challenges(self, db_session):
        past = utcnow() - timedelta(minutes=10)
        db_session.add_all([
            AuthChallenge(challenge="stale", type=AUTHENTICATION, expires_at=past),
            AuthChallenge(challenge="consumed", type=AUTHENTICATION, expires_at=past, used=True),
        ])
        await db_session.flush()
        
        await ChallengeStore(db_session).create("fresh", AUTHENTICATION)
        
        result = await db_session.execute(select(AuthChallenge.challenge))
        remaining = set(result.scalars().all())
        assert remaining == {"consumed", "fresh"}
    
    @pytest.mark.asyncio
    async def test_cleanup_expired_reports_count(self, db_session):
        past = utcnow() - timedelta(seconds=5)
        db_session.add_all([
            AuthChallenge(challenge="a", type=AUTHENTICATION, expires_at=past),
            AuthChallenge(challenge="b", type=REGISTRATION, expires_at=past),
        ])
        await db_session.flush()
        store = ChallengeStore(db_session)
        
        assert await store.cleanup_expired() == 2
        assert await store.cleanup_expired() == 0
    
    @pytest.mark.asyncio
    async def test_mark_used_consumes_only_once(self, db_session, alice):
        store = ChallengeStore(db_session)
        record = await store.create("chal-6", AUTHENTICATION, user_id=alice.id)
        
        await store.mark_used(record.id)
        
        with pytest.raises(ChallengeError) as exc_info:
            await store.mark_used(record.id)
        assert exc_info.value.reason == "used"
    
    @pytest.mark.asyncio
    async def test_expiry_reads_back_as_aware_utc(self, db_session):
        store = ChallengeStore(db_session, ttl_seconds=60)
        record = await store.create("chal-7", REGISTRATION)
        
        await db_session.refresh(record)
        
        assert record.expires_at.utcoffset() == timedelta(0)
        assert not record.is_expired()
        assert record.is_expired(utcnow() + timedelta(seconds=61))
