"""
Unit tests for session issuance and resolution.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from tenantkey.core.clock import utcnow
from tenantkey.core.exceptions import ValidationError
from tenantkey.models.user import AuthSession
from tenantkey.services.session_issuer import (
    SessionIssuer,
    hash_token,
    session_cookie_params,
)


class TestSessionIssuer:
    
    @pytest.mark.asyncio
    async def test_issue_returns_opaque_token_and_ttl(self, db_session, alice, test_settings):
        issuer = SessionIssuer(db_session, test_settings)
        
        issued = await issuer.issue(alice.id)
        
        assert len(issued.token) >= 43  # 32 bytes, base64url
        expected = utcnow() + timedelta(days=test_settings.SESSION_TTL_DAYS)
        assert abs((issued.expires - expected).total_seconds()) < 5
    
    @pytest.mark.asyncio
    async def test_only_token_digest_is_stored(self, db_session, alice, test_settings):
        issued = await SessionIssuer(db_session, test_settings).issue(alice.id)
        
        result = await db_session.execute(select(AuthSession))
        stored = result.scalar_one()
        
        assert stored.token_hash == hash_token(issued.token)
        assert stored.token_hash != issued.token
    
    @pytest.mark.asyncio
    async def test_tokens_are_unique(self, db_session, alice, test_settings):
        issuer = SessionIssuer(db_session, test_settings)
        tokens = {(await issuer.issue(alice.id)).token for _ in range(5)}
        assert len(tokens) == 5
    
    @pytest.mark.asyncio
    async def test_issue_requires_user(self, db_session, test_settings):
        with pytest.raises(ValidationError):
            await SessionIssuer(db_session, test_settings).issue(None)
    
    @pytest.mark.asyncio
    async def test_resolve_live_session(self, db_session, alice, test_settings):
        issuer = SessionIssuer(db_session, test_settings)
        issued = await issuer.issue(alice.id)
        
        auth_session, user = await issuer.resolve(issued.token)
        
        assert user.id == alice.id
        assert auth_session.user_id == alice.id
    
    @pytest.mark.asyncio
    async def test_resolve_rejects_unknown_empty_and_expired(self, db_session, alice, test_settings):
        issuer = SessionIssuer(db_session, test_settings)
        issued = await issuer.issue(alice.id)
        
        assert await issuer.resolve(None) is None
        assert await issuer.resolve("not-a-token") is None
        
        result = await db_session.execute(select(AuthSession))
        result.scalar_one().expires = utcnow() - timedelta(seconds=1)
        await db_session.flush()
        
        assert await issuer.resolve(issued.token) is None
    
    @pytest.mark.asyncio
    async def test_invalidate_is_idempotent(self, db_session, alice, test_settings):
        issuer = SessionIssuer(db_session, test_settings)
        issued = await issuer.issue(alice.id)
        
        await issuer.invalidate(issued.token)
        await issuer.invalidate(issued.token)
        await issuer.invalidate(None)
        
        assert await issuer.resolve(issued.token) is None
    
    @pytest.mark.asyncio
    async def test_invalidate_user_sessions(self, db_session, alice, bob, test_settings):
        issuer = SessionIssuer(db_session, test_settings)
        await issuer.issue(alice.id)
        await issuer.issue(alice.id)
        bob_session = await issuer.issue(bob.id)
        
        assert await issuer.invalidate_user_sessions(alice.id) == 2
        assert await issuer.resolve(bob_session.token) is not None
    
    @pytest.mark.asyncio
    async def test_extend_slides_expiry(self, db_session, alice, test_settings):
        issuer = SessionIssuer(db_session, test_settings)
        issued = await issuer.issue(alice.id)
        result = await db_session.execute(select(AuthSession))
        result.scalar_one().expires = utcnow() + timedelta(hours=1)
        await db_session.flush()
        
        new_expiry = await issuer.extend(issued.token)
        
        assert new_expiry > utcnow() + timedelta(days=29)
        assert await issuer.extend("unknown") is None


class TestSessionCookieParams:
    
    def test_cookie_is_http_only_and_lax(self, test_settings):
        params = session_cookie_params(utcnow() + timedelta(days=1), test_settings)
        
        assert params["httponly"] is True
        assert params["samesite"] == "lax"
        assert params["path"] == "/"
        assert params["secure"] is False
        assert 86000 < params["max_age"] <= 86400
    
    def test_cookie_is_secure_in_production(self, test_settings):
        production = test_settings.model_copy(update={"ENVIRONMENT": "production"})
        params = session_cookie_params(utcnow() + timedelta(days=1), production)
        assert params["secure"] is True
