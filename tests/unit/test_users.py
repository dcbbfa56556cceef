"""
Unit tests for the user directory.
"""

import pytest

from tenantkey.core.exceptions import ValidationError
from tenantkey.middleware.auth import parse_bearer
from tenantkey.services.users import UserService, normalize_email


class TestUserService:
    
    def test_normalize_email(self):
        assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
        assert normalize_email(None) == ""
    
    @pytest.mark.asyncio
    async def test_get_or_create_is_case_insensitive(self, db_session):
        service = UserService(db_session)
        
        created = await service.get_or_create_user("Alice@Example.com", name="Alice")
        again = await service.get_or_create_user("alice@example.com")
        
        assert again.id == created.id
        assert created.email == "alice@example.com"
        assert created.email_verified is None
    
    @pytest.mark.asyncio
    async def test_create_requires_email(self, db_session):
        with pytest.raises(ValidationError):
            await UserService(db_session).create_user("  ")
    
    @pytest.mark.asyncio
    async def test_mark_email_verified_keeps_first_timestamp(self, db_session, alice):
        service = UserService(db_session)
        
        await service.mark_email_verified(alice)
        first = alice.email_verified
        await service.mark_email_verified(alice)
        
        assert first is not None
        assert alice.email_verified == first


class TestParseBearer:
    
    def test_valid_header(self):
        assert parse_bearer("Bearer abc123") == "abc123"
        assert parse_bearer("bearer abc123") == "abc123"
    
    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer", "Bearer a b"])
    def test_invalid_headers(self, header):
        assert parse_bearer(header) is None
