"""
User directory.

This is the only place an email is turned into a user. Callers resolve
email → user here, at the request boundary, and hand the resulting user id
to the ceremony engine; the engine never sees an email.
"""

import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.exceptions import ValidationError
from ..models.user import User

logger = logging.getLogger(__name__)


def normalize_email(email: Optional[str]) -> str:
    """Trim and lowercase an email address."""
    return (email or "").strip().lower()


class UserService:
    """Lookup and creation of user identity records."""
    
    def __init__(self, session: AsyncSession):
        self.session = session
    
    async def get_user_by_email(self, email: str) -> Optional[User]:
        normalized = normalize_email(email)
        if not normalized:
            return None
        result = await self.session.execute(
            select(User).where(User.email == normalized).limit(1)
        )
        return result.scalar_one_or_none()
    
    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        return await self.session.get(User, user_id)
    
    async def create_user(self, email: str, name: Optional[str] = None) -> User:
        normalized = normalize_email(email)
        if not normalized:
            raise ValidationError("Email is required")
        
        user = User(email=normalized, name=name)
        self.session.add(user)
        await self.session.flush()
        
        logger.info(f"Created new user: {user.id}")
        return user
    
    async def get_or_create_user(self, email: str, name: Optional[str] = None) -> User:
        """Find a user by email, creating an unverified one if absent."""
        user = await self.get_user_by_email(email)
        if user is None:
            user = await self.create_user(email, name=name)
        return user
    
    async def mark_email_verified(self, user: User) -> None:
        """Record the first proof of control over the account."""
        if user.email_verified is None:
            user.email_verified = utcnow()
            user.updated_at = utcnow()
            await self.session.flush()
