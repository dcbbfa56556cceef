"""
Session issuance.

Turns a verified ceremony into an opaque bearer token. The token has 256
bits of entropy and only its SHA-256 digest is stored, so a database leak
does not yield usable sessions. Transporting the token (cookie) is the
caller's job; see session_cookie_params.
"""

import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import utcnow
from ..core.config import Settings, settings as default_settings
from ..core.exceptions import ValidationError
from ..models.user import AuthSession, User
from ..monitoring.metrics import sessions_invalidated_total, sessions_issued_total

logger = logging.getLogger(__name__)

TOKEN_BYTES = 32  # 256 bits


@dataclass
class IssuedSession:
    """Token handed back to the caller exactly once."""
    
    token: str
    expires: datetime


def hash_token(token: str) -> str:
    """Digest used as the lookup key for a session token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def session_cookie_params(expires: datetime, settings: Optional[Settings] = None) -> dict:
    """
    Cookie attributes for a session token.
    
    Returns:
        Keyword arguments for Response.set_cookie (minus key/value)
    """
    settings = settings or default_settings
    max_age = max(int((expires - utcnow()).total_seconds()), 0)
    return {
        "httponly": True,
        "secure": settings.is_production,
        "samesite": "lax",
        "path": "/",
        "max_age": max_age,
    }


class SessionIssuer:
    """Creates, resolves and invalidates authenticated sessions."""
    
    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        self.session = session
        self.settings = settings or default_settings
        self.ttl = timedelta(days=self.settings.SESSION_TTL_DAYS)
    
    async def issue(self, user_id: UUID) -> IssuedSession:
        """
        Create a session for a user who just completed a ceremony.
        
        Raises:
            ValidationError: If user_id is missing
        """
        if not user_id:
            raise ValidationError("User ID is required")
        
        token = secrets.token_urlsafe(TOKEN_BYTES)
        expires = utcnow() + self.ttl
        
        self.session.add(
            AuthSession(token_hash=hash_token(token), user_id=user_id, expires=expires)
        )
        await self.session.flush()
        
        sessions_issued_total.inc()
        logger.info(f"Issued session for user {user_id} (expires {expires.isoformat()})")
        return IssuedSession(token=token, expires=expires)
    
    async def resolve(self, token: Optional[str]) -> Optional[Tuple[AuthSession, User]]:
        """
        Look up a live session and its user.
        
        Returns:
            (session, user) or None if the token is unknown or expired
        """
        if not token:
            return None
        
        result = await self.session.execute(
            select(AuthSession, User)
            .join(User, AuthSession.user_id == User.id)
            .where(
                AuthSession.token_hash == hash_token(token),
                AuthSession.expires > utcnow(),
            )
            .limit(1)
        )
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]
    
    async def extend(self, token: str) -> Optional[datetime]:
        """Slide a live session's expiry forward by the full TTL."""
        resolved = await self.resolve(token)
        if resolved is None:
            return None
        auth_session, _ = resolved
        auth_session.expires = utcnow() + self.ttl
        await self.session.flush()
        return auth_session.expires
    
    async def invalidate(self, token: Optional[str]) -> None:
        """Delete a session. Unknown or empty tokens are ignored."""
        if not token:
            return
        result = await self.session.execute(
            delete(AuthSession).where(AuthSession.token_hash == hash_token(token))
        )
        if result.rowcount:
            sessions_invalidated_total.inc()
            logger.info("Session invalidated")
    
    async def invalidate_user_sessions(self, user_id: UUID) -> int:
        """
        Delete every session belonging to a user.
        
        Returns:
            Number of sessions deleted
        """
        result = await self.session.execute(
            delete(AuthSession).where(AuthSession.user_id == user_id)
        )
        count = result.rowcount or 0
        if count:
            sessions_invalidated_total.inc(count)
        logger.info(f"Invalidated {count} sessions for user {user_id}")
        return count
