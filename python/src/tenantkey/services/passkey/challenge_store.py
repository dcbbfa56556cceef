"""
Single-use ceremony challenge storage.

Challenges are the only thing tying an options request to the later verify
request. A challenge is accepted at most once and never after expiry,
whatever its used flag says. Expired rows are deleted lazily on insert;
correctness never depends on that sweep.
"""

import logging
from datetime import timedelta
from typing import Optional
from uuid import UUID

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.clock import utcnow
from ...core.exceptions import ChallengeError
from ...models.user import AuthChallenge

logger = logging.getLogger(__name__)

REGISTRATION = "registration"
AUTHENTICATION = "authentication"
CHALLENGE_TYPES = (REGISTRATION, AUTHENTICATION)


class ChallengeStore:
    """Persistence for registration/authentication challenges."""
    
    def __init__(self, session: AsyncSession, ttl_seconds: int = 300):
        self.session = session
        self.ttl = timedelta(seconds=ttl_seconds)
    
    async def create(
        self,
        challenge: str,
        challenge_type: str,
        user_id: Optional[UUID] = None,
    ) -> AuthChallenge:
        """
        Persist a new challenge valid for the configured TTL.
        
        Args:
            challenge: base64url challenge value sent to the browser
            challenge_type: "registration" or "authentication"
            user_id: Owning user (None for discoverable authentication)
        """
        if challenge_type not in CHALLENGE_TYPES:
            raise ValueError(f"Unknown challenge type: {challenge_type}")
        
        await self.cleanup_expired()
        
        record = AuthChallenge(
            challenge=challenge,
            user_id=user_id,
            type=challenge_type,
            expires_at=utcnow() + self.ttl,
        )
        self.session.add(record)
        await self.session.flush()
        
        logger.debug(f"Stored {challenge_type} challenge {record.id} (user={user_id})")
        return record
    
    async def get_for_ceremony(
        self,
        challenge: str,
        challenge_type: str,
        user_id: Optional[UUID] = None,
    ) -> AuthChallenge:
        """
        Fetch the challenge a ceremony response claims to answer.
        
        When user_id is given the challenge must have been issued for that
        user. The row is locked for the rest of the transaction so two
        concurrent verifications cannot both consume it.
        
        Raises:
            ChallengeError: If no such challenge, already used, or expired
        """
        stmt = (
            select(AuthChallenge)
            .where(
                AuthChallenge.challenge == challenge,
                AuthChallenge.type == challenge_type,
            )
            .with_for_update()
        )
        if user_id is not None:
            stmt = stmt.where(AuthChallenge.user_id == user_id)
        
        result = await self.session.execute(stmt)
        records = result.scalars().all()
        
        if not records:
            raise ChallengeError(reason="not_found")
        
        # Prefer a usable record if a value was somehow issued twice
        now = utcnow()
        for record in records:
            if not record.used and not record.is_expired(now):
                return record
        
        if all(record.used for record in records):
            raise ChallengeError(reason="used")
        raise ChallengeError(reason="expired")
    
    async def mark_used(self, challenge_id: UUID) -> None:
        """
        Consume a challenge.
        
        The update only matches a row that is still unused, so of two
        transactions racing on the same challenge exactly one succeeds.
        
        Raises:
            ChallengeError: If the challenge was already consumed
        """
        result = await self.session.execute(
            update(AuthChallenge)
            .where(
                AuthChallenge.id == challenge_id,
                AuthChallenge.used.is_(False),
            )
            .values(used=True)
        )
        if result.rowcount != 1:
            logger.warning(f"Challenge {challenge_id} was consumed concurrently")
            raise ChallengeError(reason="used")
    
    async def cleanup_expired(self) -> int:
        """
        Delete expired challenges that were never used.
        
        Returns:
            Number of rows deleted
        """
        result = await self.session.execute(
            delete(AuthChallenge).where(
                AuthChallenge.used.is_(False),
                AuthChallenge.expires_at < utcnow(),
            )
        )
        return result.rowcount or 0
