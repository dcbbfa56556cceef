"""
Passkey credential persistence.

Credential ids are globally unique; each credential belongs to exactly one
user and a user may hold any number of them (one per device).
"""

import logging
from typing import List, Optional
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.clock import utcnow
from ...core.exceptions import ConflictError, NotFoundError, ReplayError
from ...models.user import Credential

logger = logging.getLogger(__name__)


class CredentialStore:
    """CRUD for WebAuthn credentials."""
    
    def __init__(self, session: AsyncSession):
        self.session = session
    
    async def list_for_user(self, user_id: UUID) -> List[Credential]:
        result = await self.session.execute(
            select(Credential)
            .where(Credential.user_id == user_id)
            .order_by(Credential.created_at)
        )
        return list(result.scalars().all())
    
    async def get_by_credential_id(self, credential_id: bytes) -> Optional[Credential]:
        result = await self.session.execute(
            select(Credential).where(Credential.credential_id == credential_id)
        )
        return result.scalar_one_or_none()
    
    async def create(
        self,
        user_id: UUID,
        credential_id: bytes,
        public_key: bytes,
        counter: int = 0,
        transports: Optional[List[str]] = None,
        name: Optional[str] = None,
    ) -> Credential:
        """
        Bind a new credential to a user.
        
        Raises:
            ConflictError: If the credential id is already registered
        """
        if await self.get_by_credential_id(credential_id) is not None:
            raise ConflictError("Credential is already registered")
        
        credential = Credential(
            user_id=user_id,
            credential_id=credential_id,
            public_key=public_key,
            counter=counter,
            transports=transports,
            name=name,
        )
        self.session.add(credential)
        await self.session.flush()
        
        logger.info(f"Registered credential {credential.id} for user {user_id}")
        return credential
    
    async def update_counter(
        self,
        credential_id: bytes,
        counter: int,
        allow_zero: bool = False,
    ) -> None:
        """
        Store the last accepted signature counter and usage time.
        
        The write only matches while the stored counter is below the new
        value, so two assertions carrying the same counter cannot both be
        accepted. With allow_zero a stored 0 may be rewritten with 0 for
        authenticators that never increment.
        
        Raises:
            ReplayError: If the stored counter is already at or above counter
        """
        advances = Credential.counter < counter
        if allow_zero and counter == 0:
            advances = or_(advances, Credential.counter == 0)
        
        result = await self.session.execute(
            update(Credential)
            .where(Credential.credential_id == credential_id, advances)
            .values(counter=counter, last_used_at=utcnow())
        )
        if result.rowcount != 1:
            stored = await self.session.scalar(
                select(Credential.counter).where(Credential.credential_id == credential_id)
            )
            raise ReplayError(
                "Signature counter did not increase",
                stored_counter=stored or 0,
                reported_counter=counter,
            )
    
    async def rename(self, user_id: UUID, credential_pk: UUID, name: str) -> Credential:
        credential = await self._get_owned(user_id, credential_pk)
        credential.name = name
        await self.session.flush()
        return credential
    
    async def delete(self, user_id: UUID, credential_pk: UUID) -> None:
        """
        Remove one of the user's credentials.
        
        Raises:
            NotFoundError: If the credential does not exist or belongs to someone else
        """
        credential = await self._get_owned(user_id, credential_pk)
        await self.session.delete(credential)
        await self.session.flush()
        logger.info(f"Deleted credential {credential_pk} for user {user_id}")
    
    async def _get_owned(self, user_id: UUID, credential_pk: UUID) -> Credential:
        credential = await self.session.get(Credential, credential_pk)
        if credential is None or credential.user_id != user_id:
            raise NotFoundError("Credential not found")
        return credential
