"""
User, passkey credential, challenge and session models.

Credentials and challenges are lifetime-bound to their user and are removed
with it (ON DELETE CASCADE). Sessions store only a digest of the token.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from ..core.clock import utcnow


class User(SQLModel, table=True):
    """
    User identity record.
    
    Email is stored lowercase so the unique index is effectively
    case-insensitive.
    """
    
    __tablename__ = "users"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    email: str = Field(index=True, unique=True, max_length=255)
    name: Optional[str] = Field(default=None, max_length=255)
    email_verified: Optional[datetime] = None
    
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class Credential(SQLModel, table=True):
    """
    WebAuthn public-key credential bound to exactly one user.
    
    Fields:
    - credential_id: raw credential id supplied by the authenticator (globally unique)
    - public_key: COSE-encoded public key used to verify assertions
    - counter: last accepted signature counter (replay detection)
    - transports: authenticator transport hints, e.g. ["internal", "hybrid"]
    """
    
    __tablename__ = "credentials"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    user_id: UUID = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    
    credential_id: bytes = Field(unique=True, index=True)
    public_key: bytes
    counter: int = Field(default=0)
    transports: Optional[List[str]] = Field(default=None, sa_column=Column(JSON))
    name: Optional[str] = Field(default=None, max_length=100)
    
    created_at: datetime = Field(default_factory=utcnow)
    last_used_at: Optional[datetime] = None


class AuthChallenge(SQLModel, table=True):
    """
    Single-use ceremony challenge.
    
    user_id is empty for discoverable (targetless) authentication.
    """
    
    __tablename__ = "auth_challenges"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    challenge: str = Field(index=True, max_length=255)
    user_id: Optional[UUID] = Field(
        default=None, foreign_key="users.id", index=True, ondelete="CASCADE"
    )
    type: str = Field(max_length=20)
    expires_at: datetime
    used: bool = Field(default=False)
    
    created_at: datetime = Field(default_factory=utcnow)
    
    def is_expired(self, now: Optional[datetime] = None) -> bool:
        """Check if challenge is past its expiry."""
        return self.expires_at <= (now or utcnow())


class AuthSession(SQLModel, table=True):
    """Authenticated session; the raw token never touches the database."""
    
    __tablename__ = "sessions"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    token_hash: str = Field(unique=True, index=True, max_length=64)
    user_id: UUID = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    expires: datetime
    
    created_at: datetime = Field(default_factory=utcnow)
