"""
Tenant and membership models.

A tenant must always keep at least one owner membership; that invariant is
enforced by the membership service, not the schema.
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID, uuid4

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from ..core.clock import utcnow


class Tenant(SQLModel, table=True):
    """
    Tenant (Organization) model.
    
    Represents an isolated workspace that can have multiple users.
    Users can belong to multiple tenants.
    """
    
    __tablename__ = "tenants"
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    name: str = Field(max_length=255)
    slug: str = Field(max_length=100, unique=True, index=True)
    description: Optional[str] = None
    domain: Optional[str] = Field(default=None, max_length=255, unique=True)
    subscription_status: str = Field(default="trialing", max_length=20)
    settings: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    
    def is_active(self) -> bool:
        """Suspended tenants carry the cancelled status."""
        return self.subscription_status != "cancelled"


class TenantMembership(SQLModel, table=True):
    """
    Tenant membership model with RBAC.
    
    Roles (ascending privilege):
    - viewer: Read-only access
    - member: Can access and use tenant resources
    - admin: Can manage members and settings
    - owner: Full access, can delete tenant
    
    A membership with joined_at unset is a pending invitation.
    """
    
    __tablename__ = "tenant_memberships"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_tenant_user"),
    )
    
    id: UUID = Field(default_factory=uuid4, primary_key=True)
    
    tenant_id: UUID = Field(foreign_key="tenants.id", index=True, ondelete="CASCADE")
    user_id: UUID = Field(foreign_key="users.id", index=True, ondelete="CASCADE")
    
    role: str = Field(default="member", max_length=20)
    
    # Invitation tracking
    invited_by: Optional[UUID] = Field(default=None, foreign_key="users.id", ondelete="SET NULL")
    invited_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None
    
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    
    def is_owner(self) -> bool:
        """Check if user is tenant owner."""
        return self.role == "owner"
    
    def is_pending(self) -> bool:
        """Check if the invitation has not been accepted yet."""
        return self.joined_at is None
