"""
Team (tenant membership) API endpoints.

Endpoints:
- GET    /team/members
- POST   /team/invite
- PATCH  /team/members/{membership_id}
- DELETE /team/members/{membership_id}
- POST   /team/members/{membership_id}/transfer-ownership
- POST   /team/invitations/{membership_id}/accept

The tenant comes from the X-Tenant-Id header. Each route declares its
capability through require_capability; the membership service re-checks
the hierarchy and last-owner rules inside the same transaction.
"""

import logging
from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ...database import get_session
from ...models.tenant import TenantMembership
from ...models.user import User
from ...services.tenant import Capability, MembershipService
from ..deps import get_current_user, require_capability

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/team", tags=["team"])


class InviteRequest(BaseModel):
    email: EmailStr
    role: Literal["member", "admin"]


class UpdateMemberRequest(BaseModel):
    """Owner is deliberately not accepted here; see transfer-ownership."""
    
    role: Optional[Literal["member", "admin"]] = None


class TransferOwnershipRequest(BaseModel):
    demote_self: bool = Field(
        default=False,
        description="Step down to admin once the new owner is in place",
    )


class MemberResponse(BaseModel):
    id: str
    user_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    role: str
    invited_by: Optional[str] = None
    invited_at: Optional[datetime] = None
    joined_at: Optional[datetime] = None


def _member_response(membership: TenantMembership, user: Optional[User] = None) -> MemberResponse:
    return MemberResponse(
        id=str(membership.id),
        user_id=str(membership.user_id),
        email=user.email if user else None,
        name=user.name if user else None,
        role=membership.role,
        invited_by=str(membership.invited_by) if membership.invited_by else None,
        invited_at=membership.invited_at,
        joined_at=membership.joined_at,
    )


@router.get("/members", response_model=List[MemberResponse])
async def list_members(
    requester: TenantMembership = Depends(require_capability(Capability.VIEW_TENANT)),
    session: AsyncSession = Depends(get_session),
) -> List[MemberResponse]:
    members = await MembershipService(session).list_members(requester.tenant_id)
    return [_member_response(membership, user) for membership, user in members]


@router.post("/invite", response_model=MemberResponse, status_code=status.HTTP_201_CREATED)
async def invite_member(
    request: InviteRequest,
    requester: TenantMembership = Depends(require_capability(Capability.INVITE_MEMBER)),
    session: AsyncSession = Depends(get_session),
) -> MemberResponse:
    membership, invitee = await MembershipService(session).invite_member(
        tenant_id=requester.tenant_id,
        email=request.email,
        role=request.role,
        invited_by=requester.user_id,
    )
    return _member_response(membership, invitee)


@router.patch("/members/{membership_id}", response_model=MemberResponse)
async def update_member(
    membership_id: UUID,
    request: UpdateMemberRequest,
    requester: TenantMembership = Depends(require_capability(Capability.CHANGE_ROLE)),
    session: AsyncSession = Depends(get_session),
) -> MemberResponse:
    service = MembershipService(session)
    if request.role is None:
        membership = await service.get_tenant_membership(requester.tenant_id, membership_id)
    else:
        membership = await service.update_member_role(
            tenant_id=requester.tenant_id,
            requester_id=requester.user_id,
            membership_id=membership_id,
            new_role=request.role,
        )
    return _member_response(membership)


@router.delete("/members/{membership_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_member(
    membership_id: UUID,
    requester: TenantMembership = Depends(require_capability(Capability.REMOVE_MEMBER)),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await MembershipService(session).remove_member(
        tenant_id=requester.tenant_id,
        requester_id=requester.user_id,
        membership_id=membership_id,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/members/{membership_id}/transfer-ownership", response_model=MemberResponse)
async def transfer_ownership(
    membership_id: UUID,
    request: TransferOwnershipRequest,
    requester: TenantMembership = Depends(require_capability(Capability.MANAGE_OWNER)),
    session: AsyncSession = Depends(get_session),
) -> MemberResponse:
    membership = await MembershipService(session).transfer_ownership(
        tenant_id=requester.tenant_id,
        requester_id=requester.user_id,
        membership_id=membership_id,
        demote_self=request.demote_self,
    )
    return _member_response(membership)


@router.post("/invitations/{membership_id}/accept", response_model=MemberResponse)
async def accept_invitation(
    membership_id: UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> MemberResponse:
    membership = await MembershipService(session).accept_invitation(membership_id, user.id)
    return _member_response(membership, user)
