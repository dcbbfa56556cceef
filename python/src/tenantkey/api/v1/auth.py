"""
Passkey authentication API endpoints.

Endpoints:
- POST /auth/passkey/register/options
- POST /auth/passkey/register/verify
- POST /auth/passkey/authenticate/options
- POST /auth/passkey/authenticate/verify
- POST /auth/logout
- GET  /auth/me
- GET/PATCH/DELETE /auth/passkeys

Emails are resolved to user ids here, once, before anything reaches the
ceremony engine.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from sqlalchemy.ext.asyncio import AsyncSession
from webauthn.helpers import bytes_to_base64url

from ...core.config import settings
from ...core.exceptions import AuthorizationError, NotFoundError
from ...database import get_session
from ...middleware.auth import get_session_token
from ...models.user import User
from ...services.admin_gate import SystemAdminGate
from ...services.passkey import CredentialStore, PasskeyService
from ...services.session_issuer import SessionIssuer, session_cookie_params
from ...services.tenant import MembershipService
from ...services.users import UserService
from ..deps import get_admin_gate, get_current_user, get_optional_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["authentication"])


# Request/Response Models

class RegistrationOptionsRequest(BaseModel):
    """Start passkey registration for an email (user is created if new)."""
    
    email: EmailStr
    name: Optional[str] = Field(default=None, max_length=255)


class RegistrationVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    email: EmailStr
    registration_response: Dict[str, Any] = Field(alias="registrationResponse")


class RegistrationVerifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    verified: bool
    credential_id: Optional[str] = Field(default=None, serialization_alias="credentialId")


class AuthenticationOptionsRequest(BaseModel):
    """Omit email for discoverable (username-less) login."""
    
    email: Optional[EmailStr] = None


class AuthenticationVerifyRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    authentication_response: Dict[str, Any] = Field(alias="authenticationResponse")
    email: Optional[EmailStr] = None


class AuthenticationVerifyResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)
    
    verified: bool
    user_id: Optional[str] = Field(default=None, serialization_alias="userId")


class MembershipSummary(BaseModel):
    tenant_id: str
    tenant_slug: str
    tenant_name: str
    role: str


class MeResponse(BaseModel):
    id: str
    email: str
    name: Optional[str]
    is_system_admin: bool
    tenants: List[MembershipSummary]


class PasskeyResponse(BaseModel):
    id: str
    credential_id: str
    name: Optional[str]
    transports: Optional[List[str]]
    created_at: datetime
    last_used_at: Optional[datetime]


class PasskeyRenameRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)


# Endpoints

async def _check_registration_allowed(
    session: AsyncSession,
    user: User,
    current_user: Optional[User],
) -> None:
    """
    Adding a passkey to an account that already has one needs that account's session.
    
    New and invited users (no credentials yet) register with just their email.
    
    Raises:
        AuthorizationError: If the account has credentials and the caller is not signed in as it
    """
    if current_user is not None and current_user.id == user.id:
        return
    if await CredentialStore(session).list_for_user(user.id):
        logger.warning(f"Unauthenticated passkey registration refused for existing user {user.id}")
        raise AuthorizationError("Sign in to add another passkey to this account")


@router.post(
    "/passkey/register/options",
    summary="Generate passkey registration options",
)
async def registration_options(
    request: RegistrationOptionsRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """Find or create the user, then issue creation options bound to their id."""
    user = await UserService(session).get_or_create_user(request.email, name=request.name)
    await _check_registration_allowed(session, user, current_user)
    
    return await PasskeyService(session).generate_registration_options(
        user_id=user.id,
        user_email=user.email,
        user_name=user.name,
    )


@router.post(
    "/passkey/register/verify",
    response_model=RegistrationVerifyResponse,
    response_model_by_alias=True,
    summary="Verify passkey registration",
)
async def registration_verify(
    request: RegistrationVerifyRequest,
    current_user: Optional[User] = Depends(get_optional_user),
    session: AsyncSession = Depends(get_session),
):
    user = await UserService(session).get_user_by_email(request.email)
    if user is None:
        raise NotFoundError("User not found")
    await _check_registration_allowed(session, user, current_user)
    
    result = await PasskeyService(session).verify_registration(
        user.id, request.registration_response
    )
    
    body = RegistrationVerifyResponse(verified=result.verified, credential_id=result.credential_id)
    if not result.verified:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=body.model_dump(by_alias=True),
        )
    return body


@router.post(
    "/passkey/authenticate/options",
    summary="Generate passkey authentication options",
)
async def authentication_options(
    request: AuthenticationOptionsRequest,
    session: AsyncSession = Depends(get_session),
) -> Dict[str, Any]:
    """
    Targeted options when the email is known, discoverable options otherwise.
    
    Unknown emails get the same discoverable options as no email at all, so
    the response does not reveal whether an account exists.
    """
    user_id: Optional[UUID] = None
    if request.email:
        user = await UserService(session).get_user_by_email(request.email)
        if user is not None:
            user_id = user.id
        else:
            logger.debug("Authentication options requested for unknown email")
    
    return await PasskeyService(session).generate_authentication_options(user_id=user_id)


@router.post(
    "/passkey/authenticate/verify",
    response_model=AuthenticationVerifyResponse,
    response_model_by_alias=True,
    summary="Verify passkey authentication and start a session",
)
async def authentication_verify(
    request: AuthenticationVerifyRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
):
    expected_user_id: Optional[UUID] = None
    if request.email:
        user = await UserService(session).get_user_by_email(request.email)
        if user is None:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content=AuthenticationVerifyResponse(verified=False).model_dump(by_alias=True),
            )
        expected_user_id = user.id
    
    result = await PasskeyService(session).verify_authentication(
        request.authentication_response,
        expected_user_id=expected_user_id,
    )
    
    if not result.verified:
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content=AuthenticationVerifyResponse(verified=False).model_dump(by_alias=True),
        )
    
    issued = await SessionIssuer(session).issue(result.user_id)
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=issued.token,
        **session_cookie_params(issued.expires),
    )
    
    return AuthenticationVerifyResponse(verified=True, user_id=str(result.user_id))


@router.post("/logout", status_code=status.HTTP_204_NO_CONTENT)
async def logout(
    token: Optional[str] = Depends(get_session_token),
    session: AsyncSession = Depends(get_session),
) -> Response:
    """Invalidate the current session (no-op without one) and clear the cookie."""
    await SessionIssuer(session).invalidate(token)
    
    response = Response(status_code=status.HTTP_204_NO_CONTENT)
    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    return response


@router.get("/me", response_model=MeResponse)
async def me(
    user: User = Depends(get_current_user),
    gate: SystemAdminGate = Depends(get_admin_gate),
    session: AsyncSession = Depends(get_session),
) -> MeResponse:
    memberships = await MembershipService(session).list_user_tenants(user.id)
    
    return MeResponse(
        id=str(user.id),
        email=user.email,
        name=user.name,
        is_system_admin=gate.is_user_system_admin(user),
        tenants=[
            MembershipSummary(
                tenant_id=str(tenant.id),
                tenant_slug=tenant.slug,
                tenant_name=tenant.name,
                role=membership.role,
            )
            for membership, tenant in memberships
        ],
    )


@router.get("/passkeys", response_model=List[PasskeyResponse])
async def list_passkeys(
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> List[PasskeyResponse]:
    credentials = await CredentialStore(session).list_for_user(user.id)
    return [
        PasskeyResponse(
            id=str(credential.id),
            credential_id=bytes_to_base64url(credential.credential_id),
            name=credential.name,
            transports=credential.transports,
            created_at=credential.created_at,
            last_used_at=credential.last_used_at,
        )
        for credential in credentials
    ]


@router.patch("/passkeys/{passkey_id}", response_model=PasskeyResponse)
async def rename_passkey(
    passkey_id: UUID,
    request: PasskeyRenameRequest,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> PasskeyResponse:
    credential = await CredentialStore(session).rename(user.id, passkey_id, request.name)
    return PasskeyResponse(
        id=str(credential.id),
        credential_id=bytes_to_base64url(credential.credential_id),
        name=credential.name,
        transports=credential.transports,
        created_at=credential.created_at,
        last_used_at=credential.last_used_at,
    )


@router.delete("/passkeys/{passkey_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_passkey(
    passkey_id: UUID,
    user: User = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> Response:
    await CredentialStore(session).delete(user.id, passkey_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
