"""
Pytest configuration and fixtures.

Provides shared fixtures for all tests including:
- Database session (in-memory SQLite)
- Users, tenants and memberships
- Ceremony response builders for the passkey engine
"""

import hashlib
import json
import os
import struct
from typing import AsyncGenerator, Optional

import cbor2
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from webauthn.helpers import bytes_to_base64url

from tenantkey import models  # noqa: F401
from tenantkey.core.clock import utcnow
from tenantkey.core.config import Settings
from tenantkey.models.tenant import Tenant, TenantMembership
from tenantkey.models.user import User


# Test database URL (use in-memory or test database)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ORIGIN = "https://app.example.com"
TEST_RP_ID = "app.example.com"


@pytest.fixture(scope="function")
async def db_engine():
    """Create test database engine."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    
    # Create all tables
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    
    yield engine
    
    # Drop all tables
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    
    await engine.dispose()


@pytest.fixture(scope="function")
def session_maker(db_engine):
    return sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def test_settings() -> Settings:
    """Settings pinned to a known relying party."""
    return Settings(
        ENVIRONMENT="testing",
        RP_ID=TEST_RP_ID,
        RP_NAME="TenantKey Test",
        ORIGIN=TEST_ORIGIN,
        CHALLENGE_TTL_SECONDS=300,
        SESSION_TTL_DAYS=30,
        SYSTEM_ADMIN_EMAILS=["root@example.com"],
    )


async def create_user(session: AsyncSession, email: str, name: Optional[str] = None) -> User:
    user = User(email=email.lower(), name=name)
    session.add(user)
    await session.flush()
    return user


async def create_tenant(session: AsyncSession, slug: str, name: Optional[str] = None) -> Tenant:
    tenant = Tenant(name=name or slug.title(), slug=slug)
    session.add(tenant)
    await session.flush()
    return tenant


async def add_member(
    session: AsyncSession,
    tenant: Tenant,
    user: User,
    role: str,
    pending: bool = False,
) -> TenantMembership:
    membership = TenantMembership(
        tenant_id=tenant.id,
        user_id=user.id,
        role=role,
        joined_at=None if pending else utcnow(),
    )
    session.add(membership)
    await session.flush()
    return membership


def client_data_json(ceremony_type: str, challenge: str, origin: str = TEST_ORIGIN) -> str:
    """base64url clientDataJSON as a browser would produce it."""
    payload = {"type": ceremony_type, "challenge": challenge, "origin": origin}
    return bytes_to_base64url(json.dumps(payload).encode("utf-8"))


def registration_response(challenge: str, credential_id: bytes, transports=None) -> dict:
    raw_id = bytes_to_base64url(credential_id)
    return {
        "id": raw_id,
        "rawId": raw_id,
        "type": "public-key",
        "response": {
            "clientDataJSON": client_data_json("webauthn.create", challenge),
            "attestationObject": bytes_to_base64url(b"attestation"),
            "transports": transports or ["internal"],
        },
    }


def authentication_response(challenge: str, credential_id: bytes) -> dict:
    raw_id = bytes_to_base64url(credential_id)
    return {
        "id": raw_id,
        "rawId": raw_id,
        "type": "public-key",
        "response": {
            "clientDataJSON": client_data_json("webauthn.get", challenge),
            "authenticatorData": bytes_to_base64url(b"authenticator-data"),
            "signature": bytes_to_base64url(b"signature"),
        },
    }


class SoftwareAuthenticator:
    """
    Platform authenticator emulated with an in-memory P-256 key.
    
    Produces "none" attestations and ES256 assertions that the webauthn
    library verifies for real.
    """
    
    def __init__(self, rp_id: str = TEST_RP_ID, origin: str = TEST_ORIGIN):
        self.rp_id = rp_id
        self.origin = origin
        self.credential_id = os.urandom(16)
        self.sign_count = 0
        self._key = ec.generate_private_key(ec.SECP256R1())
    
    def _cose_public_key(self) -> bytes:
        numbers = self._key.public_key().public_numbers()
        return cbor2.dumps({
            1: 2,    # kty: EC2
            3: -7,   # alg: ES256
            -1: 1,   # crv: P-256
            -2: numbers.x.to_bytes(32, "big"),
            -3: numbers.y.to_bytes(32, "big"),
        })
    
    def _client_data(self, ceremony_type: str, challenge: str, origin: Optional[str]) -> bytes:
        payload = {
            "type": ceremony_type,
            "challenge": challenge,
            "origin": origin or self.origin,
            "crossOrigin": False,
        }
        return json.dumps(payload).encode("utf-8")
    
    def _auth_data(self, flags: int, attested: bytes = b"") -> bytes:
        rp_id_hash = hashlib.sha256(self.rp_id.encode("utf-8")).digest()
        return rp_id_hash + bytes([flags]) + struct.pack(">I", self.sign_count) + attested
    
    def create(self, challenge: str, origin: Optional[str] = None) -> dict:
        """Answer navigator.credentials.create() options."""
        attested = (
            bytes(16)  # aaguid
            + struct.pack(">H", len(self.credential_id))
            + self.credential_id
            + self._cose_public_key()
        )
        auth_data = self._auth_data(0x45, attested)  # UP | UV | AT
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        raw_id = bytes_to_base64url(self.credential_id)
        return {
            "id": raw_id,
            "rawId": raw_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(
                    self._client_data("webauthn.create", challenge, origin)
                ),
                "attestationObject": bytes_to_base64url(attestation_object),
                "transports": ["internal"],
            },
            "clientExtensionResults": {},
        }
    
    def get(self, challenge: str, origin: Optional[str] = None, bump_counter: bool = True) -> dict:
        """Answer navigator.credentials.get() options with a signed assertion."""
        if bump_counter:
            self.sign_count += 1
        auth_data = self._auth_data(0x05)  # UP | UV
        client_data = self._client_data("webauthn.get", challenge, origin)
        signature = self._key.sign(
            auth_data + hashlib.sha256(client_data).digest(),
            ec.ECDSA(hashes.SHA256()),
        )
        raw_id = bytes_to_base64url(self.credential_id)
        return {
            "id": raw_id,
            "rawId": raw_id,
            "type": "public-key",
            "response": {
                "clientDataJSON": bytes_to_base64url(client_data),
                "authenticatorData": bytes_to_base64url(auth_data),
                "signature": bytes_to_base64url(signature),
            },
            "clientExtensionResults": {},
        }


@pytest.fixture
async def alice(db_session: AsyncSession) -> User:
    return await create_user(db_session, "alice@example.com", "Alice")


@pytest.fixture
async def bob(db_session: AsyncSession) -> User:
    return await create_user(db_session, "bob@example.com", "Bob")
