"""
Passkey (WebAuthn) ceremony engine.

Generates registration/authentication options and verifies the browser's
responses against stored challenges and credentials. Cryptographic checks
are delegated to the ``webauthn`` library; this module owns the state
around them:

- every options call persists a single-use challenge before returning
- every verify call must answer an unconsumed, unexpired challenge
- credentials are bound to internal user ids only (never emails)
- signature counters must strictly increase (replay / clone detection)

Verification failures inside the library are reported as ``verified=False``
so callers can show one generic "authentication failed" message. State and
policy violations (bad challenge, replay, user mismatch) raise.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import base64url_to_bytes, bytes_to_base64url
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.exceptions import WebAuthnException
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    AuthenticatorTransport,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from ...core.config import Settings, settings as default_settings
from ...core.exceptions import (
    AuthorizationError,
    ChallengeError,
    NotFoundError,
    ReplayError,
    ValidationError,
)
from ...models.user import Credential
from ...monitoring.metrics import passkey_replay_rejections_total, record_ceremony
from ..users import UserService
from .challenge_store import AUTHENTICATION, REGISTRATION, ChallengeStore
from .credential_store import CredentialStore

logger = logging.getLogger(__name__)

SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]


@dataclass
class RegistrationResult:
    """Outcome of a registration ceremony."""
    
    verified: bool
    credential_id: Optional[str] = None  # base64url


@dataclass
class AuthenticationResult:
    """Outcome of an authentication ceremony."""
    
    verified: bool
    user_id: Optional[UUID] = None


def coerce_user_id(user_id: Union[UUID, str, None]) -> UUID:
    """
    Accept only an internal user id.
    
    Emails and other free-form strings are rejected so identity is always
    resolved before a ceremony reaches the engine.
    
    Raises:
        ValidationError: If user_id is missing or not a UUID
    """
    if user_id is None or user_id == "":
        raise ValidationError("User ID is required")
    if isinstance(user_id, UUID):
        return user_id
    try:
        return UUID(str(user_id))
    except ValueError:
        raise ValidationError("User ID must be an internal identifier, not an email or name")


def extract_challenge(ceremony_response: Any) -> str:
    """
    Read the challenge the browser signed from clientDataJSON.
    
    Raises:
        ValidationError: If the response is not a well-formed ceremony response
    """
    if not isinstance(ceremony_response, dict):
        raise ValidationError("Ceremony response is required")
    
    inner = ceremony_response.get("response")
    if not isinstance(inner, dict) or not inner.get("clientDataJSON"):
        raise ValidationError("Ceremony response is missing clientDataJSON")
    
    try:
        client_data = json.loads(base64url_to_bytes(inner["clientDataJSON"]))
        challenge = client_data["challenge"]
    except (ValueError, KeyError, TypeError):
        raise ValidationError("Ceremony response has malformed clientDataJSON")
    
    if not isinstance(challenge, str) or not challenge:
        raise ValidationError("Ceremony response has no challenge")
    return challenge


def extract_credential_id(ceremony_response: Dict[str, Any]) -> bytes:
    """
    Read the credential id from rawId (falling back to id).
    
    Raises:
        ValidationError: If neither field holds base64url data
    """
    raw = ceremony_response.get("rawId") or ceremony_response.get("id")
    if not raw or not isinstance(raw, str):
        raise ValidationError("Ceremony response is missing the credential id")
    try:
        return base64url_to_bytes(raw)
    except (ValueError, TypeError):
        raise ValidationError("Ceremony response has a malformed credential id")


def _descriptors(credentials: List[Credential]) -> List[PublicKeyCredentialDescriptor]:
    """Build credential descriptors, dropping transport hints the library doesn't know."""
    descriptors = []
    for credential in credentials:
        transports = []
        for hint in credential.transports or []:
            try:
                transports.append(AuthenticatorTransport(hint))
            except ValueError:
                logger.debug(f"Ignoring unknown transport hint {hint!r}")
        descriptors.append(
            PublicKeyCredentialDescriptor(
                id=credential.credential_id,
                transports=transports or None,
            )
        )
    return descriptors


class PasskeyService:
    """
    Passkey ceremony engine.
    
    All state lives in the database session passed in; the service holds
    no per-ceremony state of its own.
    """
    
    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        self.session = session
        self.settings = settings or default_settings
        self.challenges = ChallengeStore(session, ttl_seconds=self.settings.CHALLENGE_TTL_SECONDS)
        self.credentials = CredentialStore(session)
        self.users = UserService(session)
    
    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------
    
    async def generate_registration_options(
        self,
        user_id: Union[UUID, str],
        user_email: str,
        user_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Build creation options for a new passkey.
        
        The user's existing credentials are excluded so the same
        authenticator is not registered twice.
        
        Args:
            user_id: Internal user id (the user handle is derived from it)
            user_email: Account name shown by the authenticator
            user_name: Display name (defaults to the email)
        
        Returns:
            JSON-ready PublicKeyCredentialCreationOptions
        
        Raises:
            ValidationError: If user_id is missing
        """
        user_id = coerce_user_id(user_id)
        existing = await self.credentials.list_for_user(user_id)
        
        options = generate_registration_options(
            rp_id=self.settings.RP_ID,
            rp_name=self.settings.RP_NAME,
            user_id=user_id.bytes,
            user_name=user_email,
            user_display_name=user_name or user_email,
            timeout=self.settings.WEBAUTHN_TIMEOUT_MS,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                authenticator_attachment=AuthenticatorAttachment.PLATFORM,
                resident_key=ResidentKeyRequirement.PREFERRED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            exclude_credentials=_descriptors(existing),
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )
        
        await self.challenges.create(
            challenge=bytes_to_base64url(options.challenge),
            challenge_type=REGISTRATION,
            user_id=user_id,
        )
        
        logger.info(
            f"Generated registration options for user {user_id} "
            f"({len(existing)} existing credentials excluded)"
        )
        return json.loads(options_to_json(options))
    
    async def verify_registration(
        self,
        user_id: Union[UUID, str],
        registration_response: Dict[str, Any],
    ) -> RegistrationResult:
        """
        Verify an attestation and bind the new credential to the user.
        
        Raises:
            ValidationError: If user_id is missing or the response is malformed
            ChallengeError: If the challenge is unknown, used or expired
            ConflictError: If the credential id is already registered
        """
        user_id = coerce_user_id(user_id)
        challenge_value = extract_challenge(registration_response)
        
        try:
            challenge = await self.challenges.get_for_ceremony(
                challenge_value, REGISTRATION, user_id=user_id
            )
        except ChallengeError as e:
            logger.warning(f"Registration challenge rejected for user {user_id}: {e.reason}")
            record_ceremony(REGISTRATION, "challenge_error")
            raise
        
        try:
            verification = verify_registration_response(
                credential=registration_response,
                expected_challenge=base64url_to_bytes(challenge.challenge),
                expected_origin=self.settings.ORIGIN,
                expected_rp_id=self.settings.RP_ID,
            )
        except WebAuthnException as e:
            logger.warning(f"Registration verification failed for user {user_id}: {e}")
            record_ceremony(REGISTRATION, "failed")
            return RegistrationResult(verified=False)
        
        transports = registration_response["response"].get("transports")
        await self.credentials.create(
            user_id=user_id,
            credential_id=verification.credential_id,
            public_key=verification.credential_public_key,
            counter=0,
            transports=list(transports) if transports else None,
        )
        await self.challenges.mark_used(challenge.id)
        
        user = await self.users.get_user_by_id(user_id)
        if user is not None:
            await self.users.mark_email_verified(user)
        
        credential_id = bytes_to_base64url(verification.credential_id)
        record_ceremony(REGISTRATION, "verified")
        logger.info(f"Passkey registered for user {user_id}")
        return RegistrationResult(verified=True, credential_id=credential_id)
    
    # ------------------------------------------------------------------
    # Authentication
    # ------------------------------------------------------------------
    
    async def generate_authentication_options(
        self,
        user_id: Union[UUID, str, None] = None,
    ) -> Dict[str, Any]:
        """
        Build request options for a login.
        
        With a user id the allow-list holds that user's credentials
        (targeted login). Without one the allow-list is empty and the
        authenticator picks a discoverable credential.
        """
        allow_credentials: List[PublicKeyCredentialDescriptor] = []
        if user_id is not None:
            user_id = coerce_user_id(user_id)
            allow_credentials = _descriptors(await self.credentials.list_for_user(user_id))
        
        options = generate_authentication_options(
            rp_id=self.settings.RP_ID,
            timeout=self.settings.WEBAUTHN_TIMEOUT_MS,
            allow_credentials=allow_credentials,
            user_verification=UserVerificationRequirement.PREFERRED,
        )
        
        await self.challenges.create(
            challenge=bytes_to_base64url(options.challenge),
            challenge_type=AUTHENTICATION,
            user_id=user_id,
        )
        
        logger.debug(
            f"Generated authentication options (user={user_id}, "
            f"allow={len(allow_credentials)})"
        )
        return json.loads(options_to_json(options))
    
    async def verify_authentication(
        self,
        authentication_response: Dict[str, Any],
        expected_user_id: Union[UUID, str, None] = None,
    ) -> AuthenticationResult:
        """
        Verify an assertion and advance the credential's counter.
        
        Args:
            authentication_response: Browser PublicKeyCredential JSON
            expected_user_id: Internal id of the user expected to sign in.
                Omit for discoverable login.
        
        Raises:
            ValidationError: If the response is malformed
            NotFoundError: If no credential matches the response
            ChallengeError: If the challenge is unknown, used or expired
            AuthorizationError: If the credential belongs to another user
            ReplayError: If the signature counter did not increase
        """
        if expected_user_id is not None:
            expected_user_id = coerce_user_id(expected_user_id)
        challenge_value = extract_challenge(authentication_response)
        raw_credential_id = extract_credential_id(authentication_response)
        
        credential = await self.credentials.get_by_credential_id(raw_credential_id)
        if credential is None:
            logger.info("Authentication attempted with an unknown credential")
            record_ceremony(AUTHENTICATION, "not_found")
            raise NotFoundError("Credential not found. Please register a passkey first.")
        
        try:
            challenge = await self.challenges.get_for_ceremony(challenge_value, AUTHENTICATION)
        except ChallengeError as e:
            logger.warning(f"Authentication challenge rejected: {e.reason}")
            record_ceremony(AUTHENTICATION, "challenge_error")
            raise
        
        if expected_user_id is not None and credential.user_id != expected_user_id:
            logger.warning(
                f"Credential {credential.id} belongs to user {credential.user_id}, "
                f"expected {expected_user_id}"
            )
            record_ceremony(AUTHENTICATION, "mismatch")
            raise AuthorizationError("Credential does not belong to this user")
        
        if challenge.user_id is not None and challenge.user_id != credential.user_id:
            logger.warning(
                f"Challenge {challenge.id} was issued for user {challenge.user_id}, "
                f"credential belongs to {credential.user_id}"
            )
            record_ceremony(AUTHENTICATION, "mismatch")
            raise AuthorizationError("Credential does not belong to this user")
        
        try:
            # Counter is enforced below; the library only checks the signature here
            verification = verify_authentication_response(
                credential=authentication_response,
                expected_challenge=base64url_to_bytes(challenge.challenge),
                expected_origin=self.settings.ORIGIN,
                expected_rp_id=self.settings.RP_ID,
                credential_public_key=credential.public_key,
                credential_current_sign_count=0,
            )
        except WebAuthnException as e:
            logger.warning(f"Authentication verification failed for credential {credential.id}: {e}")
            record_ceremony(AUTHENTICATION, "failed")
            return AuthenticationResult(verified=False)
        
        self._check_counter(credential, verification.new_sign_count)
        
        await self.challenges.mark_used(challenge.id)
        try:
            await self.credentials.update_counter(
                credential.credential_id,
                verification.new_sign_count,
                allow_zero=self.settings.WEBAUTHN_ALLOW_ZERO_COUNTER,
            )
        except ReplayError as e:
            self._record_replay(credential, e.stored_counter, e.reported_counter)
            raise
        
        record_ceremony(AUTHENTICATION, "verified")
        logger.info(f"Passkey authentication succeeded for user {credential.user_id}")
        return AuthenticationResult(verified=True, user_id=credential.user_id)
    
    def _check_counter(self, credential: Credential, reported: int) -> None:
        """
        Reject assertions whose counter did not strictly increase.
        
        Raises:
            ReplayError: If reported <= stored
        """
        stored = credential.counter
        if reported > stored:
            return
        if self.settings.WEBAUTHN_ALLOW_ZERO_COUNTER and reported == 0 and stored == 0:
            return
        
        self._record_replay(credential, stored, reported)
        raise ReplayError(
            "Signature counter did not increase",
            stored_counter=stored,
            reported_counter=reported,
        )
    
    def _record_replay(self, credential: Credential, stored: int, reported: int) -> None:
        passkey_replay_rejections_total.inc()
        record_ceremony(AUTHENTICATION, "replay")
        logger.warning(
            f"SECURITY: signature counter replay for credential {credential.id} "
            f"(user {credential.user_id}): stored={stored}, reported={reported}"
        )
