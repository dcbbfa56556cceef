"""
Passkey (WebAuthn) services.

Challenge and credential stores plus the ceremony engine built on them.
"""

from .challenge_store import AUTHENTICATION, REGISTRATION, ChallengeStore
from .credential_store import CredentialStore
from .engine import AuthenticationResult, PasskeyService, RegistrationResult

__all__ = [
    "AUTHENTICATION",
    "REGISTRATION",
    "ChallengeStore",
    "CredentialStore",
    "PasskeyService",
    "RegistrationResult",
    "AuthenticationResult",
]
