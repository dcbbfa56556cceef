"""
Exception hierarchy for the authentication and tenancy core.

Each exception carries the HTTP status code and stable error code that the
API layer renders. Cryptographic verification failures are NOT part of this
hierarchy: the ceremony engine reports them as ``verified=False``.
"""

from typing import Optional


class TenantKeyError(Exception):
    """Base exception for all service-layer errors."""
    
    status_code: int = 400
    error_code: str = "error"
    
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class ValidationError(TenantKeyError):
    """Malformed or missing input."""
    
    status_code = 400
    error_code = "validation_error"


class ChallengeError(TenantKeyError):
    """
    Missing, expired or already-consumed ceremony challenge.
    
    The reason is kept separate from the message so callers can log it
    without echoing it to the client.
    """
    
    status_code = 400
    error_code = "invalid_challenge"
    
    def __init__(self, message: str = "Invalid or expired challenge", reason: str = "not_found"):
        self.reason = reason
        super().__init__(message)


class ReplayError(TenantKeyError):
    """Authenticator signature counter did not increase (possible cloned key)."""
    
    status_code = 401
    error_code = "replay_detected"
    
    def __init__(self, message: str, stored_counter: int = 0, reported_counter: int = 0):
        self.stored_counter = stored_counter
        self.reported_counter = reported_counter
        super().__init__(message)


class AuthenticationError(TenantKeyError):
    """No valid session accompanies the request."""
    
    status_code = 401
    error_code = "unauthorized"


class AuthorizationError(TenantKeyError):
    """Credential/user mismatch or insufficient role."""
    
    status_code = 403
    error_code = "forbidden"


class NotFoundError(TenantKeyError):
    """Unknown user, credential, tenant or membership."""
    
    status_code = 404
    error_code = "not_found"


class ConflictError(TenantKeyError):
    """Duplicate membership, slug, domain or credential."""
    
    status_code = 409
    error_code = "conflict"


class PolicyError(TenantKeyError):
    """
    Membership policy violation.
    
    Last-owner protection uses the default 400; role-hierarchy violations
    are raised with status_code=403.
    """
    
    status_code = 400
    error_code = "policy_violation"


__all__ = [
    "TenantKeyError",
    "ValidationError",
    "ChallengeError",
    "ReplayError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "ConflictError",
    "PolicyError",
]
