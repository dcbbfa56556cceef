"""
SQLModel database models.

This module contains all database models for the application.
"""

from .user import User, Credential, AuthChallenge, AuthSession
from .tenant import Tenant, TenantMembership

__all__ = [
    "User",
    "Credential",
    "AuthChallenge",
    "AuthSession",
    "Tenant",
    "TenantMembership",
]
