"""
Tenant management services.

Membership authority (roles, invitations, last-owner protection) and
tenant lifecycle.
"""

from .membership_service import MembershipService
from .roles import Capability, Role, can_modify_membership, has_capability
from .tenant_service import TenantService

__all__ = [
    "MembershipService",
    "TenantService",
    "Capability",
    "Role",
    "can_modify_membership",
    "has_capability",
]
