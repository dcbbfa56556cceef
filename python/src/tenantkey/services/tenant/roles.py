"""
Tenant roles and the capability table.

Roles are strictly ordered: viewer < member < admin < owner. Every
authorization decision inside a tenant goes through ROLE_REQUIREMENTS so
routes never hand-roll role lists.
"""

from enum import Enum
from typing import Optional, Union


class Role(str, Enum):
    """Tenant membership role."""
    
    VIEWER = "viewer"
    MEMBER = "member"
    ADMIN = "admin"
    OWNER = "owner"
    
    @property
    def rank(self) -> int:
        return _RANKS[self]
    
    def at_least(self, other: "Role") -> bool:
        return self.rank >= other.rank


_RANKS = {Role.VIEWER: 0, Role.MEMBER: 1, Role.ADMIN: 2, Role.OWNER: 3}

# Roles the generic role-change path may assign. Owner is only granted
# through ownership transfer.
ASSIGNABLE_ROLES = frozenset({Role.VIEWER, Role.MEMBER, Role.ADMIN})

# Roles an invitation may carry
INVITABLE_ROLES = frozenset({Role.MEMBER, Role.ADMIN})


class Capability(str, Enum):
    """Actions gated by tenant role."""
    
    VIEW_TENANT = "view_tenant"
    INVITE_MEMBER = "invite_member"
    CHANGE_ROLE = "change_role"
    REMOVE_MEMBER = "remove_member"
    MANAGE_SETTINGS = "manage_settings"
    MANAGE_OWNER = "manage_owner"
    DELETE_TENANT = "delete_tenant"


# Minimum role required per capability
ROLE_REQUIREMENTS = {
    Capability.VIEW_TENANT: Role.MEMBER,
    Capability.INVITE_MEMBER: Role.ADMIN,
    Capability.CHANGE_ROLE: Role.ADMIN,
    Capability.REMOVE_MEMBER: Role.ADMIN,
    Capability.MANAGE_SETTINGS: Role.ADMIN,
    Capability.MANAGE_OWNER: Role.OWNER,
    Capability.DELETE_TENANT: Role.OWNER,
}


def parse_role(value: Union[str, Role, None]) -> Optional[Role]:
    """Convert a stored role string, returning None for unknown values."""
    if value is None:
        return None
    try:
        return Role(value)
    except ValueError:
        return None


def has_capability(role: Union[str, Role, None], capability: Capability) -> bool:
    """Check a role against the capability table."""
    parsed = parse_role(role)
    if parsed is None:
        return False
    return parsed.at_least(ROLE_REQUIREMENTS[capability])


def can_modify_membership(
    requester_role: Union[str, Role, None],
    target_role: Union[str, Role, None],
    action: Capability,
) -> bool:
    """
    Decide whether a requester may change or remove a target membership.
    
    Admins may act on viewer/member/admin targets; only an owner may act
    on an owner. The same rule applies when the target is the requester's
    own membership. Last-owner protection is checked separately, against
    the live owner count.
    
    Args:
        requester_role: Role of the member making the change
        target_role: Current role of the membership being changed
        action: Capability.CHANGE_ROLE or Capability.REMOVE_MEMBER
    """
    if action not in (Capability.CHANGE_ROLE, Capability.REMOVE_MEMBER):
        raise ValueError(f"Not a membership mutation: {action}")
    
    requester = parse_role(requester_role)
    target = parse_role(target_role)
    if requester is None or target is None:
        return False
    
    if not has_capability(requester, action):
        return False
    if target == Role.OWNER:
        return has_capability(requester, Capability.MANAGE_OWNER)
    return True
