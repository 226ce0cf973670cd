"""ORM models for users, accounts, memberships and role templates."""

from .account import Account
from .membership import Membership
from .rbac import (
    MembershipRoleAssignment,
    Permission,
    RoleTemplate,
    RoleTemplatePermission,
    SystemRoleAssignment,
)
from .user import User

__all__ = [
    "Account",
    "Membership",
    "MembershipRoleAssignment",
    "Permission",
    "RoleTemplate",
    "RoleTemplatePermission",
    "SystemRoleAssignment",
    "User",
]
