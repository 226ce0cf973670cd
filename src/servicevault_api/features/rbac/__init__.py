"""RBAC feature package."""

from .exceptions import (
    PermissionDeniedError,
    PermissionStoreUnavailableError,
    PermissionValidationError,
    ReferentialViolationError,
)
from .resolver import ResolvedPermissions
from .service import PermissionCheck, RbacService

__all__ = [
    "PermissionCheck",
    "PermissionDeniedError",
    "PermissionStoreUnavailableError",
    "PermissionValidationError",
    "ReferentialViolationError",
    "RbacService",
    "ResolvedPermissions",
]
