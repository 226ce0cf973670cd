"""Errors raised by permission checks and role administration."""

from __future__ import annotations


# ---- Permission checks --------------------------------------------------------


class PermissionValidationError(ValueError):
    """Raised for malformed check input: blank ids or an unknown resource/action."""


class PermissionDeniedError(PermissionError):
    """Raised when the acting user may not perform an administrative change."""


class PermissionStoreUnavailableError(RuntimeError):
    """Raised when permission data cannot be read from the store.

    Never coerced into a denial: callers must be able to tell "cannot decide"
    apart from "not allowed".
    """


# ---- Administration -----------------------------------------------------------


class RoleError(ValueError):
    """Base class for role template management errors."""


class RoleValidationError(RoleError):
    """Raised when a role template payload is invalid."""


class RoleNotFoundError(RoleError):
    """Raised when a role template cannot be located."""


class RoleImmutableError(RoleError):
    """Raised when attempting to mutate a seeded system role template."""


class RoleConflictError(RoleError):
    """Raised when a role template name is already taken."""


class ReferentialViolationError(ValueError):
    """Raised when a mutation would break a referential invariant.

    The message is user-facing and should be surfaced verbatim.
    """


class RoleInUseError(ReferentialViolationError):
    """Raised when deleting a role template that is still assigned."""

    def __init__(self, assignments: int) -> None:
        super().__init__(
            "Cannot delete role template. "
            f"It is currently assigned to {assignments} user(s)."
        )
        self.assignments = assignments


class DuplicateMembershipError(ReferentialViolationError):
    def __init__(self) -> None:
        super().__init__("User is already a member of this account")


class DuplicateAssignmentError(ReferentialViolationError):
    """Raised when a role template is already assigned to the target."""


class LastSuperAdminError(ReferentialViolationError):
    def __init__(self) -> None:
        super().__init__("Cannot remove the last super administrator system role")


class AccountHierarchyError(ReferentialViolationError):
    """Raised when a parent assignment would break the account tree."""


class AssignmentError(ValueError):
    """Base class for assignment errors."""


class AssignmentNotFoundError(AssignmentError):
    """Raised when a role assignment or membership cannot be located."""


class ScopeMismatchError(AssignmentError):
    """Raised when a role template is assigned outside its scope."""


class SubjectNotFoundError(AssignmentError):
    """Raised when the user or account named by an admin call does not exist."""


__all__ = [
    "AccountHierarchyError",
    "AssignmentError",
    "AssignmentNotFoundError",
    "DuplicateAssignmentError",
    "DuplicateMembershipError",
    "LastSuperAdminError",
    "PermissionDeniedError",
    "PermissionStoreUnavailableError",
    "PermissionValidationError",
    "ReferentialViolationError",
    "RoleConflictError",
    "RoleError",
    "RoleImmutableError",
    "RoleInUseError",
    "RoleNotFoundError",
    "RoleValidationError",
    "ScopeMismatchError",
    "SubjectNotFoundError",
]
