"""User roles and capability predicates."""
from __future__ import annotations

from enum import Enum


class Role(str, Enum):
    USER = "USER"
    MODERATOR = "MODERATOR"
    ADMIN = "ADMIN"

    @classmethod
    def parse(cls, value: "Role | str | None") -> "Role | None":
        """Return the matching role, or None for unknown values."""
        if isinstance(value, Role):
            return value
        try:
            return cls(str(value).upper())
        except ValueError:
            return None

    def can_moderate(self) -> bool:
        return ROLE_PERMISSIONS[self]["canModerate"]

    def is_superuser(self) -> bool:
        return ROLE_PERMISSIONS[self]["canManageUsers"]

    def bypasses_account_gates(self) -> bool:
        """Admins may log in while blocked or unverified (operator recovery)."""
        return self.is_superuser()


# Role permissions matrix
ROLE_PERMISSIONS: dict[Role, dict[str, bool]] = {
    Role.ADMIN: {
        "canModerate": True,
        "canManageUsers": True,
    },
    Role.MODERATOR: {
        "canModerate": True,
        "canManageUsers": False,
    },
    Role.USER: {
        "canModerate": False,
        "canManageUsers": False,
    },
}


def check_permission(role: Role | str | None, permission: str) -> bool:
    """Check if a role grants a specific permission. Unknown roles get nothing."""
    parsed = Role.parse(role)
    if parsed is None:
        return False
    return ROLE_PERMISSIONS[parsed].get(permission, False)
