"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


class InvalidCredentials(DomainError):
    """Unknown identifier or wrong password. Never says which."""

    def __init__(self) -> None:
        super().__init__(code="INVALID_CREDENTIALS", http_status=401, message="Invalid credentials")


class AccountBlocked(DomainError):
    def __init__(self) -> None:
        super().__init__(code="ACCOUNT_BLOCKED", http_status=403, message="Your account has been blocked")


class AccountUnverified(DomainError):
    def __init__(self) -> None:
        super().__init__(
            code="ACCOUNT_UNVERIFIED",
            http_status=403,
            message="Please verify your email before logging in",
        )


class InvalidRefreshToken(DomainError):
    def __init__(self) -> None:
        super().__init__(
            code="INVALID_REFRESH_TOKEN",
            http_status=401,
            message="Invalid refresh token. Please log in again.",
        )


class MissingRefreshToken(DomainError):
    def __init__(self) -> None:
        super().__init__(
            code="MISSING_REFRESH_TOKEN",
            http_status=401,
            message="Missing refresh token. Please log in again.",
        )


class DuplicateJtiError(DomainError):
    """A refresh token identifier collided with an existing ledger row.

    Integrity alarm: random 128-bit identifiers should never collide.
    """

    def __init__(self, jti: str) -> None:
        super().__init__(code="DUPLICATE_JTI", http_status=500, message="Internal server error")
        self.jti = jti


class SessionStoreUnavailable(DomainError):
    def __init__(self) -> None:
        super().__init__(
            code="SESSION_STORE_UNAVAILABLE",
            http_status=500,
            message="Unable to complete the request. Please try again.",
        )


class RotationConflictError(Exception):
    """The refresh record was no longer valid when rotation tried to claim it."""

    def __init__(self, jti: str) -> None:
        super().__init__(f"refresh token {jti} already rotated or revoked")
        self.jti = jti
