"""Request dependencies: bearer identity, role checks, service wiring."""
import logging
from dataclasses import dataclass

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from .database import get_db
from .roles import Role, check_permission
from .sessions import SessionService
from .tokens import TokenCodec, TokenError, get_token_codec

logger = logging.getLogger(__name__)

# Bearer token scheme; errors are mapped below (401 missing, 403 invalid).
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Identity:
    """Validated access-token claims attached to a request."""

    id: int
    email: str | None
    username: str | None
    role: Role
    is_superuser: bool


def identity_from_claims(claims: dict) -> Identity:
    user_id = claims.get("id")
    role = Role.parse(claims.get("role"))
    if not isinstance(user_id, int) or isinstance(user_id, bool) or role is None:
        raise TokenError("access token claims are incomplete")
    return Identity(
        id=user_id,
        email=claims.get("email"),
        username=claims.get("username"),
        role=role,
        is_superuser=role.is_superuser(),
    )


def get_codec() -> TokenCodec:
    return get_token_codec()


def get_session_service(
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_codec),
) -> SessionService:
    return SessionService(db, codec)


def get_current_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    codec: TokenCodec = Depends(get_codec),
) -> Identity:
    """Require a valid bearer access token."""
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Access token required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    try:
        return identity_from_claims(codec.verify_access(credentials.credentials))
    except TokenError as exc:
        logger.debug("Rejected access token: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid or expired token",
        )


def get_optional_identity(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    codec: TokenCodec = Depends(get_codec),
) -> Identity | None:
    """Attach an identity when a valid token is present; anonymous otherwise."""
    if credentials is None or not credentials.credentials:
        return None
    try:
        return identity_from_claims(codec.verify_access(credentials.credentials))
    except TokenError:
        return None


class RoleChecker:
    """Check identity permissions based on role."""

    def __init__(self, required_permission: str):
        self.required_permission = required_permission

    def __call__(self, identity: Identity = Depends(get_current_identity)) -> Identity:
        if not check_permission(identity.role, self.required_permission):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.required_permission} required",
            )
        return identity


require_admin = RoleChecker("canManageUsers")
require_moderator = RoleChecker("canModerate")
