"""Session service: login, refresh-token rotation with reuse detection, logout."""
from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .domain_errors import (
    AccountBlocked,
    AccountUnverified,
    InvalidCredentials,
    InvalidRefreshToken,
    MissingRefreshToken,
    RotationConflictError,
    SessionStoreUnavailable,
)
from .ledger import RefreshTokenLedger
from .models import RefreshToken, User
from .passwords import dummy_verify, verify_password
from .roles import Role
from .tokens import IssuedToken, TokenCodec, TokenError, hash_token
from .users import UserRepository, public_user

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(dt: datetime | None) -> datetime | None:
    if dt is None:
        return None
    if dt.tzinfo is None or dt.tzinfo.utcoffset(dt) is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _new_jti() -> str:
    return uuid4().hex


@dataclass(frozen=True)
class ClientInfo:
    """Request context stored alongside a refresh record (informational only)."""

    ip: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    access_expires_at: datetime
    refresh: IssuedToken
    user: dict[str, Any]


@dataclass(frozen=True)
class RefreshResult:
    access_token: str
    access_expires_at: datetime
    refresh: IssuedToken
    user_id: int


def access_claims(user: User) -> dict[str, Any]:
    claims: dict[str, Any] = {
        "id": user.id,
        "email": user.email,
        "role": user.role,
        "username": user.username,
    }
    role = Role.parse(user.role)
    if role is not None and role.is_superuser():
        claims["isSuperuser"] = True
    return claims


class SessionService:
    """Orchestrates the refresh-token lifecycle over one database session."""

    def __init__(
        self,
        db: Session,
        codec: TokenCodec,
        ledger: RefreshTokenLedger | None = None,
        users: UserRepository | None = None,
    ):
        self.db = db
        self.codec = codec
        self.ledger = ledger or RefreshTokenLedger(db)
        self.users = users or UserRepository(db)

    # ------------------------------------------------------------------ login

    def login(self, identifier: str, password: str, client: ClientInfo | None = None) -> LoginResult:
        client = client or ClientInfo()
        user = self.users.find_by_identifier(identifier)
        if user is None:
            dummy_verify()
            logger.info("Login failed: unknown identifier")
            raise InvalidCredentials()

        role = Role.parse(user.role)
        gates_apply = not (role is not None and role.bypasses_account_gates())

        if user.blocked and gates_apply:
            logger.info("Login refused for blocked user_id=%s", user.id)
            raise AccountBlocked()

        if not verify_password(password, user.password_hash):
            logger.warning("Login failed: wrong password for user_id=%s", user.id)
            raise InvalidCredentials()

        if not user.is_verified and gates_apply:
            logger.info("Login refused for unverified user_id=%s", user.id)
            raise AccountUnverified()

        access = self.codec.issue_access_token(access_claims(user))
        projection = public_user(user)

        jti = _new_jti()
        refresh = self.codec.issue_refresh_token(user.id, jti)
        try:
            self.ledger.record(
                user.id,
                jti,
                hash_token(refresh.token),
                refresh.expires_at,
                created_ip=client.ip,
                user_agent=client.user_agent,
            )
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to persist refresh token during login (user_id=%s)", projection["id"])
            raise SessionStoreUnavailable() from exc

        logger.info("User logged in (user_id=%s, jti=%s)", projection["id"], jti)
        return LoginResult(
            access_token=access.token,
            access_expires_at=access.expires_at,
            refresh=refresh,
            user=projection,
        )

    # ---------------------------------------------------------------- refresh

    def refresh(self, presented: str | None, client: ClientInfo | None = None) -> RefreshResult:
        """Exchange a refresh token for a new access token and a rotated refresh token.

        Any presentation of an unknown, revoked, tampered or expired record is
        treated as replay: every refresh token of the (verified) owner is
        revoked before failing.
        """
        client = client or ClientInfo()
        if not presented:
            raise MissingRefreshToken()

        try:
            claims = self.codec.verify_refresh(presented)
        except TokenError as exc:
            # Claims are untrusted; nothing safe to revoke against.
            logger.info("Refresh rejected before ledger lookup: %s", exc)
            raise InvalidRefreshToken() from exc

        user_id = claims.get("id")
        jti = claims.get("jti")
        if not isinstance(user_id, int) or isinstance(user_id, bool) or not isinstance(jti, str) or not jti:
            logger.warning("Refresh token with malformed claims rejected")
            raise InvalidRefreshToken()

        try:
            record = self.ledger.lookup(jti, for_update=True)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to load refresh token (jti=%s)", jti)
            raise SessionStoreUnavailable() from exc

        reason = self._rejection_reason(record, user_id=user_id, presented=presented)
        if reason is not None:
            logger.warning(
                "Refresh token rejected (%s) for user_id=%s jti=%s; revoking all refresh tokens",
                reason,
                user_id,
                jti,
            )
            self._revoke_all_best_effort(user_id)
            raise InvalidRefreshToken()

        user = self.users.get(user_id)
        if user is None:
            self.db.rollback()
            logger.warning("Refresh token for missing user_id=%s rejected", user_id)
            raise InvalidRefreshToken()

        role = Role.parse(user.role)
        if user.blocked and not (role is not None and role.bypasses_account_gates()):
            logger.warning("Refresh attempted by blocked user_id=%s; revoking all refresh tokens", user_id)
            self._revoke_all_best_effort(user_id)
            raise InvalidRefreshToken()

        access = self.codec.issue_access_token(access_claims(user))
        new_jti = _new_jti()
        refresh = self.codec.issue_refresh_token(user_id, new_jti)
        try:
            self.ledger.rotate(
                jti,
                new_jti,
                hash_token(refresh.token),
                refresh.expires_at,
                user_id,
                created_ip=client.ip,
                user_agent=client.user_agent,
            )
        except RotationConflictError:
            logger.warning(
                "Refresh token jti=%s was consumed concurrently; revoking all refresh tokens for user_id=%s",
                jti,
                user_id,
            )
            self._revoke_all_best_effort(user_id)
            raise InvalidRefreshToken()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to rotate refresh token (jti=%s)", jti)
            raise SessionStoreUnavailable() from exc

        logger.debug("Rotated refresh token %s -> %s (user_id=%s)", jti, new_jti, user_id)
        return RefreshResult(
            access_token=access.token,
            access_expires_at=access.expires_at,
            refresh=refresh,
            user_id=user_id,
        )

    def _rejection_reason(self, record: RefreshToken | None, *, user_id: int, presented: str) -> str | None:
        if record is None:
            return "unknown jti"
        if record.user_id != user_id:
            return "owner mismatch"
        if record.is_revoked:
            return "reused"
        if not hmac.compare_digest((record.token_hash or "").encode("utf-8"), hash_token(presented).encode("utf-8")):
            return "hash mismatch"
        expires_at = _as_utc(record.expires_at)
        if expires_at is None or expires_at <= _utc_now():
            return "expired"
        return None

    def _revoke_all_best_effort(self, user_id: int) -> int:
        try:
            count = self.ledger.revoke_all_for_user(user_id)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to revoke refresh tokens for user_id=%s", user_id)
            return 0
        logger.warning("Revoked %s refresh token(s) for user_id=%s", count, user_id)
        return count

    # ----------------------------------------------------------------- logout

    def logout(self, presented: str | None) -> None:
        """Revoke the presented refresh token if it can be verified. Never raises."""
        if not presented:
            return
        try:
            claims = self.codec.verify_refresh(presented)
        except TokenError:
            logger.debug("Logout with unverifiable refresh token; nothing to revoke")
            return

        jti = claims.get("jti")
        if not isinstance(jti, str) or not jti:
            return
        try:
            revoked = self.ledger.revoke(jti)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Failed to revoke refresh token on logout (jti=%s)", jti)
            return
        if revoked:
            logger.info("Logged out (jti=%s)", jti)

    def logout_everywhere(self, user_id: int) -> int:
        try:
            count = self.ledger.revoke_all_for_user(user_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception("Failed to revoke refresh tokens for user_id=%s", user_id)
            raise SessionStoreUnavailable() from exc
        logger.info("Logged out everywhere (user_id=%s, revoked=%s)", user_id, count)
        return count

    def active_sessions(self, user_id: int) -> list[RefreshToken]:
        return self.ledger.list_active_for_user(user_id)
