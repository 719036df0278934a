"""Refresh token ledger: persisted, hash-only record of every issued refresh token."""
from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .domain_errors import DuplicateJtiError, RotationConflictError
from .models import RefreshToken

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _clip(value: str | None, limit: int) -> str | None:
    if not value:
        return None
    return value[:limit]


class RefreshTokenLedger:
    """All reads and writes of ``refresh_tokens`` go through this class.

    Every mutating call commits (or rolls back) its own unit of work on the
    injected session. Rows are revoked, never deleted.
    """

    def __init__(self, db: Session):
        self.db = db

    def _new_row(
        self,
        *,
        user_id: int,
        jti: str,
        token_hash: str,
        expires_at: datetime,
        created_ip: str | None,
        user_agent: str | None,
    ) -> RefreshToken:
        return RefreshToken(
            user_id=user_id,
            jti=jti,
            token_hash=token_hash,
            expires_at=expires_at,
            is_revoked=False,
            created_ip=_clip(created_ip, 64),
            user_agent=_clip(user_agent, 512),
        )

    def _raise_if_duplicate(self, jti: str) -> None:
        """After a failed insert: escalate if the jti already exists."""
        exists = self.db.query(RefreshToken.id).filter(RefreshToken.jti == jti).first()
        if exists is not None:
            logger.critical("Refresh token jti collision detected (jti=%s)", jti)
            raise DuplicateJtiError(jti)

    def record(
        self,
        user_id: int,
        jti: str,
        token_hash: str,
        expires_at: datetime,
        created_ip: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshToken:
        """Insert a new, unrevoked record and commit."""
        row = self._new_row(
            user_id=user_id,
            jti=jti,
            token_hash=token_hash,
            expires_at=expires_at,
            created_ip=created_ip,
            user_agent=user_agent,
        )
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            self._raise_if_duplicate(jti)
            raise
        return row

    def lookup(self, jti: str, *, for_update: bool = False) -> RefreshToken | None:
        query = self.db.query(RefreshToken).filter(RefreshToken.jti == jti)
        if for_update:
            # Postgres: lock the row until rotate/revoke commits. No-op on SQLite.
            query = query.with_for_update()
        return query.first()

    def rotate(
        self,
        old_jti: str,
        new_jti: str,
        new_token_hash: str,
        new_expires_at: datetime,
        user_id: int,
        created_ip: str | None = None,
        user_agent: str | None = None,
    ) -> RefreshToken:
        """Revoke ``old_jti`` and insert its successor in one transaction.

        The revoke is a compare-and-set on ``is_revoked = false``: if another
        caller already consumed the record, nothing is written and
        ``RotationConflictError`` is raised.
        """
        claimed = (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.jti == old_jti,
                RefreshToken.user_id == user_id,
                RefreshToken.is_revoked.is_(False),
            )
            .update(
                {
                    "is_revoked": True,
                    "revoked_at": _utc_now(),
                    "replaced_by_jti": new_jti,
                },
                synchronize_session=False,
            )
        )
        if claimed != 1:
            self.db.rollback()
            raise RotationConflictError(old_jti)

        successor = self._new_row(
            user_id=user_id,
            jti=new_jti,
            token_hash=new_token_hash,
            expires_at=new_expires_at,
            created_ip=created_ip,
            user_agent=user_agent,
        )
        self.db.add(successor)
        try:
            self.db.commit()
        except IntegrityError:
            # Rolls back the predecessor's revocation as well.
            self.db.rollback()
            self._raise_if_duplicate(new_jti)
            raise
        return successor

    def revoke(self, jti: str) -> bool:
        """Revoke a single record. Returns False if it was missing or already revoked."""
        count = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.jti == jti, RefreshToken.is_revoked.is_(False))
            .update({"is_revoked": True, "revoked_at": _utc_now()}, synchronize_session=False)
        )
        self.db.commit()
        return count == 1

    def revoke_all_for_user(self, user_id: int) -> int:
        """Bulk-revoke every live record of a user. Returns the number revoked."""
        count = (
            self.db.query(RefreshToken)
            .filter(RefreshToken.user_id == user_id, RefreshToken.is_revoked.is_(False))
            .update({"is_revoked": True, "revoked_at": _utc_now()}, synchronize_session=False)
        )
        self.db.commit()
        return int(count or 0)

    def list_active_for_user(self, user_id: int) -> list[RefreshToken]:
        return (
            self.db.query(RefreshToken)
            .filter(
                RefreshToken.user_id == user_id,
                RefreshToken.is_revoked.is_(False),
                RefreshToken.expires_at > _utc_now(),
            )
            .order_by(RefreshToken.created_at.desc(), RefreshToken.id.desc())
            .all()
        )

    def lineage(self, jti: str) -> list[RefreshToken]:
        """Follow ``replaced_by_jti`` from ``jti`` to the newest successor."""
        chain: list[RefreshToken] = []
        seen: set[str] = set()
        current = self.lookup(jti)
        while current is not None and current.jti not in seen:
            chain.append(current)
            seen.add(current.jti)
            if not current.replaced_by_jti:
                break
            current = self.lookup(current.replaced_by_jti)
        return chain
