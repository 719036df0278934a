"""Signed, self-expiring tokens (JWT via python-jose).

Access and refresh tokens are signed with different secrets so that a leaked
access-token key cannot be used to mint refresh tokens.
"""
from __future__ import annotations

import hashlib
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
from uuid import uuid4

from jose import ExpiredSignatureError, JWTError, jwt

from .config import DURATION_PATTERN, MalformedConfigurationError, Settings

logger = logging.getLogger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_TYPE = "refresh"

DEFAULT_DURATION = timedelta(days=30)

_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600, "d": 86400}


class TokenError(Exception):
    """Token failed verification."""


class InvalidSignatureError(TokenError):
    """Bad signature, malformed token, or wrong token type."""


class TokenExpiredError(TokenError):
    """Signature is valid but the token is past its expiry."""


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


def parse_duration(value: str | int | timedelta | None) -> timedelta:
    """Convert "900", "15m", "1h" or "30d" into a timedelta.

    Unparseable values fall back to 30 days. Settings validation rejects such
    values at startup, so reaching the fallback means a caller bypassed it.
    """
    if isinstance(value, timedelta):
        return value
    if isinstance(value, int) and not isinstance(value, bool) and value > 0:
        return timedelta(seconds=value)
    match = DURATION_PATTERN.match(str(value)) if value is not None else None
    if not match or int(match.group(1)) <= 0:
        logger.warning(
            "Unparseable token lifetime %r; falling back to %s. Check JWT_EXPIRY / REFRESH_TOKEN_EXPIRY.",
            value,
            DEFAULT_DURATION,
        )
        return DEFAULT_DURATION
    amount, unit = match.groups()
    return timedelta(seconds=int(amount) * _UNIT_SECONDS[unit])


def hash_token(token: str) -> str:
    """One-way hash of a signed token string for ledger storage."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class TokenCodec:
    """Issues and verifies access and refresh tokens."""

    def __init__(
        self,
        *,
        access_secret: str,
        refresh_secret: str,
        algorithm: str = "HS256",
        access_ttl: str | int | timedelta = "1h",
        refresh_ttl: str | int | timedelta = "30d",
    ) -> None:
        if not access_secret or not refresh_secret:
            raise MalformedConfigurationError("Token signing secrets must be configured")
        if access_secret == refresh_secret:
            raise MalformedConfigurationError("Access and refresh tokens must use different secrets")
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self.algorithm = algorithm
        self.access_ttl = parse_duration(access_ttl)
        self.refresh_ttl = parse_duration(refresh_ttl)

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenCodec":
        return cls(
            access_secret=settings.JWT_SECRET,
            refresh_secret=settings.REFRESH_TOKEN_SECRET,
            algorithm=settings.JWT_ALGORITHM,
            access_ttl=settings.JWT_EXPIRY,
            refresh_ttl=settings.REFRESH_TOKEN_EXPIRY,
        )

    def __repr__(self) -> str:
        return f"<TokenCodec alg={self.algorithm} access_ttl={self.access_ttl} refresh_ttl={self.refresh_ttl}>"

    def _sign(self, payload: dict[str, Any], secret: str, ttl: timedelta) -> IssuedToken:
        now = int(time.time())
        exp = now + int(ttl.total_seconds())
        payload.update({"iat": now, "exp": exp})
        token = jwt.encode(payload, secret, algorithm=self.algorithm)
        return IssuedToken(token=token, expires_at=datetime.fromtimestamp(exp, tz=timezone.utc))

    def issue_access_token(
        self,
        claims: Mapping[str, Any],
        ttl: str | int | timedelta | None = None,
    ) -> IssuedToken:
        """Sign ``claims`` as a short-lived access token.

        Each token carries its own ``jti`` so two tokens minted in the same second differ.
        """
        payload = dict(claims)
        payload["type"] = ACCESS_TOKEN_TYPE
        payload["jti"] = uuid4().hex
        lifetime = self.access_ttl if ttl is None else parse_duration(ttl)
        return self._sign(payload, self._access_secret, lifetime)

    def issue_refresh_token(
        self,
        user_id: int,
        jti: str,
        ttl: str | int | timedelta | None = None,
    ) -> IssuedToken:
        """Sign ``{id, jti}`` as a refresh token with the refresh secret."""
        payload = {"id": user_id, "jti": jti, "type": REFRESH_TOKEN_TYPE}
        lifetime = self.refresh_ttl if ttl is None else parse_duration(ttl)
        return self._sign(payload, self._refresh_secret, lifetime)

    def verify(self, token: str, secret: str, expected_type: str | None = None) -> dict[str, Any]:
        """Return the claims of a token signed with ``secret``.

        Raises:
            TokenExpiredError: signature ok, expiry passed.
            InvalidSignatureError: anything else (bad signature, garbage, wrong type).
        """
        if not token:
            raise InvalidSignatureError("empty token")
        try:
            payload = jwt.decode(token, secret, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpiredError("token expired") from exc
        except JWTError as exc:
            raise InvalidSignatureError("token failed verification") from exc
        if "exp" not in payload:
            raise InvalidSignatureError("token has no expiry")
        if expected_type is not None and payload.get("type") != expected_type:
            raise InvalidSignatureError("unexpected token type")
        return payload

    def verify_access(self, token: str) -> dict[str, Any]:
        return self.verify(token, self._access_secret, expected_type=ACCESS_TOKEN_TYPE)

    def verify_refresh(self, token: str) -> dict[str, Any]:
        return self.verify(token, self._refresh_secret, expected_type=REFRESH_TOKEN_TYPE)


_codec: TokenCodec | None = None


def get_token_codec() -> TokenCodec:
    """Process-wide codec built from the cached settings."""
    global _codec
    if _codec is None:
        from .config import settings

        _codec = TokenCodec.from_settings(settings)
    return _codec
