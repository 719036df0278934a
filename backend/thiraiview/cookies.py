"""Refresh token cookie transport."""
from fastapi import Request, Response

from .config import settings
from .tokens import IssuedToken


def _cookie_secure() -> bool:
    return settings.is_production


def read_refresh_cookie(request: Request) -> str | None:
    return request.cookies.get(settings.AUTH_REFRESH_COOKIE_NAME) or None


def set_refresh_cookie(response: Response, refresh: IssuedToken) -> None:
    """Deliver a refresh token as an HttpOnly cookie that expires with its ledger record."""
    response.set_cookie(
        key=settings.AUTH_REFRESH_COOKIE_NAME,
        value=refresh.token,
        httponly=True,
        secure=_cookie_secure(),
        samesite=settings.AUTH_REFRESH_COOKIE_SAMESITE,
        path=settings.AUTH_REFRESH_COOKIE_PATH,
        expires=refresh.expires_at,
    )


def clear_refresh_cookie(response: Response) -> None:
    # Browsers only drop the cookie when path/secure/samesite match the ones it was set with.
    response.delete_cookie(
        key=settings.AUTH_REFRESH_COOKIE_NAME,
        path=settings.AUTH_REFRESH_COOKIE_PATH,
        secure=_cookie_secure(),
        httponly=True,
        samesite=settings.AUTH_REFRESH_COOKIE_SAMESITE,
    )


def set_no_store(response: Response) -> None:
    # Responses carrying tokens must not be cached.
    response.headers["Cache-Control"] = "no-store"
    response.headers["Pragma"] = "no-cache"
