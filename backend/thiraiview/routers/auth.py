"""Auth endpoints: refresh-token rotation, logout, access-token validation."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from ..cookies import clear_refresh_cookie, read_refresh_cookie, set_no_store, set_refresh_cookie
from ..database import get_db
from ..dependencies import Identity, get_current_identity, get_session_service
from ..domain_errors import InvalidRefreshToken, MissingRefreshToken
from ..problem_details import build_problem_details_response
from ..schemas import (
    AccessTokenResponse,
    LogoutAllResponse,
    MessageResponse,
    SessionItem,
    SessionListResponse,
    UserPublic,
    ValidateResponse,
)
from ..sessions import SessionService
from ..users import UserRepository, public_user
from .login import client_info

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


@router.get("/validate", response_model=ValidateResponse)
def validate(
    identity: Identity = Depends(get_current_identity),
    db: Session = Depends(get_db),
):
    """Validate the bearer access token and return the current user."""
    user = UserRepository(db).get(identity.id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return ValidateResponse(user=UserPublic(**public_user(user)))


@router.post("/refresh", response_model=AccessTokenResponse)
def refresh_token(
    request: Request,
    response: Response,
    service: SessionService = Depends(get_session_service),
):
    """Rotate the refresh cookie and issue a new access token."""
    set_no_store(response)
    try:
        result = service.refresh(read_refresh_cookie(request), client=client_info(request))
    except (InvalidRefreshToken, MissingRefreshToken) as exc:
        # The cookie is dead either way; make the browser drop it.
        failure = build_problem_details_response(exc)
        set_no_store(failure)
        clear_refresh_cookie(failure)
        return failure

    set_refresh_cookie(response, result.refresh)
    return AccessTokenResponse(access_token=result.access_token)


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    service: SessionService = Depends(get_session_service),
):
    """Revoke the presented refresh token (if any). Always succeeds."""
    service.logout(read_refresh_cookie(request))
    clear_refresh_cookie(response)
    return MessageResponse(message="Logged out")


@router.post("/logout-all", response_model=LogoutAllResponse)
def logout_all(
    response: Response,
    identity: Identity = Depends(get_current_identity),
    service: SessionService = Depends(get_session_service),
):
    """Revoke every refresh token of the current user."""
    revoked = service.logout_everywhere(identity.id)
    clear_refresh_cookie(response)
    return LogoutAllResponse(message="Logged out from all devices", revoked=revoked)


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    identity: Identity = Depends(get_current_identity),
    service: SessionService = Depends(get_session_service),
):
    """Active (unrevoked, unexpired) refresh tokens of the current user."""
    rows = service.active_sessions(identity.id)
    return SessionListResponse(
        sessions=[
            SessionItem(
                jti=row.jti,
                created_at=row.created_at,
                expires_at=row.expires_at,
                created_ip=row.created_ip,
                user_agent=row.user_agent,
            )
            for row in rows
        ]
    )
