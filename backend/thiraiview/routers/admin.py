"""Admin endpoints that touch account state and sessions."""
import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..database import get_db
from ..dependencies import Identity, get_session_service, require_admin, require_moderator
from ..schemas import MessageResponse, UserListResponse, UserPublic
from ..sessions import SessionService
from ..users import UserRepository, public_user

router = APIRouter(prefix="/admin", tags=["admin"])
logger = logging.getLogger(__name__)


@router.get("/users", response_model=UserListResponse)
def list_users(
    _: Identity = Depends(require_moderator),
    db: Session = Depends(get_db),
):
    """List users (moderators and admins)."""
    users = UserRepository(db).list_all()
    return UserListResponse(users=[UserPublic(**public_user(user)) for user in users])


def _set_blocked(db: Session, *, user_id: int, blocked: bool) -> None:
    user = UserRepository(db).get(user_id)
    if user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    user.blocked = blocked
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to update blocked flag (user_id=%s)", user_id)
        raise HTTPException(status_code=500, detail="Failed to update user")


@router.patch("/users/{user_id}/block", response_model=MessageResponse)
def block_user(
    user_id: int,
    current: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
    service: SessionService = Depends(get_session_service),
):
    """Block a user and revoke all of their refresh tokens.

    The block is committed first; a blocked user cannot refresh even if revocation fails.
    """
    if user_id == current.id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Cannot block your own account")

    _set_blocked(db, user_id=user_id, blocked=True)
    revoked = service.logout_everywhere(user_id)
    logger.info("User blocked (user_id=%s, by=%s, revoked_tokens=%s)", user_id, current.id, revoked)
    return MessageResponse(message="User blocked successfully")


@router.patch("/users/{user_id}/unblock", response_model=MessageResponse)
def unblock_user(
    user_id: int,
    current: Identity = Depends(require_admin),
    db: Session = Depends(get_db),
):
    _set_blocked(db, user_id=user_id, blocked=False)
    logger.info("User unblocked (user_id=%s, by=%s)", user_id, current.id)
    return MessageResponse(message="User unblocked successfully")
