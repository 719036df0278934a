"""User lookup used by the session core (read-only)."""
from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from .models import User
from .roles import Role


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, user_id: int) -> User | None:
        return self.db.query(User).filter(User.id == user_id).first()

    def find_by_identifier(self, identifier: str) -> User | None:
        """Resolve a login identifier as email first, then username."""
        identifier = (identifier or "").strip()
        if not identifier:
            return None
        user = self.db.query(User).filter(User.email == identifier).first()
        if user is None:
            user = self.db.query(User).filter(User.username == identifier).first()
        return user

    def list_all(self) -> list[User]:
        return self.db.query(User).order_by(User.id.asc()).all()


def public_user(user: User) -> dict[str, Any]:
    """Client-safe projection of a user. Never includes the password hash."""
    role = Role.parse(user.role)
    return {
        "id": user.id,
        "email": user.email,
        "username": user.username,
        "name": user.name,
        "role": user.role,
        "isVerified": bool(user.is_verified),
        "blocked": bool(user.blocked),
        "isSuperuser": bool(role and role.is_superuser()),
    }
