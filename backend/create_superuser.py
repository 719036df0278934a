#!/usr/bin/env python3
"""Create the initial ADMIN account (idempotent).

Reads SUPERUSER_EMAIL / SUPERUSER_USERNAME / SUPERUSER_NAME / SUPERUSER_PASSWORD
from the environment. When no password is configured a random one is generated
and printed once.
"""
from __future__ import annotations

import secrets

from sqlalchemy import or_
from sqlalchemy.orm import Session

from thiraiview.config import settings
from thiraiview.database import SessionLocal
from thiraiview.models import User
from thiraiview.passwords import get_password_hash
from thiraiview.roles import Role

PASSWORD_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz23456789"


def generate_password(length: int = 20) -> str:
    return "".join(secrets.choice(PASSWORD_ALPHABET) for _ in range(length))


def create_superuser(
    db: Session,
    *,
    email: str,
    username: str,
    name: str,
    password: str,
) -> tuple[User, bool]:
    """Return (user, created). An existing admin or matching account is left untouched."""
    existing = (
        db.query(User)
        .filter(
            or_(
                User.email == email,
                User.username == username,
                User.role == Role.ADMIN.value,
            )
        )
        .first()
    )
    if existing is not None:
        return existing, False

    user = User(
        email=email,
        username=username,
        name=name,
        password_hash=get_password_hash(password),
        role=Role.ADMIN.value,
        is_verified=True,
        blocked=False,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user, True


def main() -> int:
    password = settings.SUPERUSER_PASSWORD or generate_password()
    db = SessionLocal()
    try:
        user, created = create_superuser(
            db,
            email=settings.SUPERUSER_EMAIL,
            username=settings.SUPERUSER_USERNAME,
            name=settings.SUPERUSER_NAME,
            password=password,
        )
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()

    if not created:
        print(f"Superuser already exists: id={user.id} email={user.email} username={user.username} role={user.role}")
        return 0

    print("Superuser created:")
    print(f"  id={user.id} email={user.email} username={user.username} role={user.role}")
    if not settings.SUPERUSER_PASSWORD:
        print(f"  Generated password (shown once): {password}")
    print("Please change the password after first login.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
