from __future__ import annotations

from fastapi import Depends
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from thiraiview.database import get_db
from thiraiview.dependencies import get_codec, get_session_service
from thiraiview.ledger import RefreshTokenLedger
from thiraiview.main import app
from thiraiview.models import RefreshToken, User
from thiraiview.roles import Role
from thiraiview.sessions import SessionService

from conftest import DEFAULT_PASSWORD


def _token(client, identifier: str) -> str:
    client.cookies.clear()
    response = client.post("/login", json={"identifier": identifier, "password": DEFAULT_PASSWORD})
    assert response.status_code == 200, response.text
    return response.json()["accessToken"]


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def test_user_listing_requires_moderation_rights(client, make_user) -> None:
    make_user("admin", role=Role.ADMIN)
    make_user("mod", role=Role.MODERATOR)
    make_user("alice")

    assert client.get("/admin/users").status_code == 401
    assert client.get("/admin/users", headers=_bearer(_token(client, "alice"))).status_code == 403

    for who in ("mod", "admin"):
        response = client.get("/admin/users", headers=_bearer(_token(client, who)))
        assert response.status_code == 200
        usernames = [u["username"] for u in response.json()["users"]]
        assert usernames == ["admin", "mod", "alice"]


def test_block_revokes_sessions_and_blocks_login(client, db, make_user) -> None:
    make_user("admin", role=Role.ADMIN)
    alice = make_user("alice")
    _token(client, "alice")
    admin_token = _token(client, "admin")

    response = client.patch(f"/admin/users/{alice.id}/block", headers=_bearer(admin_token))

    assert response.status_code == 200
    db.expire_all()
    assert db.query(User).filter(User.id == alice.id).one().blocked is True
    assert all(row.is_revoked for row in db.query(RefreshToken).filter(RefreshToken.user_id == alice.id))

    blocked_login = client.post("/login", json={"identifier": "alice", "password": DEFAULT_PASSWORD})
    assert blocked_login.status_code == 403
    assert blocked_login.json()["code"] == "ACCOUNT_BLOCKED"

    unblock = client.patch(f"/admin/users/{alice.id}/unblock", headers=_bearer(admin_token))
    assert unblock.status_code == 200
    assert _token(client, "alice")


def test_only_admins_can_block(client, make_user) -> None:
    make_user("mod", role=Role.MODERATOR)
    alice = make_user("alice")

    response = client.patch(f"/admin/users/{alice.id}/block", headers=_bearer(_token(client, "mod")))
    assert response.status_code == 403


def test_admin_cannot_block_self_or_unknown_user(client, make_user) -> None:
    admin = make_user("admin", role=Role.ADMIN)
    token = _token(client, "admin")

    own = client.patch(f"/admin/users/{admin.id}/block", headers=_bearer(token))
    assert own.status_code == 400
    assert own.json()["detail"] == "Cannot block your own account"

    missing = client.patch("/admin/users/9999/block", headers=_bearer(token))
    assert missing.status_code == 404


def test_block_reports_revocation_failure_and_keeps_the_user_blocked(client, db, make_user) -> None:
    make_user("admin", role=Role.ADMIN)
    alice = make_user("alice")
    _token(client, "alice")
    alice_refresh = client.cookies.get("refresh_token")
    admin_token = _token(client, "admin")

    class _BrokenLedger(RefreshTokenLedger):
        def revoke_all_for_user(self, user_id):
            raise OperationalError("UPDATE", {}, Exception("gone"))

    def _broken_service(session: Session = Depends(get_db), codec=Depends(get_codec)) -> SessionService:
        return SessionService(session, codec, ledger=_BrokenLedger(session))

    app.dependency_overrides[get_session_service] = _broken_service
    response = client.patch(f"/admin/users/{alice.id}/block", headers=_bearer(admin_token))
    app.dependency_overrides.pop(get_session_service)

    assert response.status_code == 500
    assert response.json()["code"] == "SESSION_STORE_UNAVAILABLE"
    db.expire_all()
    assert db.query(User).filter(User.id == alice.id).one().blocked is True

    client.cookies.clear()
    refresh = client.post("/auth/refresh", headers={"Cookie": f"refresh_token={alice_refresh}"})
    assert refresh.status_code == 401
