from __future__ import annotations

import time
from datetime import datetime, timedelta, timezone
from email.utils import parsedate_to_datetime

from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient
from jose import jwt

from thiraiview.dependencies import Identity, get_optional_identity
from thiraiview.models import RefreshToken
from thiraiview.roles import Role

from conftest import ACCESS_SECRET, DEFAULT_PASSWORD


def _refresh_set_cookie(response) -> str:
    headers = [h for h in response.headers.get_list("set-cookie") if h.startswith("refresh_token=")]
    assert len(headers) == 1, response.headers.get_list("set-cookie")
    return headers[0]


def _cookie_value(set_cookie: str) -> str:
    return set_cookie.split(";", 1)[0].split("=", 1)[1]


def _cookie_attrs(set_cookie: str) -> dict[str, str]:
    attrs: dict[str, str] = {}
    for part in set_cookie.split(";")[1:]:
        name, _, value = part.strip().partition("=")
        attrs[name.lower()] = value
    return attrs


def _login(client, identifier: str = "alice", password: str = DEFAULT_PASSWORD):
    client.cookies.clear()
    return client.post("/login", json={"identifier": identifier, "password": password})


def _refresh(client, token: str | None):
    client.cookies.clear()
    headers = {"Cookie": f"refresh_token={token}"} if token else {}
    return client.post("/auth/refresh", headers=headers)


def _logout(client, token: str | None):
    client.cookies.clear()
    headers = {"Cookie": f"refresh_token={token}"} if token else {}
    return client.post("/auth/logout", headers=headers)


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _assert_cookie_cleared(response) -> None:
    attrs = _cookie_attrs(_refresh_set_cookie(response))
    assert attrs.get("max-age") == "0"
    assert attrs.get("path") == "/"
    assert "httponly" in attrs
    assert attrs.get("samesite") == "lax"


def test_health(client) -> None:
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_login_sets_refresh_cookie_and_returns_access_token(client, make_user) -> None:
    user = make_user("alice")

    response = _login(client)

    assert response.status_code == 200
    assert response.headers["cache-control"] == "no-store"
    body = response.json()
    claims = jwt.decode(body["accessToken"], ACCESS_SECRET, algorithms=["HS256"])
    assert claims["id"] == user.id
    assert claims["role"] == "USER"
    assert body["user"]["username"] == "alice"
    assert body["user"]["isVerified"] is True
    assert body["user"]["isSuperuser"] is False
    assert "password_hash" not in body["user"]
    assert "passwordHash" not in body["user"]

    set_cookie = _refresh_set_cookie(response)
    attrs = _cookie_attrs(set_cookie)
    assert _cookie_value(set_cookie)
    assert "httponly" in attrs
    assert attrs["samesite"] == "lax"
    assert attrs["path"] == "/"
    assert "secure" not in attrs  # development
    expires = parsedate_to_datetime(attrs["expires"])
    assert expires > datetime.now(timezone.utc) + timedelta(days=29)


def test_login_failures_do_not_reveal_which_field_was_wrong(client, make_user) -> None:
    make_user("alice")

    unknown = _login(client, "nobody")
    wrong = _login(client, "alice", "wrong-password")

    assert unknown.status_code == wrong.status_code == 401
    assert unknown.headers["content-type"].startswith("application/problem+json")
    assert unknown.json() == wrong.json()
    assert unknown.json()["code"] == "INVALID_CREDENTIALS"
    assert unknown.json()["error"] == "Invalid credentials"
    assert not [h for h in wrong.headers.get_list("set-cookie") if h.startswith("refresh_token=")]


def test_login_blocked_and_unverified(client, make_user) -> None:
    make_user("blocked", blocked=True)
    make_user("pending", is_verified=False)
    make_user("boss", role=Role.ADMIN, blocked=True, is_verified=False)

    blocked = _login(client, "blocked")
    pending = _login(client, "pending@example.com")
    boss = _login(client, "boss")

    assert blocked.status_code == 403
    assert blocked.json()["code"] == "ACCOUNT_BLOCKED"
    assert pending.status_code == 403
    assert pending.json()["code"] == "ACCOUNT_UNVERIFIED"
    assert boss.status_code == 200


def test_login_requires_identifier_and_password(client) -> None:
    response = client.post("/login", json={"identifier": "alice"})
    assert response.status_code == 422


def test_refresh_rotates_cookie_and_rejects_predecessor(client, db, make_user) -> None:
    user = make_user("alice")
    first_cookie = _cookie_value(_refresh_set_cookie(_login(client)))

    rotated = _refresh(client, first_cookie)

    assert rotated.status_code == 200
    claims = jwt.decode(rotated.json()["accessToken"], ACCESS_SECRET, algorithms=["HS256"])
    assert claims["id"] == user.id
    second_cookie = _cookie_value(_refresh_set_cookie(rotated))
    assert second_cookie != first_cookie

    replay = _refresh(client, first_cookie)
    assert replay.status_code == 401
    assert replay.json()["code"] == "INVALID_REFRESH_TOKEN"
    _assert_cookie_cleared(replay)

    # Reuse detection revoked the rotated token as well.
    assert _refresh(client, second_cookie).status_code == 401
    db.expire_all()
    assert all(row.is_revoked for row in db.query(RefreshToken).filter(RefreshToken.user_id == user.id))


def test_two_sequential_refreshes_yield_distinct_access_tokens(client, make_user) -> None:
    make_user("alice")
    cookie = _cookie_value(_refresh_set_cookie(_login(client)))

    first = _refresh(client, cookie)
    assert first.status_code == 200
    second = _refresh(client, _cookie_value(_refresh_set_cookie(first)))
    assert second.status_code == 200

    assert first.json()["accessToken"] != second.json()["accessToken"]


def test_refresh_without_cookie(client) -> None:
    response = _refresh(client, None)

    assert response.status_code == 401
    assert response.json()["code"] == "MISSING_REFRESH_TOKEN"
    _assert_cookie_cleared(response)


def test_tampered_record_fails_and_revokes_other_logins(client, db, make_user) -> None:
    user = make_user("alice")
    first_cookie = _cookie_value(_refresh_set_cookie(_login(client)))
    second_cookie = _cookie_value(_refresh_set_cookie(_login(client)))

    db.expire_all()
    first_jti = jwt.get_unverified_claims(first_cookie)["jti"]
    record = db.query(RefreshToken).filter(RefreshToken.jti == first_jti).one()
    record.token_hash = "f" * 64
    db.commit()

    assert _refresh(client, first_cookie).status_code == 401
    assert _refresh(client, second_cookie).status_code == 401
    db.expire_all()
    assert all(row.is_revoked for row in db.query(RefreshToken).filter(RefreshToken.user_id == user.id))


def test_logout_clears_cookie_and_revokes_token(client, make_user) -> None:
    make_user("alice")
    cookie = _cookie_value(_refresh_set_cookie(_login(client)))

    response = _logout(client, cookie)

    assert response.status_code == 200
    assert response.json() == {"message": "Logged out"}
    _assert_cookie_cleared(response)
    assert _refresh(client, cookie).status_code == 401


def test_logout_without_or_with_garbage_cookie_still_succeeds(client) -> None:
    assert _logout(client, None).status_code == 200
    garbage = _logout(client, "garbage")
    assert garbage.status_code == 200
    _assert_cookie_cleared(garbage)


def test_validate_returns_current_user(client, make_user) -> None:
    make_user("root", role=Role.ADMIN)
    token = _login(client, "root").json()["accessToken"]

    response = client.get("/auth/validate", headers=_bearer(token))

    assert response.status_code == 200
    user = response.json()["user"]
    assert user["username"] == "root"
    assert user["role"] == "ADMIN"
    assert user["isSuperuser"] is True


def test_validate_missing_token_is_401_invalid_is_403(client, make_user) -> None:
    user = make_user("alice")
    now = int(time.time())
    expired = jwt.encode(
        {"id": user.id, "role": "USER", "type": "access", "iat": now - 7200, "exp": now - 3600},
        ACCESS_SECRET,
        algorithm="HS256",
    )
    refresh_cookie = _cookie_value(_refresh_set_cookie(_login(client)))

    assert client.get("/auth/validate").status_code == 401
    assert client.get("/auth/validate", headers={"Authorization": "Basic abc"}).status_code == 401

    for bad in ("garbage", expired, refresh_cookie):
        response = client.get("/auth/validate", headers=_bearer(bad))
        assert response.status_code == 403
        assert response.json()["detail"] == "Invalid or expired token"


def test_validate_for_deleted_user_is_404(client, db, make_user) -> None:
    user = make_user("alice")
    token = _login(client).json()["accessToken"]
    db.delete(user)
    db.commit()

    response = client.get("/auth/validate", headers=_bearer(token))
    assert response.status_code == 404


def test_old_access_token_stays_valid_after_refresh(client, make_user) -> None:
    make_user("alice")
    login = _login(client)
    access = login.json()["accessToken"]

    assert _refresh(client, _cookie_value(_refresh_set_cookie(login))).status_code == 200
    assert client.get("/auth/validate", headers=_bearer(access)).status_code == 200


def test_logout_all_and_sessions_listing(client, make_user) -> None:
    make_user("alice")
    first = _login(client)
    _login(client)
    access = first.json()["accessToken"]

    sessions = client.get("/auth/sessions", headers=_bearer(access))
    assert sessions.status_code == 200
    items = sessions.json()["sessions"]
    assert len(items) == 2
    assert {"jti", "createdAt", "expiresAt", "createdIp", "userAgent"} <= set(items[0])

    response = client.post("/auth/logout-all", headers=_bearer(access))
    assert response.status_code == 200
    assert response.json()["revoked"] == 2
    _assert_cookie_cleared(response)

    assert client.get("/auth/sessions", headers=_bearer(access)).json()["sessions"] == []
    assert _refresh(client, _cookie_value(_refresh_set_cookie(first))).status_code == 401


def test_optional_identity_lets_anonymous_requests_through() -> None:
    app = FastAPI()

    @app.get("/whoami")
    def _whoami(identity: Identity | None = Depends(get_optional_identity)):
        return {"id": identity.id if identity else None}

    client = TestClient(app)
    now = int(time.time())
    valid = jwt.encode(
        {"id": 5, "role": "USER", "type": "access", "iat": now, "exp": now + 60},
        ACCESS_SECRET,
        algorithm="HS256",
    )

    assert client.get("/whoami").json() == {"id": None}
    assert client.get("/whoami", headers=_bearer("garbage")).json() == {"id": None}
    assert client.get("/whoami", headers=_bearer(valid)).json() == {"id": 5}
