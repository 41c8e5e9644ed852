"""
tests/test_api_auth.py -- Integration tests for api/routes/v1/auth.py and
api/routes/v1/users.py.

Covers:
  - full password + OTP login over HTTP, then refresh rotation and logout
  - generic 401 for unknown email, wrong password and inactive account [C1]
  - byte-identical answers from request-otp and forgot-password
  - 422 on malformed codes and weak passwords, without echoing the password
  - Cache-Control: no-store on token-bearing responses [M5]
  - per-IP rate limit on code-sending endpoints [H2]
  - admin-only account creation and the temporary-password first login
  - 503 when the code email cannot be sent
"""

from __future__ import annotations

from api.models import AccountCreate
from auth.models import Role
from conftest import USER_PASSWORD, seed_account

NEW_PASSWORD = "N3w!password"


def _login(ctx, email: str, password: str = USER_PASSWORD) -> dict:
    resp = ctx.client.post("/api/v1/auth/login-with-otp", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    session_token = resp.json()["session_token"]
    code = ctx.notifier.last("otp", email).data["code"]
    resp = ctx.client.post(
        "/api/v1/auth/verify-otp-complete-login",
        json={"email": email, "otp": code, "session_token": session_token},
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


def test_two_step_login(api_client):
    seed_account(api_client.lifecycle, "login@example.com", full_name="Lee Login")
    resp = api_client.client.post(
        "/api/v1/auth/login-with-otp", json={"email": "login@example.com", "password": USER_PASSWORD}
    )
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    challenge = resp.json()
    assert challenge["requires_otp"] is True
    assert "expires_at" in challenge

    code = api_client.notifier.last("otp", "login@example.com").data["code"]
    resp = api_client.client.post(
        "/api/v1/auth/verify-otp-complete-login",
        json={"email": "login@example.com", "otp": code, "session_token": challenge["session_token"]},
    )
    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    body = resp.json()
    assert body["token_type"] == "Bearer"
    assert body["account"]["email"] == "login@example.com"
    assert body["must_change_password"] is False
    assert "password_hash" not in body["account"]

    me = api_client.client.get("/api/v1/auth/me", headers=api_client.auth(body["access_token"]))
    assert me.status_code == 200
    assert me.json()["full_name"] == "Lee Login"
    assert me.json()["last_login"] is not None


def test_bad_credentials_are_indistinguishable(api_client):
    seed_account(api_client.lifecycle, "known@example.com")
    seed_account(api_client.lifecycle, "inactive@example.com", is_active=False)
    attempts = [
        {"email": "nobody@example.com", "password": USER_PASSWORD},
        {"email": "known@example.com", "password": "Wr0ng!password"},
        {"email": "inactive@example.com", "password": USER_PASSWORD},
    ]
    responses = [api_client.client.post("/api/v1/auth/login-with-otp", json=body) for body in attempts]
    assert {r.status_code for r in responses} == {401}
    assert len({r.content for r in responses}) == 1
    assert responses[0].json()["error"]["code"] == "bad_credentials"
    assert responses[0].headers["www-authenticate"] == "Bearer"


def test_wrong_code_then_right_code(api_client):
    seed_account(api_client.lifecycle, "retry@example.com")
    resp = api_client.client.post(
        "/api/v1/auth/login-with-otp", json={"email": "retry@example.com", "password": USER_PASSWORD}
    )
    session_token = resp.json()["session_token"]
    code = api_client.notifier.last("otp", "retry@example.com").data["code"]
    wrong = "000000" if code != "000000" else "111111"

    bad = api_client.client.post(
        "/api/v1/auth/verify-otp-complete-login",
        json={"email": "retry@example.com", "otp": wrong, "session_token": session_token},
    )
    assert bad.status_code == 401
    assert bad.json()["error"]["code"] == "invalid_otp"

    good = api_client.client.post(
        "/api/v1/auth/verify-otp-complete-login",
        json={"email": "retry@example.com", "otp": code, "session_token": session_token},
    )
    assert good.status_code == 200


def test_malformed_code_is_422(api_client):
    resp = api_client.client.post(
        "/api/v1/auth/verify-otp-complete-login", json={"email": "x@example.com", "otp": "12ab56"}
    )
    assert resp.status_code == 422
    assert resp.json()["error"]["code"] == "validation_error"


def test_passwordless_login(api_client):
    seed_account(api_client.lifecycle, "nopass@example.com")
    resp = api_client.client.post("/api/v1/auth/request-otp", json={"email": "nopass@example.com"})
    assert resp.status_code == 200
    code = api_client.notifier.last("otp", "nopass@example.com").data["code"]
    resp = api_client.client.post(
        "/api/v1/auth/verify-otp-complete-login", json={"email": "nopass@example.com", "otp": code}
    )
    assert resp.status_code == 200
    assert resp.json()["account"]["email"] == "nopass@example.com"


def test_otp_email_failure_is_503(api_client):
    seed_account(api_client.lifecycle, "nomail@example.com")
    api_client.notifier.failing.add("otp")
    try:
        resp = api_client.client.post(
            "/api/v1/auth/login-with-otp", json={"email": "nomail@example.com", "password": USER_PASSWORD}
        )
    finally:
        api_client.notifier.failing.discard("otp")
    assert resp.status_code == 503
    assert resp.json()["error"]["code"] == "delivery_unavailable"


# ---------------------------------------------------------------------------
# Anti-enumeration
# ---------------------------------------------------------------------------


def test_request_otp_answer_does_not_depend_on_account(api_client):
    seed_account(api_client.lifecycle, "exists-otp@example.com")
    known = api_client.client.post("/api/v1/auth/request-otp", json={"email": "exists-otp@example.com"})
    unknown = api_client.client.post("/api/v1/auth/request-otp", json={"email": "missing-otp@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.content == unknown.content


def test_forgot_password_answer_does_not_depend_on_account(api_client):
    seed_account(api_client.lifecycle, "exists-reset@example.com")
    known = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "exists-reset@example.com"})
    unknown = api_client.client.post("/api/v1/auth/forgot-password", json={"email": "missing-reset@example.com"})
    assert known.status_code == unknown.status_code == 200
    assert known.content == unknown.content
    assert api_client.notifier.of_kind("reset", "missing-reset@example.com") == []


def test_code_sending_is_rate_limited(api_client):
    statuses = [
        api_client.client.post("/api/v1/auth/request-otp", json={"email": "flood@example.com"}).status_code
        for _ in range(6)
    ]
    assert statuses[:5] == [200] * 5
    assert statuses[5] == 429


def test_password_login_is_rate_limited(api_client):
    body = {"email": "guess@example.com", "password": "Wr0ng!password"}
    statuses = [api_client.client.post("/api/v1/auth/login-with-otp", json=body).status_code for _ in range(11)]
    assert statuses[:10] == [401] * 10
    assert statuses[10] == 429


# ---------------------------------------------------------------------------
# Registration, refresh and logout
# ---------------------------------------------------------------------------


def test_register_then_duplicate(api_client):
    body = {"email": "fresh@example.com", "password": USER_PASSWORD, "full_name": "  Fay Fresh  "}
    resp = api_client.client.post("/api/v1/auth/register", json=body)
    assert resp.status_code == 201
    assert resp.json()["account"]["full_name"] == "Fay Fresh"
    assert resp.json()["account"]["role"] == "user"
    dup = api_client.client.post("/api/v1/auth/register", json=body)
    assert dup.status_code == 409
    assert dup.json()["error"]["code"] == "conflict"


def test_register_weak_password_not_echoed(api_client):
    resp = api_client.client.post(
        "/api/v1/auth/register",
        json={"email": "weak@example.com", "password": "weakpass", "full_name": "W"},
    )
    assert resp.status_code == 422
    assert "weakpass" not in resp.text


def test_refresh_rotation_over_http(api_client):
    seed_account(api_client.lifecycle, "rotate@example.com")
    tokens = _login(api_client, "rotate@example.com")
    first = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert first.status_code == 200
    assert first.headers["cache-control"] == "no-store"
    replay = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert replay.status_code == 401
    assert replay.json()["error"]["code"] == "invalid_refresh_token"


def test_logout_and_logout_all(api_client):
    seed_account(api_client.lifecycle, "bye@example.com")
    one = _login(api_client, "bye@example.com")
    two = _login(api_client, "bye@example.com")
    headers = api_client.auth(one["access_token"])

    resp = api_client.client.post("/api/v1/auth/logout", json={"refresh_token": one["refresh_token"]}, headers=headers)
    assert resp.status_code == 200
    assert api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": one["refresh_token"]}).status_code == 401

    resp = api_client.client.post("/api/v1/auth/logout-all", headers=headers)
    assert resp.status_code == 200
    assert api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": two["refresh_token"]}).status_code == 401


def test_protected_routes_need_a_token(api_client):
    assert api_client.client.get("/api/v1/auth/me").status_code == 401
    resp = api_client.client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nonsense"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_refresh_token_is_not_accepted_as_access_token(api_client):
    seed_account(api_client.lifecycle, "confused@example.com")
    tokens = _login(api_client, "confused@example.com")
    resp = api_client.client.get("/api/v1/auth/me", headers=api_client.auth(tokens["refresh_token"]))
    assert resp.status_code == 401


# ---------------------------------------------------------------------------
# Password change and reset
# ---------------------------------------------------------------------------


def test_change_password_over_http(api_client):
    seed_account(api_client.lifecycle, "change@example.com")
    tokens = _login(api_client, "change@example.com")
    headers = api_client.auth(tokens["access_token"])

    mismatch = api_client.client.post(
        "/api/v1/auth/change-password",
        json={"current_password": USER_PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": "Other!pass1"},
        headers=headers,
    )
    assert mismatch.status_code == 400
    assert mismatch.json()["error"]["code"] == "password_confirmation_mismatch"

    resp = api_client.client.post(
        "/api/v1/auth/change-password",
        json={"current_password": USER_PASSWORD, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["requires_relogin"] is True
    refresh = api_client.client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refresh.status_code == 401


def test_change_password_rejects_new_password_past_bcrypt_limit(api_client):
    current = "Aa1!" + "x" * 68
    seed_account(api_client.lifecycle, "long@example.com", current)
    tokens = _login(api_client, "long@example.com", current)
    longer = current + "Zz9!"
    resp = api_client.client.post(
        "/api/v1/auth/change-password",
        json={"current_password": current, "new_password": longer, "confirm_password": longer},
        headers=api_client.auth(tokens["access_token"]),
    )
    assert resp.status_code == 422
    assert "72 bytes" in resp.text
    assert longer not in resp.text
    # The stored password is untouched and a longer variant does not pass for it.
    _login(api_client, "long@example.com", current)
    wrong = api_client.client.post("/api/v1/auth/login-with-otp", json={"email": "long@example.com", "password": longer})
    assert wrong.status_code == 401


def test_forgot_and_reset_over_http(api_client):
    seed_account(api_client.lifecycle, "reset@example.com")
    api_client.client.post("/api/v1/auth/forgot-password", json={"email": "reset@example.com"})
    token = api_client.notifier.last("reset", "reset@example.com").data["token"]
    resp = api_client.client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": NEW_PASSWORD})
    assert resp.status_code == 200
    again = api_client.client.post("/api/v1/auth/reset-password", json={"token": token, "new_password": NEW_PASSWORD})
    assert again.status_code == 400
    assert again.json()["error"]["code"] == "invalid_reset_token"
    _login(api_client, "reset@example.com", NEW_PASSWORD)


# ---------------------------------------------------------------------------
# Admin account creation
# ---------------------------------------------------------------------------


def test_create_account_requires_admin(api_client):
    seed_account(api_client.lifecycle, "plain@example.com")
    tokens = _login(api_client, "plain@example.com")
    body = {"email": "someone@example.com", "full_name": "Some One"}
    assert api_client.client.post("/api/v1/users", json=body).status_code == 401
    resp = api_client.client.post("/api/v1/users", json=body, headers=api_client.auth(tokens["access_token"]))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"


def test_create_account_with_password(api_client):
    resp = api_client.client.post(
        "/api/v1/users",
        json={"email": "mod@example.com", "full_name": "Mo Mod", "role": "moderator", "password": USER_PASSWORD},
        headers=api_client.auth(),
    )
    assert resp.status_code == 201
    body = resp.json()
    assert body["temporary_password_sent"] is False
    assert body["account"]["role"] == "moderator"
    assert body["account"]["must_change_password"] is False

    dup = api_client.client.post(
        "/api/v1/users",
        json={"email": "MOD@example.com", "full_name": "Mo Again"},
        headers=api_client.auth(),
    )
    assert dup.status_code == 409


def test_account_create_role_parses_to_domain_role():
    body = AccountCreate(email="r@example.com", full_name="R", role="moderator")
    assert body.role is Role.moderator
    assert AccountCreate(email="s@example.com", full_name="S").role is Role.user


def test_create_account_rejects_unknown_role(api_client):
    resp = api_client.client.post(
        "/api/v1/users",
        json={"email": "root@example.com", "full_name": "R", "role": "superuser"},
        headers=api_client.auth(),
    )
    assert resp.status_code == 422


def test_temporary_password_first_login(api_client):
    resp = api_client.client.post(
        "/api/v1/users",
        json={"email": "temp@example.com", "full_name": "Tam Temp"},
        headers=api_client.auth(),
    )
    assert resp.status_code == 201
    assert resp.json()["temporary_password_sent"] is True
    assert resp.json()["account"]["must_change_password"] is True

    mail = api_client.notifier.last("temporary", "temp@example.com")
    assert mail.data["issued_by"] == "Ada Admin"
    temporary = mail.data["password"]

    first = _login(api_client, "temp@example.com", temporary)
    assert first["must_change_password"] is True

    resp = api_client.client.post(
        "/api/v1/auth/change-password",
        json={"current_password": temporary, "new_password": NEW_PASSWORD, "confirm_password": NEW_PASSWORD},
        headers=api_client.auth(first["access_token"]),
    )
    assert resp.status_code == 200

    second = _login(api_client, "temp@example.com", NEW_PASSWORD)
    assert second["must_change_password"] is False
