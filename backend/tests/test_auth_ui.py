"""
Sign-in, sign-up, sign-out and password reset through the web layer.
"""
from __future__ import annotations

import pytest

from backend.tests.utils.web import PASSWORD, csrf_for, login, post_form, seed_org, seed_user
from backend.web import app_state
from backend.web.auth_utils import SESSION_COOKIE_NAME


@pytest.mark.anyio
async def test_login_page_renders_form_with_csrf(client):
    r = await client.get("/login")
    assert r.status_code == 200
    assert 'action="/login"' in r.text
    assert 'name="csrf_token"' in r.text
    assert r.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_login_notice_is_shown(client):
    r = await client.get("/login?notice=signed_out")
    assert "You have been signed out." in r.text


@pytest.mark.anyio
async def test_login_without_csrf_is_rejected(client, memory):
    seed_user(memory, "a@example.com")
    await client.get("/login")
    r = await client.post("/login", data={"email": "a@example.com", "password": PASSWORD})
    assert r.status_code == 403
    assert r.text == "CSRF Error"


@pytest.mark.anyio
async def test_login_redirects_to_role_dashboard_and_sets_cookie(client, memory):
    org = seed_org(memory)
    seed_user(memory, "teach@example.com", role="instructor", org_id=org)
    r = await login(client, "teach@example.com")
    assert r.headers["location"] == "/dashboard/instructor"
    set_cookie = r.headers["set-cookie"].lower()
    assert SESSION_COOKIE_NAME in set_cookie
    assert "httponly" in set_cookie and "secure" in set_cookie and "samesite=lax" in set_cookie


@pytest.mark.anyio
async def test_login_with_wrong_password_keeps_email(client, memory):
    seed_user(memory, "a@example.com")
    token = await csrf_for(client, "/login")
    r = await client.post("/login", data={"email": "a@example.com", "password": "nope", "csrf_token": token})
    assert r.status_code == 400
    assert "Invalid email or password." in r.text
    assert 'value="a@example.com"' in r.text
    assert SESSION_COOKIE_NAME not in r.headers.get("set-cookie", "")


@pytest.mark.anyio
async def test_login_without_readable_profile_creates_no_session(client, memory):
    uid = seed_user(memory, "ghost@example.com")
    memory.pending_profile_reads[uid] = 100
    token = await csrf_for(client, "/login")
    r = await client.post("/login", data={"email": "ghost@example.com", "password": PASSWORD, "csrf_token": token})
    assert r.status_code == 503
    assert "Your profile could not be loaded" in r.text
    assert SESSION_COOKIE_NAME not in r.headers.get("set-cookie", "")
    assert app_state.SESSION_STORE._data == {}


@pytest.mark.anyio
async def test_signed_in_user_visiting_login_is_redirected(client, memory):
    org = seed_org(memory)
    seed_user(memory, "l@example.com", org_id=org)
    await login(client, "l@example.com")
    r = await client.get("/login")
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard/learner"


@pytest.mark.anyio
async def test_signup_validation_errors_render_inline(client):
    token = await csrf_for(client, "/signup")
    r = await client.post(
        "/signup", data={"full_name": "", "email": "not-an-email", "password": "weak", "csrf_token": token}
    )
    assert r.status_code == 400
    assert "Please enter your name" in r.text
    assert 'value="not-an-email"' in r.text
    assert "strength" in r.text


@pytest.mark.anyio
async def test_signup_signs_in_and_sends_user_to_organization_signup(client, memory):
    token = await csrf_for(client, "/signup")
    r = await client.post(
        "/signup",
        data={"full_name": "Nina New", "email": "nina@example.com", "password": "Str0ng!Passw0rd", "csrf_token": token},
    )
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard/learner"
    follow = await client.get("/dashboard/learner")
    assert follow.status_code == 303
    assert follow.headers["location"] == "/organizations/new"
    profiles = [p for p in memory.tables["profiles"] if p["email"] == "nina@example.com"]
    assert profiles and profiles[0]["role"] == "learner"


@pytest.mark.anyio
async def test_signup_with_confirmation_redirects_to_notice(client, memory):
    memory.require_email_confirmation = True
    token = await csrf_for(client, "/signup")
    r = await client.post(
        "/signup",
        data={"full_name": "Carl", "email": "carl@example.com", "password": "Str0ng!Passw0rd", "csrf_token": token},
    )
    assert r.status_code == 303
    assert r.headers["location"] == "/login?notice=confirm_email"


@pytest.mark.anyio
async def test_logout_ends_session_and_clears_cookie(client, memory):
    org = seed_org(memory)
    seed_user(memory, "l@example.com", org_id=org)
    await login(client, "l@example.com")
    assert len(app_state.SESSION_STORE._data) == 1
    r = await post_form(client, "/logout")
    assert r.status_code == 303
    assert r.headers["location"] == "/login?notice=signed_out"
    assert app_state.SESSION_STORE._data == {}
    after = await client.get("/support")
    assert after.status_code == 302
    assert after.headers["location"] == "/login"


@pytest.mark.anyio
async def test_reset_request_does_not_reveal_accounts(client, memory):
    token = await csrf_for(client, "/reset-password")
    r = await client.post("/reset-password", data={"email": "nobody@example.com", "csrf_token": token})
    assert r.status_code == 200
    assert "If an account exists for that address" in r.text
    assert memory.password_reset_requests[0]["redirect_to"] == "https://test/reset-password"


@pytest.mark.anyio
async def test_reset_link_sets_new_password(client, memory):
    uid = seed_user(memory, "r@example.com")
    recovery = memory.issue_token(uid)
    page = await client.get(f"/reset-password?access_token={recovery}&refresh_token=x")
    assert 'name="password_confirm"' in page.text
    assert recovery not in page.text
    token = await csrf_for(client, "/reset-password")

    mismatch = await client.post(
        "/reset-password", data={"password": "abcdef", "password_confirm": "abcdeg", "csrf_token": token}
    )
    assert mismatch.status_code == 400
    assert "Passwords do not match." in mismatch.text

    ok = await client.post(
        "/reset-password", data={"password": "abcdef", "password_confirm": "abcdef", "csrf_token": token}
    )
    assert ok.status_code == 303
    assert ok.headers["location"] == "/login?notice=password_updated"
    await login(client, "r@example.com", "abcdef")
