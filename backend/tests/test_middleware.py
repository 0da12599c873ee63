"""
Middleware: authentication enforcement, organization requirement, anonymous
ids and security headers.
"""
from __future__ import annotations

import pytest

from backend.tests.utils.web import csrf_for, login, seed_org, seed_user
from backend.web import app_state
from backend.web.auth_utils import ANON_COOKIE_NAME


@pytest.mark.anyio
async def test_health_is_public_and_not_cached(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "healthy"}
    assert r.headers["Cache-Control"] == "private, no-store"
    # Machine endpoints never get an anonymous browser id.
    assert ANON_COOKIE_NAME not in r.headers.get("set-cookie", "")


@pytest.mark.anyio
async def test_public_page_sets_anonymous_cookie_once(client):
    first = await client.get("/")
    assert ANON_COOKIE_NAME in first.headers.get("set-cookie", "")
    second = await client.get("/pricing")
    assert ANON_COOKIE_NAME not in second.headers.get("set-cookie", "")


@pytest.mark.anyio
async def test_protected_html_redirects_to_login(client):
    r = await client.get("/dashboard/learner")
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


@pytest.mark.anyio
async def test_protected_api_answers_401_json(client):
    r = await client.get("/api/anything")
    assert r.status_code == 401
    assert r.json() == {"error": "unauthenticated"}
    assert r.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_htmx_request_gets_hx_redirect(client):
    r = await client.get("/support", headers={"HX-Request": "true"})
    assert r.status_code == 401
    assert r.headers["HX-Redirect"] == "/login"


@pytest.mark.anyio
async def test_security_headers_on_every_response(client):
    r = await client.get("/login")
    csp = r.headers["Content-Security-Policy"]
    assert "default-src 'self'" in csp
    assert "https://www.youtube-nocookie.com" in csp
    assert "https://player.vimeo.com" in csp
    assert r.headers["X-Frame-Options"] == "SAMEORIGIN"
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"
    assert "max-age=31536000" in r.headers["Strict-Transport-Security"]
    # Only production sets COOP.
    assert "Cross-Origin-Opener-Policy" not in r.headers


@pytest.mark.anyio
async def test_redirects_also_carry_security_headers(client):
    r = await client.get("/profile")
    assert r.status_code == 302
    assert r.headers["X-Frame-Options"] == "SAMEORIGIN"


@pytest.mark.anyio
async def test_static_assets_are_served(client):
    r = await client.get("/static/css/clearcourse.css")
    assert r.status_code == 200
    assert ANON_COOKIE_NAME not in r.headers.get("set-cookie", "")


@pytest.mark.anyio
async def test_user_without_organization_is_sent_to_signup(client, memory):
    seed_user(memory, "solo@example.com")
    await login(client, "solo@example.com")
    for path in ("/dashboard/learner", "/profile", "/settings/billing"):
        r = await client.get(path)
        assert r.status_code == 303, path
        assert r.headers["location"] == "/organizations/new"
    # Pages outside the organization area stay reachable.
    assert (await client.get("/support")).status_code == 200
    assert (await client.get("/organizations/new")).status_code == 200


@pytest.mark.anyio
async def test_super_admin_without_organization_is_exempt(client, memory):
    seed_user(memory, "root@example.com", super_admin=True)
    await login(client, "root@example.com")
    r = await client.get("/dashboard/learner")
    assert r.status_code == 200


@pytest.mark.anyio
async def test_unknown_session_cookie_is_treated_as_signed_out(client):
    r = await client.get("/profile", headers={"Cookie": "clearcourse_session=forged-session-id"})
    assert r.status_code == 302
    assert r.headers["location"] == "/login"


@pytest.mark.anyio
async def test_member_reaches_dashboard(client, memory):
    org = seed_org(memory)
    seed_user(memory, "member@example.com", org_id=org)
    await login(client, "member@example.com")
    r = await client.get("/dashboard")
    assert r.status_code == 303
    assert r.headers["location"] == "/dashboard/learner"
    page = await client.get("/dashboard/learner")
    assert page.status_code == 200
    assert page.headers["Cache-Control"] == "private, no-store"


@pytest.mark.anyio
async def test_cookieless_clients_do_not_accumulate_csrf_tokens(client):
    before = len(app_state._CSRF_BY_SESSION)
    for _ in range(50):
        client.cookies.clear()
        r = await client.get("/login")
        assert r.status_code == 200
    assert len(app_state._CSRF_BY_SESSION) == before


@pytest.mark.anyio
async def test_anonymous_token_only_works_with_its_own_browser_id(client):
    token = await csrf_for(client, "/contact")
    form = {"csrf_token": token, "user_name": "Ada", "user_email": "ada@example.com",
            "subject": "Hello", "message": "A question about plans"}
    ok = await client.post("/contact", data=form)
    assert ok.status_code == 200

    client.cookies.clear()
    forged = await client.post("/contact", data=form)
    assert forged.status_code == 403
